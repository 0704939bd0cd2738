from __future__ import annotations

"""
File: fleet_core/store/mysql.py
Purpose: MySQL-backed fleet store.
Key responsibilities:
- Map robots, tasks, simulation_runs, metrics and ai_decisions rows to records.
- Serialize robot/task binding with conditional UPDATEs checked by rowcount.
- Translate driver errors into PersistenceError.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
import json
from typing import Any, Iterable, Iterator

import pymysql

from fleet_core.entities import AIDecision, Robot, RunMetrics, SimulationRun, Task, new_id
from fleet_core.errors import NotFoundError, PersistenceError
from fleet_core.settings import Settings, settings as default_settings
from fleet_core.store.base import UNCLAIMABLE_ROBOT_STATES

ROBOT_COLUMNS = ("name", "type", "status", "battery_level", "position_x", "position_y", "current_task_id", "last_seen")
TASK_COLUMNS = (
    "run_id", "robot_id", "type", "priority", "status", "origin_x", "origin_y",
    "destination_x", "destination_y", "created_at", "assigned_at", "completed_at",
)
RUN_COLUMNS = ("status", "final_score", "improvement_notes", "end_time", "strategy")

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS robots (
        id VARCHAR(64) PRIMARY KEY,
        name VARCHAR(128) NOT NULL,
        type VARCHAR(32) NOT NULL DEFAULT 'delivery',
        status VARCHAR(16) NOT NULL DEFAULT 'idle',
        battery_level DOUBLE NOT NULL DEFAULT 100,
        position_x DOUBLE NULL,
        position_y DOUBLE NULL,
        current_task_id VARCHAR(64) NULL,
        last_seen DATETIME(6) NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id VARCHAR(64) PRIMARY KEY,
        seq BIGINT NOT NULL AUTO_INCREMENT UNIQUE,
        run_id VARCHAR(64) NULL,
        robot_id VARCHAR(64) NULL,
        type VARCHAR(32) NOT NULL DEFAULT 'delivery',
        priority INT NOT NULL,
        status VARCHAR(16) NOT NULL DEFAULT 'pending',
        origin_x DOUBLE NULL,
        origin_y DOUBLE NULL,
        destination_x DOUBLE NULL,
        destination_y DOUBLE NULL,
        created_at DATETIME(6) NOT NULL,
        assigned_at DATETIME(6) NULL,
        completed_at DATETIME(6) NULL,
        KEY idx_tasks_run_status (run_id, status),
        KEY idx_tasks_status_created (status, created_at)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS simulation_runs (
        id VARCHAR(64) PRIMARY KEY,
        scenario_id VARCHAR(64) NOT NULL,
        run_number INT NOT NULL,
        status VARCHAR(16) NOT NULL DEFAULT 'running',
        strategy_json TEXT NULL,
        final_score DOUBLE NULL,
        improvement_notes TEXT NULL,
        start_time DATETIME(6) NOT NULL,
        end_time DATETIME(6) NULL,
        UNIQUE KEY uq_runs_scenario_number (scenario_id, run_number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS metrics (
        run_id VARCHAR(64) PRIMARY KEY,
        total_tasks INT NOT NULL DEFAULT 0,
        completed_tasks INT NOT NULL DEFAULT 0,
        failed_tasks INT NOT NULL DEFAULT 0,
        throughput DOUBLE NOT NULL DEFAULT 0,
        efficiency_score DOUBLE NOT NULL DEFAULT 0,
        avg_ai_latency_ms DOUBLE NOT NULL DEFAULT 0,
        avg_battery_usage DOUBLE NOT NULL DEFAULT 0,
        avg_completion_time_ms DOUBLE NOT NULL DEFAULT 0,
        ai_decisions_count INT NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ai_decisions (
        id VARCHAR(64) PRIMARY KEY,
        run_id VARCHAR(64) NOT NULL,
        decision_type VARCHAR(32) NOT NULL,
        input_state JSON NULL,
        decision_output JSON NULL,
        confidence DOUBLE NOT NULL,
        latency_ms DOUBLE NOT NULL,
        timestamp DATETIME(6) NOT NULL,
        KEY idx_decisions_run_time (run_id, timestamp)
    )
    """,
)


def _set_clause(fields: dict[str, Any], allowed: tuple[str, ...], renames: dict[str, str] | None = None) -> tuple[str, list[Any]]:
    """Build an UPDATE SET clause from whitelisted fields."""
    renames = renames or {}
    unknown = set(fields) - set(allowed)
    if unknown:
        raise ValueError(f"unknown columns: {sorted(unknown)}")
    parts = [f"{renames.get(name, name)}=%s" for name in fields]
    return ", ".join(parts), list(fields.values())


def _aware(value: datetime | None) -> datetime | None:
    """DATETIME columns hold UTC without tzinfo."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _robot(row: dict[str, Any]) -> Robot:
    return Robot(
        id=row["id"],
        name=row["name"],
        type=row["type"],
        status=row["status"],
        battery_level=float(row["battery_level"]),
        position_x=float(row["position_x"] or 0.0),
        position_y=float(row["position_y"] or 0.0),
        current_task_id=row.get("current_task_id"),
        last_seen=_aware(row.get("last_seen")),
    )


def _task(row: dict[str, Any]) -> Task:
    return Task(
        id=row["id"],
        run_id=row.get("run_id"),
        robot_id=row.get("robot_id"),
        type=row["type"],
        priority=int(row["priority"]),
        status=row["status"],
        origin_x=float(row["origin_x"] or 0.0),
        origin_y=float(row["origin_y"] or 0.0),
        destination_x=float(row["destination_x"] or 0.0),
        destination_y=float(row["destination_y"] or 0.0),
        created_at=_aware(row["created_at"]),
        assigned_at=_aware(row.get("assigned_at")),
        completed_at=_aware(row.get("completed_at")),
    )


def _run(row: dict[str, Any]) -> SimulationRun:
    strategy = row.get("strategy_json")
    return SimulationRun(
        id=row["id"],
        scenario_id=row["scenario_id"],
        run_number=int(row["run_number"]),
        status=row["status"],
        strategy=json.loads(strategy) if strategy else {},
        final_score=float(row["final_score"]) if row.get("final_score") is not None else None,
        improvement_notes=row.get("improvement_notes"),
        start_time=_aware(row["start_time"]),
        end_time=_aware(row.get("end_time")),
    )


def _metrics(row: dict[str, Any]) -> RunMetrics:
    return RunMetrics(
        run_id=row["run_id"],
        total_tasks=int(row["total_tasks"] or 0),
        completed_tasks=int(row["completed_tasks"] or 0),
        failed_tasks=int(row["failed_tasks"] or 0),
        throughput=float(row["throughput"] or 0.0),
        efficiency_score=float(row["efficiency_score"] or 0.0),
        avg_ai_latency_ms=float(row["avg_ai_latency_ms"] or 0.0),
        avg_battery_usage=float(row["avg_battery_usage"] or 0.0),
        avg_completion_time_ms=float(row["avg_completion_time_ms"] or 0.0),
        ai_decisions_count=int(row["ai_decisions_count"] or 0),
    )


def _decision(row: dict[str, Any]) -> AIDecision:
    return AIDecision(
        id=row["id"],
        run_id=row["run_id"],
        decision_type=row["decision_type"],
        input_state=json.loads(row["input_state"]) if row.get("input_state") else {},
        decision_output=json.loads(row["decision_output"]) if row.get("decision_output") else None,
        confidence=float(row["confidence"]),
        latency_ms=float(row["latency_ms"]),
        timestamp=_aware(row["timestamp"]),
    )


class MySQLFleetStore:
    """FleetStore backed by MySQL through short-lived pymysql connections."""

    def __init__(self, config: Settings | None = None) -> None:
        self.config = config or default_settings

    def _connect(self):
        """Open a new MySQL connection with dict cursor."""
        return pymysql.connect(
            host=self.config.mysql_host,
            port=self.config.mysql_port,
            user=self.config.mysql_user,
            password=self.config.mysql_password,
            database=self.config.mysql_db,
            autocommit=True,
            cursorclass=pymysql.cursors.DictCursor,
        )

    @contextmanager
    def db_cursor(self) -> Iterator[pymysql.cursors.DictCursor]:
        """Context manager for a short-lived DB cursor."""
        try:
            conn = self._connect()
        except pymysql.MySQLError as exc:
            raise PersistenceError(f"store unreachable: {exc}") from exc
        try:
            with conn.cursor() as cur:
                yield cur
        except pymysql.MySQLError as exc:
            raise PersistenceError(f"store operation failed: {exc}") from exc
        finally:
            conn.close()

    def ensure_schema(self) -> None:
        """Create the fleet tables when missing."""
        with self.db_cursor() as cur:
            for statement in SCHEMA:
                cur.execute(statement)

    # Robots

    def add_robot(self, robot: Robot) -> Robot:
        with self.db_cursor() as cur:
            cur.execute(
                """
                INSERT INTO robots (id, name, type, status, battery_level, position_x, position_y, current_task_id, last_seen)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    robot.id, robot.name, robot.type, robot.status, robot.battery_level,
                    robot.position_x, robot.position_y, robot.current_task_id, robot.last_seen,
                ),
            )
        return robot

    def get_robot(self, robot_id: str) -> Robot | None:
        with self.db_cursor() as cur:
            cur.execute("SELECT * FROM robots WHERE id=%s", (robot_id,))
            row = cur.fetchone()
        return _robot(row) if row else None

    def list_robots(self, exclude_statuses: Iterable[str] = ()) -> list[Robot]:
        excluded = list(exclude_statuses)
        query = "SELECT * FROM robots"
        if excluded:
            query += " WHERE status NOT IN (" + ", ".join(["%s"] * len(excluded)) + ")"
        query += " ORDER BY name ASC, id ASC"
        with self.db_cursor() as cur:
            cur.execute(query, excluded)
            rows = cur.fetchall()
        return [_robot(row) for row in rows]

    def update_robot(self, robot_id: str, **fields: Any) -> Robot:
        if fields:
            clause, values = _set_clause(fields, ROBOT_COLUMNS)
            with self.db_cursor() as cur:
                cur.execute(f"UPDATE robots SET {clause} WHERE id=%s", (*values, robot_id))
        robot = self.get_robot(robot_id)
        if robot is None:
            raise NotFoundError(f"robot not found: {robot_id}")
        return robot

    def claim_robot(self, robot_id: str, task_id: str, min_battery: float) -> bool:
        with self.db_cursor() as cur:
            cur.execute(
                """
                UPDATE robots SET status='working', current_task_id=%s
                WHERE id=%s AND current_task_id IS NULL AND status NOT IN (%s, %s) AND battery_level >= %s
                """,
                (task_id, robot_id, *UNCLAIMABLE_ROBOT_STATES, min_battery),
            )
            return cur.rowcount > 0

    def release_robot(self, robot_id: str, task_id: str, status: str) -> bool:
        with self.db_cursor() as cur:
            cur.execute(
                "UPDATE robots SET status=%s, current_task_id=NULL WHERE id=%s AND current_task_id=%s",
                (status, robot_id, task_id),
            )
            return cur.rowcount > 0

    def reset_robots(self, battery_level: float | None = None) -> None:
        with self.db_cursor() as cur:
            if battery_level is None:
                cur.execute("UPDATE robots SET status='idle', current_task_id=NULL")
            else:
                cur.execute(
                    "UPDATE robots SET status='idle', current_task_id=NULL, battery_level=%s",
                    (battery_level,),
                )

    # Tasks

    def add_task(self, task: Task) -> Task:
        with self.db_cursor() as cur:
            cur.execute(
                """
                INSERT INTO tasks (id, run_id, robot_id, type, priority, status, origin_x, origin_y, destination_x, destination_y, created_at, assigned_at, completed_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    task.id, task.run_id, task.robot_id, task.type, task.priority, task.status,
                    task.origin_x, task.origin_y, task.destination_x, task.destination_y,
                    task.created_at, task.assigned_at, task.completed_at,
                ),
            )
        return task

    def get_task(self, task_id: str) -> Task | None:
        with self.db_cursor() as cur:
            cur.execute("SELECT * FROM tasks WHERE id=%s", (task_id,))
            row = cur.fetchone()
        return _task(row) if row else None

    def list_tasks(self, run_id: str | None = None, status: str | None = None) -> list[Task]:
        conditions: list[str] = []
        params: list[Any] = []
        if run_id is not None:
            conditions.append("run_id=%s")
            params.append(run_id)
        if status is not None:
            conditions.append("status=%s")
            params.append(status)
        query = "SELECT * FROM tasks"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY priority DESC, seq ASC"
        with self.db_cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [_task(row) for row in rows]

    def update_task(self, task_id: str, **fields: Any) -> Task:
        if fields:
            clause, values = _set_clause(fields, TASK_COLUMNS)
            with self.db_cursor() as cur:
                cur.execute(f"UPDATE tasks SET {clause} WHERE id=%s", (*values, task_id))
        task = self.get_task(task_id)
        if task is None:
            raise NotFoundError(f"task not found: {task_id}")
        return task

    def claim_task(self, task_id: str, robot_id: str) -> bool:
        with self.db_cursor() as cur:
            cur.execute(
                """
                UPDATE tasks SET status='assigned', robot_id=%s, assigned_at=UTC_TIMESTAMP(6)
                WHERE id=%s AND status='pending'
                """,
                (robot_id, task_id),
            )
            return cur.rowcount > 0

    def count_tasks_since(self, status: str, since: datetime) -> int:
        with self.db_cursor() as cur:
            cur.execute("SELECT COUNT(*) AS cnt FROM tasks WHERE status=%s AND created_at > %s", (status, since))
            row = cur.fetchone()
        return int(row["cnt"]) if row else 0

    # Runs

    def create_run(self, scenario_id: str, strategy: dict[str, Any]) -> SimulationRun:
        run_id = new_id()
        # (scenario_id, run_number) is unique; a concurrent start fails loudly instead of duplicating.
        with self.db_cursor() as cur:
            cur.execute(
                """
                INSERT INTO simulation_runs (id, scenario_id, status, strategy_json, run_number, start_time)
                SELECT %s, %s, 'running', %s, COALESCE(MAX(run_number), 0) + 1, UTC_TIMESTAMP(6)
                FROM simulation_runs WHERE scenario_id=%s
                """,
                (run_id, scenario_id, json.dumps(strategy), scenario_id),
            )
        run = self.get_run(run_id)
        if run is None:
            raise PersistenceError(f"run insert not visible: {run_id}")
        return run

    def get_run(self, run_id: str) -> SimulationRun | None:
        with self.db_cursor() as cur:
            cur.execute("SELECT * FROM simulation_runs WHERE id=%s", (run_id,))
            row = cur.fetchone()
        return _run(row) if row else None

    def update_run(self, run_id: str, **fields: Any) -> SimulationRun:
        if "strategy" in fields:
            fields["strategy"] = json.dumps(fields["strategy"])
        if fields:
            clause, values = _set_clause(fields, RUN_COLUMNS, renames={"strategy": "strategy_json"})
            with self.db_cursor() as cur:
                cur.execute(f"UPDATE simulation_runs SET {clause} WHERE id=%s", (*values, run_id))
        run = self.get_run(run_id)
        if run is None:
            raise NotFoundError(f"run not found: {run_id}")
        return run

    def list_runs(self, scenario_id: str) -> list[SimulationRun]:
        with self.db_cursor() as cur:
            cur.execute(
                "SELECT * FROM simulation_runs WHERE scenario_id=%s ORDER BY run_number ASC",
                (scenario_id,),
            )
            rows = cur.fetchall()
        return [_run(row) for row in rows]

    def get_previous_run(self, scenario_id: str, run_number: int) -> SimulationRun | None:
        with self.db_cursor() as cur:
            cur.execute(
                """
                SELECT * FROM simulation_runs
                WHERE scenario_id=%s AND run_number < %s
                ORDER BY run_number DESC LIMIT 1
                """,
                (scenario_id, run_number),
            )
            row = cur.fetchone()
        return _run(row) if row else None

    def get_running_run(self) -> SimulationRun | None:
        with self.db_cursor() as cur:
            cur.execute("SELECT * FROM simulation_runs WHERE status='running' ORDER BY start_time ASC LIMIT 1")
            row = cur.fetchone()
        return _run(row) if row else None

    # Metrics

    def upsert_metrics(self, metrics: RunMetrics) -> RunMetrics:
        with self.db_cursor() as cur:
            cur.execute(
                """
                INSERT INTO metrics (run_id, total_tasks, completed_tasks, failed_tasks, throughput, efficiency_score, avg_ai_latency_ms, avg_battery_usage, avg_completion_time_ms, ai_decisions_count)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON DUPLICATE KEY UPDATE
                    total_tasks=VALUES(total_tasks),
                    completed_tasks=VALUES(completed_tasks),
                    failed_tasks=VALUES(failed_tasks),
                    throughput=VALUES(throughput),
                    efficiency_score=VALUES(efficiency_score),
                    avg_ai_latency_ms=VALUES(avg_ai_latency_ms),
                    avg_battery_usage=VALUES(avg_battery_usage),
                    avg_completion_time_ms=VALUES(avg_completion_time_ms),
                    ai_decisions_count=VALUES(ai_decisions_count)
                """,
                (
                    metrics.run_id,
                    int(metrics.total_tasks),
                    int(metrics.completed_tasks),
                    int(metrics.failed_tasks),
                    float(metrics.throughput),
                    float(metrics.efficiency_score),
                    float(metrics.avg_ai_latency_ms),
                    float(metrics.avg_battery_usage),
                    float(metrics.avg_completion_time_ms),
                    int(metrics.ai_decisions_count),
                ),
            )
        return metrics

    def get_metrics(self, run_id: str) -> RunMetrics | None:
        with self.db_cursor() as cur:
            cur.execute("SELECT * FROM metrics WHERE run_id=%s", (run_id,))
            row = cur.fetchone()
        return _metrics(row) if row else None

    def list_recent_metrics(self, limit: int = 10) -> list[RunMetrics]:
        with self.db_cursor() as cur:
            cur.execute(
                """
                SELECT m.* FROM metrics m
                JOIN simulation_runs sr ON m.run_id = sr.id
                ORDER BY sr.start_time DESC LIMIT %s
                """,
                (int(limit),),
            )
            rows = cur.fetchall()
        return [_metrics(row) for row in rows]

    # Decisions

    def add_decision(self, decision: AIDecision) -> AIDecision:
        with self.db_cursor() as cur:
            cur.execute(
                """
                INSERT INTO ai_decisions (id, run_id, decision_type, input_state, decision_output, confidence, latency_ms, timestamp)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    decision.id,
                    decision.run_id,
                    decision.decision_type,
                    json.dumps(decision.input_state, default=str),
                    json.dumps(decision.decision_output, default=str),
                    float(decision.confidence),
                    float(decision.latency_ms),
                    decision.timestamp,
                ),
            )
        return decision

    def list_decisions(self, run_id: str | None = None, limit: int = 20) -> list[AIDecision]:
        query = "SELECT * FROM ai_decisions"
        params: list[Any] = []
        if run_id is not None:
            query += " WHERE run_id=%s"
            params.append(run_id)
        query += " ORDER BY timestamp DESC LIMIT %s"
        params.append(int(limit))
        with self.db_cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [_decision(row) for row in rows]
