from __future__ import annotations

"""
File: fleet_core/store/memory.py
Purpose: Process-local fleet store for demos and tests.
Key responsibilities:
- Keep records in insertion-ordered dicts behind one lock.
- Hand out copies so callers never mutate stored rows in place.
"""

from dataclasses import replace
from datetime import datetime
import threading
from typing import Any, Iterable

from fleet_core.entities import AIDecision, Robot, RunMetrics, SimulationRun, Task, utcnow
from fleet_core.errors import NotFoundError, ValidationError
from fleet_core.store.base import UNCLAIMABLE_ROBOT_STATES


class InMemoryFleetStore:
    """FleetStore kept in memory; claims are compare-and-set under a lock."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._robots: dict[str, Robot] = {}
        self._tasks: dict[str, Task] = {}
        self._task_seq: dict[str, int] = {}
        self._runs: dict[str, SimulationRun] = {}
        self._metrics: dict[str, RunMetrics] = {}
        self._decisions: list[AIDecision] = []

    # Robots

    def add_robot(self, robot: Robot) -> Robot:
        with self._lock:
            if robot.id in self._robots:
                raise ValidationError(f"duplicate robot id: {robot.id}")
            self._robots[robot.id] = replace(robot)
            return replace(robot)

    def get_robot(self, robot_id: str) -> Robot | None:
        with self._lock:
            robot = self._robots.get(robot_id)
            return replace(robot) if robot else None

    def list_robots(self, exclude_statuses: Iterable[str] = ()) -> list[Robot]:
        excluded = set(exclude_statuses)
        with self._lock:
            return [replace(r) for r in self._robots.values() if r.status not in excluded]

    def update_robot(self, robot_id: str, **fields: Any) -> Robot:
        with self._lock:
            robot = self._robots.get(robot_id)
            if robot is None:
                raise NotFoundError(f"robot not found: {robot_id}")
            updated = replace(robot, **fields)
            self._robots[robot_id] = updated
            return replace(updated)

    def claim_robot(self, robot_id: str, task_id: str, min_battery: float) -> bool:
        with self._lock:
            robot = self._robots.get(robot_id)
            if robot is None:
                return False
            if robot.current_task_id is not None:
                return False
            if robot.status in UNCLAIMABLE_ROBOT_STATES or robot.battery_level < min_battery:
                return False
            self._robots[robot_id] = replace(robot, status="working", current_task_id=task_id)
            return True

    def release_robot(self, robot_id: str, task_id: str, status: str) -> bool:
        with self._lock:
            robot = self._robots.get(robot_id)
            if robot is None or robot.current_task_id != task_id:
                return False
            self._robots[robot_id] = replace(robot, status=status, current_task_id=None)
            return True

    def reset_robots(self, battery_level: float | None = None) -> None:
        with self._lock:
            for robot_id, robot in self._robots.items():
                fields: dict[str, Any] = {"status": "idle", "current_task_id": None}
                if battery_level is not None:
                    fields["battery_level"] = battery_level
                self._robots[robot_id] = replace(robot, **fields)

    # Tasks

    def add_task(self, task: Task) -> Task:
        with self._lock:
            self._tasks[task.id] = replace(task)
            self._task_seq[task.id] = len(self._task_seq)
            return replace(task)

    def get_task(self, task_id: str) -> Task | None:
        with self._lock:
            task = self._tasks.get(task_id)
            return replace(task) if task else None

    def list_tasks(self, run_id: str | None = None, status: str | None = None) -> list[Task]:
        with self._lock:
            rows = [
                t
                for t in self._tasks.values()
                if (run_id is None or t.run_id == run_id) and (status is None or t.status == status)
            ]
            rows.sort(key=lambda t: (-t.priority, self._task_seq[t.id]))
            return [replace(t) for t in rows]

    def update_task(self, task_id: str, **fields: Any) -> Task:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise NotFoundError(f"task not found: {task_id}")
            updated = replace(task, **fields)
            self._tasks[task_id] = updated
            return replace(updated)

    def claim_task(self, task_id: str, robot_id: str) -> bool:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status != "pending":
                return False
            self._tasks[task_id] = replace(task, status="assigned", robot_id=robot_id, assigned_at=utcnow())
            return True

    def count_tasks_since(self, status: str, since: datetime) -> int:
        with self._lock:
            return sum(1 for t in self._tasks.values() if t.status == status and t.created_at > since)

    # Runs

    def create_run(self, scenario_id: str, strategy: dict[str, Any]) -> SimulationRun:
        with self._lock:
            count = sum(1 for r in self._runs.values() if r.scenario_id == scenario_id)
            run = SimulationRun(scenario_id=scenario_id, run_number=count + 1, strategy=dict(strategy))
            self._runs[run.id] = run
            return replace(run)

    def get_run(self, run_id: str) -> SimulationRun | None:
        with self._lock:
            run = self._runs.get(run_id)
            return replace(run) if run else None

    def update_run(self, run_id: str, **fields: Any) -> SimulationRun:
        with self._lock:
            run = self._runs.get(run_id)
            if run is None:
                raise NotFoundError(f"run not found: {run_id}")
            updated = replace(run, **fields)
            self._runs[run_id] = updated
            return replace(updated)

    def list_runs(self, scenario_id: str) -> list[SimulationRun]:
        with self._lock:
            rows = [r for r in self._runs.values() if r.scenario_id == scenario_id]
            rows.sort(key=lambda r: r.run_number)
            return [replace(r) for r in rows]

    def get_previous_run(self, scenario_id: str, run_number: int) -> SimulationRun | None:
        earlier = [r for r in self.list_runs(scenario_id) if r.run_number < run_number]
        return earlier[-1] if earlier else None

    def get_running_run(self) -> SimulationRun | None:
        with self._lock:
            for run in self._runs.values():
                if run.status == "running":
                    return replace(run)
        return None

    # Metrics

    def upsert_metrics(self, metrics: RunMetrics) -> RunMetrics:
        with self._lock:
            self._metrics[metrics.run_id] = replace(metrics)
            return replace(metrics)

    def get_metrics(self, run_id: str) -> RunMetrics | None:
        with self._lock:
            metrics = self._metrics.get(run_id)
            return replace(metrics) if metrics else None

    def list_recent_metrics(self, limit: int = 10) -> list[RunMetrics]:
        with self._lock:
            ordered = sorted(
                self._metrics.values(),
                key=lambda m: self._runs[m.run_id].start_time if m.run_id in self._runs else utcnow(),
                reverse=True,
            )
            return [replace(m) for m in ordered[:limit]]

    # Decisions

    def add_decision(self, decision: AIDecision) -> AIDecision:
        with self._lock:
            self._decisions.append(replace(decision))
            return replace(decision)

    def list_decisions(self, run_id: str | None = None, limit: int = 20) -> list[AIDecision]:
        with self._lock:
            rows = [d for d in self._decisions if run_id is None or d.run_id == run_id]
            return [replace(d) for d in reversed(rows)][:limit]
