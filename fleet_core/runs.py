from __future__ import annotations

"""
File: fleet_core/runs.py
Purpose: Simulation run and task lifecycle operations.
Key responsibilities:
- Start runs with per-scenario run numbers and a fresh fleet.
- Finalize open tasks, persist metrics and close runs.
- Create tasks and move them through their status transitions.
"""

import logging
from typing import Any

from fleet_core.entities import OPEN_TASK_STATES, RunMetrics, Task, to_payload, utcnow
from fleet_core.errors import NotFoundError, ValidationError
from fleet_core.metrics import compute_run_metrics
from fleet_core.store.base import FleetStore

logger = logging.getLogger("fleet-core.runs")

TASK_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"failed"}),
    "assigned": frozenset({"working", "completed", "failed"}),
    "working": frozenset({"completed", "failed"}),
    "completed": frozenset(),
    "failed": frozenset(),
}


class RunLifecycle:
    """Run start/stop and task status handling against the store."""

    def __init__(self, store: FleetStore) -> None:
        self.store = store

    def start_run(self, scenario_id: str, strategy: dict[str, Any] | None = None) -> dict[str, Any]:
        if not scenario_id:
            raise ValidationError("scenario_id is required")
        run = self.store.create_run(scenario_id, strategy or {})
        released = 0
        for task in self.store.list_tasks():
            if task.status in ("assigned", "working"):
                # The robot reset below drops every binding.
                self.store.update_task(task.id, status="pending", robot_id=None, assigned_at=None)
                released += 1
        self.store.reset_robots(battery_level=100.0)
        logger.info(
            "run started run_id=%s scenario_id=%s run_number=%s released_tasks=%s",
            run.id,
            scenario_id,
            run.run_number,
            released,
        )
        return {"run": to_payload(run), "message": f"Run #{run.run_number} started"}

    def stop_run(self, run_id: str, final_score: float | None = None) -> dict[str, Any]:
        """Fail leftover tasks, store metrics and mark the run completed."""
        if not run_id:
            raise ValidationError("run_id is required")
        run = self.store.get_run(run_id)
        if run is None:
            raise NotFoundError(f"run not found: {run_id}")
        if run.status == "completed":
            raise ValidationError(f"run already completed: {run_id}")

        ended_at = utcnow()
        for task in self.store.list_tasks(run_id=run_id):
            if task.status in OPEN_TASK_STATES:
                self._close_task(task, "failed")

        metrics = compute_run_metrics(
            run_id=run_id,
            tasks=self.store.list_tasks(run_id=run_id),
            robots=self.store.list_robots(),
            decisions=self.store.list_decisions(run_id=run_id, limit=10_000),
            started_at=run.start_time,
            ended_at=ended_at,
        )
        self.store.upsert_metrics(metrics)
        score = metrics.efficiency_score if final_score is None else float(final_score)
        closed = self.store.update_run(run_id, status="completed", end_time=ended_at, final_score=score)
        self.store.reset_robots()
        logger.info("run completed run_id=%s final_score=%s metrics=%s", run_id, score, metrics)
        return {"run": to_payload(closed), "metrics": to_payload(metrics)}

    def create_task(
        self,
        run_id: str,
        origin: tuple[float, float],
        destination: tuple[float, float],
        priority: int = 5,
        task_type: str = "delivery",
    ) -> Task:
        if not run_id:
            raise ValidationError("run_id is required")
        if not isinstance(priority, int) or not 1 <= priority <= 10:
            raise ValidationError(f"priority must be an integer in [1, 10]: {priority}")
        if self.store.get_run(run_id) is None:
            raise NotFoundError(f"run not found: {run_id}")
        task = Task(
            run_id=run_id,
            type=task_type,
            priority=priority,
            origin_x=float(origin[0]),
            origin_y=float(origin[1]),
            destination_x=float(destination[0]),
            destination_y=float(destination[1]),
        )
        return self.store.add_task(task)

    def update_task_status(self, task_id: str, status: str) -> Task:
        if not task_id:
            raise ValidationError("task_id is required")
        if status not in TASK_TRANSITIONS:
            raise ValidationError(f"invalid task status: {status}")
        task = self.store.get_task(task_id)
        if task is None:
            raise NotFoundError(f"task not found: {task_id}")
        if status not in TASK_TRANSITIONS[task.status]:
            raise ValidationError(f"invalid transition {task.status}->{status} task_id={task_id}")
        if status in {"completed", "failed"}:
            return self._close_task(task, status)
        updated = self.store.update_task(task_id, status=status)
        if status == "working" and task.robot_id:
            self.store.update_robot(task.robot_id, status="working")
        return updated

    def record_metrics(self, run_id: str, **fields: Any) -> RunMetrics:
        """Upsert externally measured metrics for a run."""
        if self.store.get_run(run_id) is None:
            raise NotFoundError(f"run not found: {run_id}")
        efficiency = float(fields.get("efficiency_score", 0.0))
        if not 0.0 <= efficiency <= 100.0:
            raise ValidationError(f"efficiency_score must be in [0, 100]: {efficiency}")
        return self.store.upsert_metrics(RunMetrics(run_id=run_id, **fields))

    def _close_task(self, task: Task, status: str) -> Task:
        """Move a task to a terminal status and free the robot holding it."""
        closed = self.store.update_task(task.id, status=status, completed_at=utcnow())
        if task.robot_id:
            robot = self.store.get_robot(task.robot_id)
            if robot is not None and robot.current_task_id == task.id:
                self.store.update_robot(robot.id, status="idle", current_task_id=None)
        return closed
