from __future__ import annotations

"""
File: fleet_core/store/base.py
Purpose: Store contract shared by the in-memory and MySQL fleet stores.
Key responsibilities:
- Row-level CRUD for robots, tasks, runs, metrics and decisions.
- Conditional claims that serialize robot/task binding.
"""

from datetime import datetime
from typing import Any, Iterable, Protocol

from fleet_core.entities import AIDecision, Robot, RunMetrics, SimulationRun, Task

# Statuses a robot must not be in to accept a task.
UNCLAIMABLE_ROBOT_STATES = ("offline", "charging")


class FleetStore(Protocol):
    """Persistent store the core reads and writes fleet records through.

    Implementations raise NotFoundError from update_* when the record is
    missing and PersistenceError when the backend fails.
    """

    def add_robot(self, robot: Robot) -> Robot: ...

    def get_robot(self, robot_id: str) -> Robot | None: ...

    def list_robots(self, exclude_statuses: Iterable[str] = ()) -> list[Robot]:
        """Robots in registration order, optionally skipping some statuses."""
        ...

    def update_robot(self, robot_id: str, **fields: Any) -> Robot: ...

    def claim_robot(self, robot_id: str, task_id: str, min_battery: float) -> bool:
        """Atomically bind a free robot to a task.

        Succeeds only while the robot holds no task, is not offline or
        charging, and has at least min_battery charge.
        """
        ...

    def release_robot(self, robot_id: str, task_id: str, status: str) -> bool:
        """Undo a claim: clear the task and restore status, only while the robot still holds task_id."""
        ...

    def reset_robots(self, battery_level: float | None = None) -> None:
        """Set every robot idle with no task, optionally recharging it."""
        ...

    def add_task(self, task: Task) -> Task: ...

    def get_task(self, task_id: str) -> Task | None: ...

    def list_tasks(self, run_id: str | None = None, status: str | None = None) -> list[Task]:
        """Tasks ordered by priority descending, then insertion order."""
        ...

    def update_task(self, task_id: str, **fields: Any) -> Task: ...

    def claim_task(self, task_id: str, robot_id: str) -> bool:
        """Atomically move a pending task to assigned for robot_id."""
        ...

    def count_tasks_since(self, status: str, since: datetime) -> int: ...

    def create_run(self, scenario_id: str, strategy: dict[str, Any]) -> SimulationRun:
        """Insert a running run numbered one past the scenario's run count."""
        ...

    def get_run(self, run_id: str) -> SimulationRun | None: ...

    def update_run(self, run_id: str, **fields: Any) -> SimulationRun: ...

    def list_runs(self, scenario_id: str) -> list[SimulationRun]:
        """Runs of a scenario ordered by run_number ascending."""
        ...

    def get_previous_run(self, scenario_id: str, run_number: int) -> SimulationRun | None: ...

    def get_running_run(self) -> SimulationRun | None: ...

    def upsert_metrics(self, metrics: RunMetrics) -> RunMetrics: ...

    def get_metrics(self, run_id: str) -> RunMetrics | None: ...

    def list_recent_metrics(self, limit: int = 10) -> list[RunMetrics]: ...

    def add_decision(self, decision: AIDecision) -> AIDecision: ...

    def list_decisions(self, run_id: str | None = None, limit: int = 20) -> list[AIDecision]:
        """Newest decisions first."""
        ...
