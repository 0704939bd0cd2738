from __future__ import annotations

"""
File: fleet_core/scenarios.py
Purpose: Disruption scenario catalog and engine.
Key responsibilities:
- Define the closed set of scenario kinds with one handler each.
- Validate triggers before any state is touched.
- Apply the fleet mutation, then ask the oracle for a response plan.
Key entrypoints:
- DisruptionEngine.trigger(), DisruptionEngine.list_scenarios()
"""

from dataclasses import dataclass
from enum import Enum
import logging
import random
from typing import Any, Callable

from fleet_core.entities import Robot, Task, TERMINAL_TASK_STATES, to_payload
from fleet_core.errors import NotFoundError, ValidationError
from fleet_core.oracle.adapter import DecisionOracle
from fleet_core.settings import settings
from fleet_core.store.base import FleetStore

logger = logging.getLogger("fleet-core.scenarios")

DEMAND_SPIKE_TASKS = 15
DEMAND_SPIKE_PRIORITY = (7, 9)
BATTERY_DRAIN = 40.0
BATTERY_FLOOR = 5.0
CHARGING_BELOW = 20.0
EMERGENCY_PRIORITY = 10
EMERGENCY_ORIGIN = (50.0, 50.0)
EMERGENCY_DESTINATION = (95.0, 95.0)
PRIORITY_DEMOTION = 2
BLOCKED_ZONE = {"x_min": 40.0, "x_max": 60.0, "y_min": 40.0, "y_max": 60.0}


class ScenarioKind(str, Enum):
    DEMAND_SPIKE = "demand_spike"
    ROBOT_FAILURE = "robot_failure"
    BATTERY_SHORTAGE = "battery_shortage"
    EMERGENCY_ORDER = "emergency_order"
    BLOCKED_PATH = "blocked_path"


@dataclass(frozen=True)
class ScenarioSpec:
    kind: ScenarioKind
    name: str
    description: str


CATALOG: dict[ScenarioKind, ScenarioSpec] = {
    ScenarioKind.DEMAND_SPIKE: ScenarioSpec(ScenarioKind.DEMAND_SPIKE, "Demand Spike", "3x surge in delivery orders"),
    ScenarioKind.ROBOT_FAILURE: ScenarioSpec(ScenarioKind.ROBOT_FAILURE, "Robot Failure", "Random robot goes offline"),
    ScenarioKind.BATTERY_SHORTAGE: ScenarioSpec(
        ScenarioKind.BATTERY_SHORTAGE, "Battery Shortage", "All robots lose 40% battery"
    ),
    ScenarioKind.EMERGENCY_ORDER: ScenarioSpec(
        ScenarioKind.EMERGENCY_ORDER,
        "Emergency Priority Order",
        "Critical delivery injected - must be completed first",
    ),
    ScenarioKind.BLOCKED_PATH: ScenarioSpec(
        ScenarioKind.BLOCKED_PATH, "Blocked Path", "Grid zones 40-60 become impassable"
    ),
}


def parse_kind(raw: str) -> ScenarioKind:
    """Map a scenario kind string onto the catalog."""
    try:
        return ScenarioKind(raw)
    except ValueError:
        raise ValidationError(f"unknown scenario: {raw}") from None


def in_blocked_zone(robot: Robot) -> bool:
    return (
        BLOCKED_ZONE["x_min"] <= robot.position_x <= BLOCKED_ZONE["x_max"]
        and BLOCKED_ZONE["y_min"] <= robot.position_y <= BLOCKED_ZONE["y_max"]
    )


class DisruptionEngine:
    """Applies catalog scenarios to the fleet and requests an oracle response."""

    def __init__(
        self,
        store: FleetStore,
        oracle: DecisionOracle,
        rng: random.Random | None = None,
        world_size: int | None = None,
    ) -> None:
        self.store = store
        self.oracle = oracle
        self.rng = rng or random.Random(settings.scenario_seed)
        self.world_size = settings.world_size if world_size is None else world_size
        self._handlers: dict[ScenarioKind, Callable[[str], dict[str, Any]]] = {
            ScenarioKind.DEMAND_SPIKE: self._demand_spike,
            ScenarioKind.ROBOT_FAILURE: self._robot_failure,
            ScenarioKind.BATTERY_SHORTAGE: self._battery_shortage,
            ScenarioKind.EMERGENCY_ORDER: self._emergency_order,
            ScenarioKind.BLOCKED_PATH: self._blocked_path,
        }
        missing = (set(ScenarioKind) - set(self._handlers)) | (set(ScenarioKind) - set(CATALOG))
        if missing:
            raise RuntimeError(f"scenario kinds without handler or catalog entry: {sorted(k.value for k in missing)}")

    def list_scenarios(self) -> list[dict[str, str]]:
        """Return the catalog as id/name/description entries."""
        return [
            {"id": spec.kind.value, "name": spec.name, "description": spec.description}
            for spec in CATALOG.values()
        ]

    def trigger(self, run_id: str | None, scenario_kind: str | None) -> dict[str, Any]:
        """Apply a scenario to the fleet, then attach the oracle's response plan."""
        if not run_id or not scenario_kind:
            raise ValidationError("run_id and scenario_type are required")
        kind = parse_kind(scenario_kind)
        if self.store.get_run(run_id) is None:
            raise NotFoundError(f"run not found: {run_id}")

        spec = CATALOG[kind]
        result = self._handlers[kind](run_id)
        logger.info("scenario applied run_id=%s kind=%s", run_id, kind.value)
        # Not transactional with the mutation above: an oracle-side crash leaves the disruption in place.
        result["ai_response"] = self.oracle.handle_failure(run_id, kind.value, spec.description)
        return {"name": spec.name, "kind": kind.value, "description": spec.description, "result": result}

    def _release_task(self, robot: Robot) -> str | None:
        """Return the robot's task to the pending pool."""
        task_id = robot.current_task_id
        if task_id is None:
            return None
        task = self.store.get_task(task_id)
        if task is not None and task.status not in TERMINAL_TASK_STATES:
            self.store.update_task(task_id, status="pending", robot_id=None, assigned_at=None)
            logger.info("task released task_id=%s robot_id=%s", task_id, robot.id)
        return task_id

    def _demand_spike(self, run_id: str) -> dict[str, Any]:
        created: list[str] = []
        low, high = DEMAND_SPIKE_PRIORITY
        for _ in range(DEMAND_SPIKE_TASKS):
            task = Task(
                run_id=run_id,
                type="delivery",
                priority=self.rng.randint(low, high),
                origin_x=round(self.rng.uniform(0, self.world_size), 3),
                origin_y=round(self.rng.uniform(0, self.world_size), 3),
                destination_x=round(self.rng.uniform(0, self.world_size), 3),
                destination_y=round(self.rng.uniform(0, self.world_size), 3),
            )
            self.store.add_task(task)
            created.append(task.id)
        return {"tasks_created": len(created), "task_ids": created}

    def _robot_failure(self, run_id: str) -> dict[str, Any]:
        candidates = self.store.list_robots(exclude_statuses=("offline",))
        if not candidates:
            return {"failed_robot": None, "robot_id": None, "released_task": None}
        robot = self.rng.choice(candidates)
        released = self._release_task(robot)
        self.store.update_robot(robot.id, status="offline", current_task_id=None)
        return {"failed_robot": robot.name, "robot_id": robot.id, "released_task": released}

    def _battery_shortage(self, run_id: str) -> dict[str, Any]:
        affected: list[dict[str, Any]] = []
        for robot in self.store.list_robots(exclude_statuses=("offline",)):
            battery = max(robot.battery_level - BATTERY_DRAIN, BATTERY_FLOOR)
            fields: dict[str, Any] = {"battery_level": battery}
            if battery < CHARGING_BELOW:
                self._release_task(robot)
                fields.update(status="charging", current_task_id=None)
            updated = self.store.update_robot(robot.id, **fields)
            affected.append({"name": updated.name, "battery_level": updated.battery_level, "status": updated.status})
        return {"robots_affected": affected}

    def _emergency_order(self, run_id: str) -> dict[str, Any]:
        emergency = Task(
            run_id=run_id,
            type="emergency",
            priority=EMERGENCY_PRIORITY,
            origin_x=EMERGENCY_ORIGIN[0],
            origin_y=EMERGENCY_ORIGIN[1],
            destination_x=EMERGENCY_DESTINATION[0],
            destination_y=EMERGENCY_DESTINATION[1],
        )
        self.store.add_task(emergency)
        demoted = 0
        for task in self.store.list_tasks(run_id=run_id):
            if task.type == "emergency":
                continue
            self.store.update_task(task.id, priority=max(task.priority - PRIORITY_DEMOTION, 1))
            demoted += 1
        return {"emergency_task": to_payload(emergency), "tasks_demoted": demoted}

    def _blocked_path(self, run_id: str) -> dict[str, Any]:
        affected: list[dict[str, Any]] = []
        for robot in self.store.list_robots(exclude_statuses=("offline",)):
            if not in_blocked_zone(robot):
                continue
            self._release_task(robot)
            self.store.update_robot(robot.id, status="rerouting", current_task_id=None)
            affected.append({"name": robot.name, "position_x": robot.position_x, "position_y": robot.position_y})
        return {"blocked_zone": dict(BLOCKED_ZONE), "robots_affected": affected}
