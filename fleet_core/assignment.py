from __future__ import annotations

"""
File: fleet_core/assignment.py
Purpose: Greedy nearest-robot assignment of pending tasks.
Key responsibilities:
- Filter robots by availability and battery threshold.
- Walk pending tasks by priority and bind each to the nearest free robot.
- Bind through conditional store claims so concurrent calls cannot double-book a robot.
Key entrypoints:
- AssignmentEngine.auto_optimize()
- plan_nearest_first()
"""

import logging
from math import hypot
from typing import Any, Iterable, Sequence

from fleet_core.entities import AIDecision, Robot, Task
from fleet_core.settings import settings
from fleet_core.store.base import UNCLAIMABLE_ROBOT_STATES, FleetStore

logger = logging.getLogger("fleet-core.assignment")

STRATEGY_TAG = "nearest-first-with-battery-threshold"


def _distance(ax: float, ay: float, bx: float, by: float) -> float:
    """Euclidean distance helper."""
    return hypot(ax - bx, ay - by)


def eligible_robots(robots: Iterable[Robot], battery_threshold: float) -> list[Robot]:
    """Robots that may take a task right now, in scan order."""
    return [
        r
        for r in robots
        if r.status not in UNCLAIMABLE_ROBOT_STATES
        and r.battery_level >= battery_threshold
        and r.current_task_id is None
    ]


def rank_robots(task: Task, robots: Sequence[Robot], exclude: set[str]) -> list[tuple[float, Robot]]:
    """Candidates for a task, nearest first; equal distances keep scan order."""
    ranked = [
        (_distance(r.position_x, r.position_y, task.origin_x, task.origin_y), r)
        for r in robots
        if r.id not in exclude
    ]
    ranked.sort(key=lambda item: item[0])
    return ranked


def plan_nearest_first(robots: Sequence[Robot], tasks: Sequence[Task], battery_threshold: float) -> list[dict[str, Any]]:
    """Compute nearest-first assignments without touching the store."""
    candidates = eligible_robots(robots, battery_threshold)
    used: set[str] = set()
    plan: list[dict[str, Any]] = []
    for task in tasks:
        ranked = rank_robots(task, candidates, used)
        if not ranked:
            continue
        distance, robot = ranked[0]
        used.add(robot.id)
        plan.append({
            "task_id": task.id,
            "robot_id": robot.id,
            "reasoning": f"nearest eligible robot {robot.name} at {distance:.1f} units",
        })
    return plan


class AssignmentEngine:
    """Binds pending tasks to robots, nearest first, under a battery threshold."""

    def __init__(self, store: FleetStore, battery_threshold: float | None = None) -> None:
        self.store = store
        self.battery_threshold = settings.battery_threshold if battery_threshold is None else battery_threshold

    def auto_optimize(self) -> dict[str, Any]:
        """Assign every pending task that has an eligible robot."""
        robots = self.store.list_robots(exclude_statuses=UNCLAIMABLE_ROBOT_STATES)
        pending = self.store.list_tasks(status="pending")
        strategy = f"nearest-first with battery threshold ({self.battery_threshold:g}%)"

        if not pending:
            return {"message": "No pending tasks to optimize", "assignments": [], "unassigned": [], "strategy": strategy}

        candidates = eligible_robots(robots, self.battery_threshold)
        bound: set[str] = set()
        assignments: list[dict[str, Any]] = []
        unassigned: list[str] = []

        for task in pending:
            assignment = self._bind_nearest(task, candidates, bound)
            if assignment is None:
                unassigned.append(task.id)
                continue
            assignments.append(assignment)

        if assignments:
            self._record_decision(len(robots), len(pending), assignments)

        logger.info(
            "auto optimize assigned=%s unassigned=%s candidates=%s",
            len(assignments),
            len(unassigned),
            len(candidates),
        )
        return {
            "message": f"Optimized {len(assignments)} task assignments",
            "assignments": assignments,
            "unassigned": unassigned,
            "strategy": strategy,
        }

    def _bind_nearest(self, task: Task, candidates: Sequence[Robot], bound: set[str]) -> dict[str, Any] | None:
        """Claim the nearest robot for task; None when nothing could be bound."""
        for distance, robot in rank_robots(task, candidates, bound):
            if not self.store.claim_robot(robot.id, task.id, self.battery_threshold):
                # Taken or drained since it was read; not a candidate for the rest of this call.
                logger.info("robot claim lost robot_id=%s task_id=%s", robot.id, task.id)
                bound.add(robot.id)
                continue
            if not self.store.claim_task(task.id, robot.id):
                logger.info("task claim lost task_id=%s robot_id=%s", task.id, robot.id)
                if not self.store.release_robot(robot.id, task.id, robot.status):
                    logger.warning("robot changed before release robot_id=%s task_id=%s", robot.id, task.id)
                return None
            bound.add(robot.id)
            return {
                "task_id": task.id,
                "robot_id": robot.id,
                "robot_name": robot.name,
                "distance": round(distance, 1),
                "priority": task.priority,
            }
        return None

    def _record_decision(self, robot_count: int, pending_count: int, assignments: list[dict[str, Any]]) -> None:
        """Audit the assignment pass against the running run, if one exists."""
        run = self.store.get_running_run()
        if run is None:
            return
        self.store.add_decision(
            AIDecision(
                run_id=run.id,
                decision_type="auto_optimize",
                input_state={"robots": robot_count, "pending_tasks": pending_count},
                decision_output={"assignments": assignments, "strategy": STRATEGY_TAG},
                confidence=0.85,
                latency_ms=0.0,
            )
        )
