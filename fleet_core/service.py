from __future__ import annotations

"""
File: fleet_core/service.py
Purpose: Command-center facade wiring store, oracle, scenarios, assignment and alerting.
Key responsibilities:
- Build every component once from Settings.
- Expose the public operations as plain methods returning JSON-ready dicts.
Key entrypoints:
- build_command_center(), FleetCommandCenter
"""

import logging
import random
from typing import Any

import httpx

from fleet_core.alerting import AlertLog, AlertMonitor, NotificationSink, WebhookNotifier
from fleet_core.assignment import AssignmentEngine
from fleet_core.entities import Robot, new_id, to_payload
from fleet_core.errors import ValidationError
from fleet_core.improvement import StrategyImprover
from fleet_core.oracle import DecisionOracle, select_generator
from fleet_core.runs import RunLifecycle
from fleet_core.scenarios import DisruptionEngine
from fleet_core.settings import Settings
from fleet_core.store import FleetStore, build_store

logger = logging.getLogger("fleet-core.service")


class FleetCommandCenter:
    """Single entry surface over the fleet components."""

    def __init__(
        self,
        store: FleetStore,
        oracle: DecisionOracle,
        scenarios: DisruptionEngine,
        assignment: AssignmentEngine,
        improver: StrategyImprover,
        monitor: AlertMonitor,
        lifecycle: RunLifecycle,
    ) -> None:
        self.store = store
        self.oracle = oracle
        self.scenarios = scenarios
        self.assignment = assignment
        self.improver = improver
        self.monitor = monitor
        self.lifecycle = lifecycle

    # Fleet

    def register_robot(
        self,
        name: str,
        position: tuple[float, float] = (0.0, 0.0),
        robot_type: str = "delivery",
        battery_level: float = 100.0,
    ) -> dict[str, Any]:
        if not name:
            raise ValidationError("robot name is required")
        if not 0.0 <= battery_level <= 100.0:
            raise ValidationError(f"battery_level must be in [0, 100]: {battery_level}")
        robot = Robot(
            id=new_id(),
            name=name,
            type=robot_type,
            battery_level=float(battery_level),
            position_x=float(position[0]),
            position_y=float(position[1]),
        )
        return to_payload(self.store.add_robot(robot))

    def list_robots(self) -> list[dict[str, Any]]:
        return [to_payload(r) for r in self.store.list_robots()]

    # Oracle

    def optimize_tasks(self, run_id: str) -> dict[str, Any]:
        return self.oracle.optimize_tasks(run_id)

    def analyze_run(self, run_id: str) -> dict[str, Any]:
        return self.oracle.analyze_run(run_id)

    def handle_failure(self, run_id: str, scenario_kind: str) -> dict[str, Any]:
        return self.oracle.handle_failure(run_id, scenario_kind)

    def recommend_scaling(self, run_id: str) -> dict[str, Any]:
        return self.oracle.recommend_scaling(run_id)

    def copilot_chat(self, question: str) -> dict[str, Any]:
        return self.oracle.copilot_chat(question)

    def list_decisions(self, run_id: str | None = None, limit: int = 20) -> list[dict[str, Any]]:
        if limit <= 0:
            raise ValidationError(f"limit must be > 0: {limit}")
        return [to_payload(d) for d in self.store.list_decisions(run_id=run_id, limit=limit)]

    # Scenarios

    def trigger_scenario(self, run_id: str, scenario_kind: str) -> dict[str, Any]:
        return self.scenarios.trigger(run_id, scenario_kind)

    def list_scenarios(self) -> list[dict[str, str]]:
        return self.scenarios.list_scenarios()

    # Assignment and improvement

    def auto_optimize(self) -> dict[str, Any]:
        return self.assignment.auto_optimize()

    def improve_strategy(self, scenario_id: str) -> dict[str, Any]:
        return self.improver.improve_strategy(scenario_id)

    # Alerts

    def check_fleet_health(self) -> list[dict[str, Any]]:
        return self.monitor.check_fleet_health()

    def get_alert_log(self) -> list[dict[str, Any]]:
        return self.monitor.alert_log()

    # Runs and tasks

    def start_run(self, scenario_id: str, strategy: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.lifecycle.start_run(scenario_id, strategy)

    def stop_run(self, run_id: str, final_score: float | None = None) -> dict[str, Any]:
        return self.lifecycle.stop_run(run_id, final_score)

    def create_task(
        self,
        run_id: str,
        origin: tuple[float, float],
        destination: tuple[float, float],
        priority: int = 5,
        task_type: str = "delivery",
    ) -> dict[str, Any]:
        return to_payload(self.lifecycle.create_task(run_id, origin, destination, priority, task_type))

    def update_task_status(self, task_id: str, status: str) -> dict[str, Any]:
        return to_payload(self.lifecycle.update_task_status(task_id, status))

    def record_metrics(self, run_id: str, **fields: Any) -> dict[str, Any]:
        return to_payload(self.lifecycle.record_metrics(run_id, **fields))


def build_command_center(
    config: Settings,
    store: FleetStore | None = None,
    transport: httpx.BaseTransport | None = None,
    rng: random.Random | None = None,
    sink: NotificationSink | None = None,
) -> FleetCommandCenter:
    """Wire the command center from settings; store, transport, rng and sink may be injected."""
    store = store if store is not None else build_store(config)
    oracle = DecisionOracle(store, select_generator(config, transport))
    if sink is None and config.alert_webhook_url:
        sink = WebhookNotifier(config.alert_webhook_url, config.notify_timeout_s, transport)
    monitor = AlertMonitor(store, AlertLog(config.alert_log_capacity), sink)
    logger.info(
        "command center ready store=%s oracle_remote=%s webhook=%s",
        config.fleet_store,
        bool(config.oracle_api_key),
        sink is not None,
    )
    return FleetCommandCenter(
        store=store,
        oracle=oracle,
        scenarios=DisruptionEngine(store, oracle, rng=rng or random.Random(config.scenario_seed), world_size=config.world_size),
        assignment=AssignmentEngine(store, battery_threshold=config.battery_threshold),
        improver=StrategyImprover(store, oracle),
        monitor=monitor,
        lifecycle=RunLifecycle(store),
    )
