from __future__ import annotations

"""
File: fleet_core/main.py
Purpose: Command-line entrypoint for the fleet command core.
Key responsibilities:
- Configure logging and build the command center from settings.
- Map subcommands onto command-center operations and print JSON results.
Key entrypoints:
- main()
Config/env vars:
- See fleet_core/settings.py
"""

import argparse
import json
import logging
import sys
from typing import Any, Callable

from fleet_core.errors import FleetError
from fleet_core.service import FleetCommandCenter, build_command_center
from fleet_core.settings import settings
from fleet_core.store import MySQLFleetStore

logger = logging.getLogger("fleet-core")

DEMO_ROBOTS = [
    ("AMR-01", (10.0, 10.0)),
    ("AMR-02", (50.0, 50.0)),
    ("AMR-03", (90.0, 20.0)),
    ("AMR-04", (30.0, 80.0)),
]


def _point(raw: str) -> tuple[float, float]:
    try:
        x, y = (float(part) for part in raw.split(","))
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected x,y got {raw!r}") from None
    return x, y


def _demo(center: FleetCommandCenter, args: argparse.Namespace) -> dict[str, Any]:
    """Seed a small fleet and walk one run through its lifecycle."""
    for name, position in DEMO_ROBOTS:
        center.register_robot(name, position)
    run = center.start_run(args.scenario_id)["run"]
    for origin, destination, priority in (((12, 14), (40, 40), 6), ((55, 48), (70, 90), 4), ((85, 25), (20, 20), 8)):
        center.create_task(run["id"], origin, destination, priority)
    assigned = center.auto_optimize()
    scenario = center.trigger_scenario(run["id"], args.scenario)
    health = center.check_fleet_health()
    stopped = center.stop_run(run["id"])
    improved = center.improve_strategy(args.scenario_id)
    return {
        "run": stopped["run"],
        "metrics": stopped["metrics"],
        "assignment": assigned,
        "scenario": scenario,
        "alerts": health,
        "improvement": improved,
    }


def _init_db(center: FleetCommandCenter, args: argparse.Namespace) -> dict[str, Any]:
    if not isinstance(center.store, MySQLFleetStore):
        return {"message": "in-memory store needs no schema"}
    center.store.ensure_schema()
    return {"message": "schema ready"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fleet-core", description="Fleet command core operations")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list-scenarios")
    sub.add_parser("list-robots")
    sub.add_parser("auto-optimize")
    sub.add_parser("check-health")
    sub.add_parser("alert-log")
    sub.add_parser("init-db")

    p = sub.add_parser("register-robot")
    p.add_argument("name")
    p.add_argument("--position", type=_point, default=(0.0, 0.0))
    p.add_argument("--type", dest="robot_type", default="delivery")
    p.add_argument("--battery", type=float, default=100.0)

    p = sub.add_parser("start-run")
    p.add_argument("scenario_id")
    p.add_argument("--strategy", type=json.loads, default=None)

    p = sub.add_parser("stop-run")
    p.add_argument("run_id")
    p.add_argument("--final-score", type=float, default=None)

    p = sub.add_parser("create-task")
    p.add_argument("run_id")
    p.add_argument("origin", type=_point)
    p.add_argument("destination", type=_point)
    p.add_argument("--priority", type=int, default=5)
    p.add_argument("--type", dest="task_type", default="delivery")

    p = sub.add_parser("update-task")
    p.add_argument("task_id")
    p.add_argument("status")

    p = sub.add_parser("trigger")
    p.add_argument("run_id")
    p.add_argument("scenario")

    for name in ("optimize-tasks", "analyze-run", "recommend-scaling"):
        p = sub.add_parser(name)
        p.add_argument("run_id")

    p = sub.add_parser("handle-failure")
    p.add_argument("run_id")
    p.add_argument("scenario")

    p = sub.add_parser("improve")
    p.add_argument("scenario_id")

    p = sub.add_parser("decisions")
    p.add_argument("--run-id", default=None)
    p.add_argument("--limit", type=int, default=20)

    p = sub.add_parser("copilot")
    p.add_argument("question")

    p = sub.add_parser("demo")
    p.add_argument("--scenario-id", default="warehouse-demo")
    p.add_argument("--scenario", default="battery_shortage")
    return parser


COMMANDS: dict[str, Callable[[FleetCommandCenter, argparse.Namespace], Any]] = {
    "list-scenarios": lambda c, a: c.list_scenarios(),
    "list-robots": lambda c, a: c.list_robots(),
    "auto-optimize": lambda c, a: c.auto_optimize(),
    "check-health": lambda c, a: c.check_fleet_health(),
    "alert-log": lambda c, a: c.get_alert_log(),
    "register-robot": lambda c, a: c.register_robot(a.name, a.position, a.robot_type, a.battery),
    "start-run": lambda c, a: c.start_run(a.scenario_id, a.strategy),
    "stop-run": lambda c, a: c.stop_run(a.run_id, a.final_score),
    "create-task": lambda c, a: c.create_task(a.run_id, a.origin, a.destination, a.priority, a.task_type),
    "update-task": lambda c, a: c.update_task_status(a.task_id, a.status),
    "trigger": lambda c, a: c.trigger_scenario(a.run_id, a.scenario),
    "optimize-tasks": lambda c, a: c.optimize_tasks(a.run_id),
    "analyze-run": lambda c, a: c.analyze_run(a.run_id),
    "recommend-scaling": lambda c, a: c.recommend_scaling(a.run_id),
    "handle-failure": lambda c, a: c.handle_failure(a.run_id, a.scenario),
    "improve": lambda c, a: c.improve_strategy(a.scenario_id),
    "decisions": lambda c, a: c.list_decisions(a.run_id, a.limit),
    "copilot": lambda c, a: c.copilot_chat(a.question),
    "demo": _demo,
    "init-db": _init_db,
}


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s fleet-core %(message)s")
    args = build_parser().parse_args(argv)
    center = build_command_center(settings)
    try:
        result = COMMANDS[args.command](center, args)
    except FleetError as exc:
        logger.error("command failed command=%s err=%s", args.command, exc)
        print(json.dumps({"error": type(exc).__name__, "message": str(exc)}), file=sys.stderr)
        return 1
    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
