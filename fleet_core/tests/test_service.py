import json
import random

import httpx
import pytest

from fleet_core import main as cli
from fleet_core.errors import ValidationError
from fleet_core.service import build_command_center
from fleet_core.settings import Settings
from fleet_core.store import InMemoryFleetStore

OFFLINE = Settings(fleet_store="memory", oracle_api_key=None, alert_webhook_url=None)


@pytest.fixture
def center():
    return build_command_center(OFFLINE, store=InMemoryFleetStore(), rng=random.Random(3))


def test_full_run_cycle_through_facade(center):
    run_id = center.start_run("dock-7")["run"]["id"]
    center.register_robot("AMR-01", (10, 10))
    center.register_robot("AMR-02", (50, 50), battery_level=45.0)
    for origin in ((12, 12), (48, 52)):
        center.create_task(run_id, origin, (90, 90), priority=6)

    assigned = center.auto_optimize()
    assert len(assigned["assignments"]) == 2

    scenario = center.trigger_scenario(run_id, "battery_shortage")
    assert scenario["result"]["ai_response"]["source"] == "fallback"

    alerts = center.check_fleet_health()
    assert {a["title"] for a in alerts} == {"Critical Battery"}
    assert center.get_alert_log()[0]["title"] == "Critical Battery"

    stopped = center.stop_run(run_id)
    assert stopped["run"]["status"] == "completed"
    assert stopped["metrics"]["total_tasks"] == 2

    improved = center.improve_strategy("dock-7")
    assert improved["runs_analyzed"] == 1
    assert improved["improved_strategy"]["battery_threshold"] == 28.0

    types = [d["decision_type"] for d in center.list_decisions(run_id)]
    assert types == ["run_analysis", "failure_response", "auto_optimize"]
    assert len(center.list_decisions(run_id, limit=1)) == 1


def test_scaling_and_listing(center):
    center.register_robot("AMR-01")
    run_id = center.start_run("dock-7")["run"]["id"]

    assert center.recommend_scaling(run_id)["recommendation"]["optimal_fleet_size"] == 3
    assert len(center.list_scenarios()) == 5
    assert center.list_robots()[0]["name"] == "AMR-01"


def test_register_robot_validates_battery(center):
    with pytest.raises(ValidationError):
        center.register_robot("AMR-09", battery_level=120.0)


def test_list_decisions_rejects_non_positive_limit(center):
    with pytest.raises(ValidationError):
        center.list_decisions(limit=0)


def test_webhook_sink_is_built_from_settings():
    posted = []

    def handler(request: httpx.Request) -> httpx.Response:
        posted.append(request.url.host)
        return httpx.Response(204)

    config = Settings(fleet_store="memory", oracle_api_key=None, alert_webhook_url="https://hooks.test/x")
    center = build_command_center(config, store=InMemoryFleetStore(), transport=httpx.MockTransport(handler))
    center.register_robot("AMR-01", battery_level=5.0)

    alerts = center.check_fleet_health()

    assert alerts[0]["forwarded"] is True
    assert posted == ["hooks.test"]


def test_cli_lists_scenarios(monkeypatch, capsys):
    monkeypatch.setattr(cli, "settings", OFFLINE)

    assert cli.main(["list-scenarios"]) == 0

    listed = json.loads(capsys.readouterr().out)
    assert [s["id"] for s in listed] == [
        "demand_spike",
        "robot_failure",
        "battery_shortage",
        "emergency_order",
        "blocked_path",
    ]


def test_cli_demo_runs_one_cycle(monkeypatch, capsys):
    monkeypatch.setattr(cli, "settings", OFFLINE)

    assert cli.main(["demo", "--scenario", "blocked_path"]) == 0

    out = json.loads(capsys.readouterr().out)
    assert out["run"]["status"] == "completed"
    assert out["scenario"]["kind"] == "blocked_path"
    assert out["improvement"]["runs_analyzed"] == 1


def test_cli_reports_domain_errors(monkeypatch, capsys):
    monkeypatch.setattr(cli, "settings", OFFLINE)

    assert cli.main(["stop-run", "missing"]) == 1

    err = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
    assert err["error"] == "NotFoundError"


def test_cli_copilot_answers_offline(monkeypatch, capsys):
    monkeypatch.setattr(cli, "settings", OFFLINE)

    assert cli.main(["copilot", "How do we cut cost?"]) == 0

    out = json.loads(capsys.readouterr().out)
    assert out["source"] == "fallback"
    assert out["context_summary"] == []
    assert "low-demand windows" in out["response"]


def test_copilot_chat_through_facade(center):
    center.register_robot("AMR-01", battery_level=12.0)

    out = center.copilot_chat("Should we add robots?")

    assert out["context_summary"] == ["1 robots below 25% battery"]
    assert "Current fleet size: 1 robots" in out["response"]
    assert center.list_decisions() == []
