import pytest

from fleet_core.entities import Robot
from fleet_core.errors import NotFoundError, ValidationError
from fleet_core.scenarios import CATALOG, ScenarioKind, in_blocked_zone


def _snapshot(store):
    return (
        [(r.id, r.status, r.battery_level, r.current_task_id) for r in store.list_robots()],
        [(t.id, t.status, t.priority, t.robot_id) for t in store.list_tasks()],
        len(store.list_decisions(limit=1000)),
    )


def test_catalog_covers_every_kind(disruptions):
    listed = disruptions.list_scenarios()
    assert {s["id"] for s in listed} == {k.value for k in ScenarioKind}
    assert set(CATALOG) == set(ScenarioKind)
    assert all(s["name"] and s["description"] for s in listed)


def test_battery_shortage_drains_and_sends_low_robots_to_charge(store, run, disruptions, add_robot):
    add_robot("Half", battery_level=50.0)
    add_robot("Full", battery_level=80.0)
    add_robot("Low", battery_level=30.0)
    add_robot("Down", battery_level=90.0, status="offline")

    out = disruptions.trigger(run.id, "battery_shortage")

    assert store.get_robot("half").battery_level == 10.0
    assert store.get_robot("half").status == "charging"
    assert store.get_robot("full").battery_level == 40.0
    assert store.get_robot("full").status == "idle"
    assert store.get_robot("low").battery_level == 5.0
    assert store.get_robot("down").battery_level == 90.0
    assert out["kind"] == "battery_shortage"
    assert len(out["result"]["robots_affected"]) == 3


def test_battery_shortage_releases_task_of_robot_sent_to_charge(store, run, disruptions, add_robot, add_task):
    add_robot("Carrier", battery_level=45.0)
    task = add_task(priority=5)
    store.claim_robot("carrier", task.id, 20)
    store.claim_task(task.id, "carrier")

    disruptions.trigger(run.id, "battery_shortage")

    robot = store.get_robot("carrier")
    assert robot.status == "charging"
    assert robot.current_task_id is None
    released = store.get_task(task.id)
    assert released.status == "pending"
    assert released.robot_id is None


def test_emergency_order_demotes_and_injects_top_priority_task(store, run, disruptions, add_task):
    regular = add_task(priority=5)
    floor = add_task(priority=2)

    out = disruptions.trigger(run.id, "emergency_order")

    assert store.get_task(regular.id).priority == 3
    assert store.get_task(floor.id).priority == 1
    emergency = out["result"]["emergency_task"]
    assert emergency["priority"] == 10
    assert emergency["type"] == "emergency"
    assert (emergency["origin_x"], emergency["origin_y"]) == (50.0, 50.0)
    assert out["result"]["tasks_demoted"] == 2
    assert store.list_tasks(run_id=run.id)[0].id == emergency["id"]


def test_demand_spike_creates_high_priority_tasks(store, run, disruptions):
    out = disruptions.trigger(run.id, "demand_spike")

    tasks = store.list_tasks(run_id=run.id)
    assert out["result"]["tasks_created"] == 15
    assert len(tasks) == 15
    assert all(7 <= t.priority <= 9 for t in tasks)
    assert all(t.status == "pending" for t in tasks)
    assert all(0 <= t.origin_x <= 100 and 0 <= t.destination_y <= 100 for t in tasks)


def test_robot_failure_takes_robot_offline_and_releases_task(store, run, disruptions, add_robot, add_task):
    add_robot("Solo", 10, 10)
    task = add_task(priority=5)
    store.claim_robot("solo", task.id, 20)
    store.claim_task(task.id, "solo")

    out = disruptions.trigger(run.id, "robot_failure")

    robot = store.get_robot("solo")
    assert robot.status == "offline"
    assert robot.current_task_id is None
    assert store.get_task(task.id).status == "pending"
    assert out["result"]["failed_robot"] == "Solo"
    assert out["result"]["released_task"] == task.id


def test_robot_failure_without_candidates_is_a_result(store, run, disruptions, add_robot):
    add_robot("Gone", status="offline")

    out = disruptions.trigger(run.id, "robot_failure")

    assert out["result"]["failed_robot"] is None
    assert out["result"]["ai_response"]["source"] == "fallback"


def test_blocked_path_reroutes_robots_inside_zone(store, run, disruptions, add_robot):
    add_robot("Center", 50, 50)
    add_robot("Edge", 40, 60)
    add_robot("Outside", 10, 10)

    out = disruptions.trigger(run.id, "blocked_path")

    assert store.get_robot("center").status == "rerouting"
    assert store.get_robot("edge").status == "rerouting"
    assert store.get_robot("outside").status == "idle"
    assert {r["name"] for r in out["result"]["robots_affected"]} == {"Center", "Edge"}
    assert out["result"]["blocked_zone"] == {"x_min": 40.0, "x_max": 60.0, "y_min": 40.0, "y_max": 60.0}


def test_in_blocked_zone_bounds_are_inclusive():
    assert in_blocked_zone(Robot(id="r", name="r", position_x=60.0, position_y=40.0))
    assert not in_blocked_zone(Robot(id="r", name="r", position_x=60.1, position_y=50.0))


def test_trigger_attaches_oracle_response_and_audits_it(store, run, disruptions, add_robot):
    add_robot("A", 5, 5)

    out = disruptions.trigger(run.id, "robot_failure")

    response = out["result"]["ai_response"]
    assert response["response"]["risk_level"] == "high"
    decisions = store.list_decisions(run_id=run.id)
    assert [d.decision_type for d in decisions] == ["failure_response"]
    assert decisions[0].confidence == 0.65


def test_unknown_kind_is_rejected_without_mutation(store, run, disruptions, add_robot, add_task):
    add_robot("A", 50, 50, battery_level=50.0)
    add_task(priority=5)
    before = _snapshot(store)

    with pytest.raises(ValidationError, match="unknown scenario: meteor_strike"):
        disruptions.trigger(run.id, "meteor_strike")

    assert _snapshot(store) == before


@pytest.mark.parametrize("run_id, kind", [(None, "demand_spike"), ("", "demand_spike"), ("run", None)])
def test_missing_arguments_are_rejected(store, disruptions, run_id, kind):
    with pytest.raises(ValidationError):
        disruptions.trigger(run_id, kind)
    assert store.list_tasks() == []


def test_unknown_run_is_rejected_without_mutation(store, disruptions):
    with pytest.raises(NotFoundError):
        disruptions.trigger("missing-run", "demand_spike")
    assert store.list_tasks() == []
