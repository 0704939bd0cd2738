from concurrent.futures import ThreadPoolExecutor
import threading

from fleet_core.assignment import STRATEGY_TAG, AssignmentEngine, plan_nearest_first
from fleet_core.entities import Robot, Task
from fleet_core.store import InMemoryFleetStore


def test_nearest_eligible_robot_gets_task(store, add_robot, add_task):
    add_robot("A", 0, 0, battery_level=80.0)
    add_robot("B", 10, 10, battery_level=15.0)
    task = add_task(priority=5, x=1, y=1)

    result = AssignmentEngine(store, battery_threshold=20).auto_optimize()

    assert result["message"] == "Optimized 1 task assignments"
    assert result["assignments"] == [
        {"task_id": task.id, "robot_id": "a", "robot_name": "A", "distance": 1.4, "priority": 5}
    ]
    assert result["unassigned"] == []
    assert store.get_task(task.id).status == "assigned"
    assert store.get_task(task.id).robot_id == "a"
    robot = store.get_robot("a")
    assert robot.status == "working"
    assert robot.current_task_id == task.id
    assert store.get_robot("b").current_task_id is None


def test_higher_priority_task_claims_nearest_robot_first(store, add_robot, add_task):
    add_robot("A", 0, 0)
    add_robot("B", 50, 50)
    low = add_task(priority=2, x=1, y=1)
    high = add_task(priority=9, x=2, y=2)

    result = AssignmentEngine(store, battery_threshold=20).auto_optimize()

    by_task = {a["task_id"]: a["robot_id"] for a in result["assignments"]}
    assert by_task == {high.id: "a", low.id: "b"}
    assert [a["task_id"] for a in result["assignments"]] == [high.id, low.id]


def test_robot_is_never_bound_twice(store, add_robot, add_task):
    add_robot("A", 0, 0)
    add_robot("B", 5, 5)
    tasks = [add_task(priority=5, x=1, y=1) for _ in range(3)]

    result = AssignmentEngine(store, battery_threshold=20).auto_optimize()

    robots = [a["robot_id"] for a in result["assignments"]]
    assert sorted(robots) == ["a", "b"]
    assert result["unassigned"] == [tasks[2].id]
    assert store.get_task(tasks[2].id).status == "pending"


def test_second_pass_does_not_rebind_busy_robots(store, add_robot, add_task):
    add_robot("A", 0, 0)
    add_task(priority=5, x=1, y=1)
    engine = AssignmentEngine(store, battery_threshold=20)
    engine.auto_optimize()

    late = add_task(priority=10, x=0, y=0)
    result = engine.auto_optimize()

    assert result["assignments"] == []
    assert result["unassigned"] == [late.id]


def test_unavailable_robots_are_skipped(store, add_robot, add_task):
    add_robot("Offline", 0, 0, status="offline")
    add_robot("Charging", 0, 0, status="charging")
    add_robot("Drained", 0, 0, battery_level=19.9)
    add_robot("Edge", 30, 30, battery_level=20.0)
    task = add_task(priority=5, x=0, y=0)

    result = AssignmentEngine(store, battery_threshold=20).auto_optimize()

    assert [a["robot_id"] for a in result["assignments"]] == ["edge"]
    assert store.get_task(task.id).robot_id == "edge"


def test_no_pending_tasks_is_a_result(store, add_robot):
    add_robot("A", 0, 0)

    result = AssignmentEngine(store, battery_threshold=20).auto_optimize()

    assert result["message"] == "No pending tasks to optimize"
    assert result["assignments"] == []
    assert store.list_decisions() == []


def test_no_eligible_robot_leaves_tasks_pending(store, add_robot, add_task):
    add_robot("A", 0, 0, battery_level=5.0)
    task = add_task(priority=5)

    result = AssignmentEngine(store, battery_threshold=20).auto_optimize()

    assert result["assignments"] == []
    assert result["unassigned"] == [task.id]
    assert store.list_decisions() == []


def test_equal_distance_keeps_scan_order(store, add_robot, add_task):
    add_robot("First", 0, 10)
    add_robot("Second", 10, 0)
    add_task(priority=5, x=0, y=0)

    result = AssignmentEngine(store, battery_threshold=20).auto_optimize()

    assert result["assignments"][0]["robot_id"] == "first"


def test_assignment_pass_is_audited_against_running_run(store, run, add_robot, add_task):
    add_robot("A", 0, 0)
    add_task(priority=5)

    AssignmentEngine(store, battery_threshold=20).auto_optimize()

    decisions = store.list_decisions(run_id=run.id)
    assert len(decisions) == 1
    assert decisions[0].decision_type == "auto_optimize"
    assert decisions[0].confidence == 0.85
    assert decisions[0].decision_output["strategy"] == STRATEGY_TAG


class LosingRobotClaimStore(InMemoryFleetStore):
    """Simulates another caller grabbing one robot between read and claim."""

    def __init__(self, stolen: str) -> None:
        super().__init__()
        self.stolen = stolen

    def claim_robot(self, robot_id, task_id, min_battery):
        if robot_id == self.stolen:
            return False
        return super().claim_robot(robot_id, task_id, min_battery)


class LosingTaskClaimStore(InMemoryFleetStore):
    def claim_task(self, task_id, robot_id):
        return False


def test_lost_robot_claim_falls_through_to_next_nearest():
    store = LosingRobotClaimStore(stolen="a")
    run = store.create_run("s", {})
    store.add_robot(Robot(id="a", name="A", position_x=0, position_y=0))
    store.add_robot(Robot(id="b", name="B", position_x=20, position_y=20))
    first = store.add_task(Task(run_id=run.id, priority=9, origin_x=0, origin_y=0, destination_x=1, destination_y=1))
    second = store.add_task(Task(run_id=run.id, priority=1, origin_x=0, origin_y=0, destination_x=1, destination_y=1))

    result = AssignmentEngine(store, battery_threshold=20).auto_optimize()

    assert [(a["task_id"], a["robot_id"]) for a in result["assignments"]] == [(first.id, "b")]
    assert result["unassigned"] == [second.id]


def test_lost_task_claim_releases_robot():
    store = LosingTaskClaimStore()
    run = store.create_run("s", {})
    store.add_robot(Robot(id="a", name="A", status="active"))
    task = store.add_task(Task(run_id=run.id, priority=5, origin_x=0, origin_y=0, destination_x=1, destination_y=1))

    result = AssignmentEngine(store, battery_threshold=20).auto_optimize()

    assert result["assignments"] == []
    assert result["unassigned"] == [task.id]
    robot = store.get_robot("a")
    assert robot.current_task_id is None
    assert robot.status == "active"


class RobotDownDuringTaskClaimStore(InMemoryFleetStore):
    """The robot fails and drops its claim while the task claim is in flight."""

    def claim_task(self, task_id, robot_id):
        self.update_robot(robot_id, status="offline", current_task_id=None)
        return False


def test_lost_task_claim_does_not_revive_failed_robot():
    store = RobotDownDuringTaskClaimStore()
    run = store.create_run("s", {})
    store.add_robot(Robot(id="a", name="A", status="active"))
    task = store.add_task(Task(run_id=run.id, priority=5, origin_x=0, origin_y=0, destination_x=1, destination_y=1))

    result = AssignmentEngine(store, battery_threshold=20).auto_optimize()

    assert result["unassigned"] == [task.id]
    robot = store.get_robot("a")
    assert (robot.status, robot.current_task_id) == ("offline", None)


def test_concurrent_passes_never_double_book(store, add_robot, add_task):
    for i in range(12):
        add_robot(f"R{i:02d}", i * 7 % 50, i * 11 % 50)
    for i in range(30):
        add_task(priority=i % 10, x=i * 3 % 50, y=i * 5 % 50)
    workers = 8
    barrier = threading.Barrier(workers)

    def one_pass():
        engine = AssignmentEngine(store, battery_threshold=20)
        barrier.wait()
        return engine.auto_optimize()

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(lambda _: one_pass(), range(workers)))

    assignments = [a for r in results for a in r["assignments"]]
    robot_ids = [a["robot_id"] for a in assignments]
    assert assignments
    assert len(robot_ids) == len(set(robot_ids))
    assert len({a["task_id"] for a in assignments}) == len(assignments)
    bound = {t.robot_id: t for t in store.list_tasks(status="assigned")}
    assert len(bound) == len(assignments)
    for robot in store.list_robots():
        if robot.current_task_id is None:
            assert robot.id not in bound
        else:
            assert bound[robot.id].id == robot.current_task_id


def test_plan_nearest_first_does_not_touch_store(store, add_robot, add_task):
    robots = [add_robot("A", 0, 0), add_robot("B", 9, 9, battery_level=25.0)]
    tasks = [add_task(priority=5, x=8, y=8), add_task(priority=4, x=1, y=1)]

    plan = plan_nearest_first(robots, tasks, battery_threshold=30)

    assert [(p["task_id"], p["robot_id"]) for p in plan] == [(tasks[0].id, "a")]
    assert store.get_robot("a").current_task_id is None
