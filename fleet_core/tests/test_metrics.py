from datetime import datetime, timedelta, timezone

from fleet_core.entities import AIDecision, Robot, Task
from fleet_core.metrics import compute_run_metrics

START = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def _task(status: str, assigned_s: int | None = None, completed_s: int | None = None) -> Task:
    return Task(
        run_id="r",
        priority=5,
        origin_x=0,
        origin_y=0,
        destination_x=1,
        destination_y=1,
        status=status,
        created_at=START,
        assigned_at=START + timedelta(seconds=assigned_s) if assigned_s is not None else None,
        completed_at=START + timedelta(seconds=completed_s) if completed_s is not None else None,
    )


def _decision(latency_ms: float) -> AIDecision:
    return AIDecision(run_id="r", decision_type="run_analysis", input_state={}, decision_output={}, confidence=0.7, latency_ms=latency_ms)


def test_metrics_exact_values():
    tasks = [
        _task("completed", assigned_s=10, completed_s=70),
        _task("completed", assigned_s=20, completed_s=140),
        _task("failed", completed_s=100),
        _task("pending"),
    ]
    robots = [Robot(id="a", name="A", battery_level=80.0), Robot(id="b", name="B", battery_level=60.0)]

    metrics = compute_run_metrics("r", tasks, robots, [_decision(100.0), _decision(300.0)], START, START + timedelta(minutes=30))

    assert metrics.total_tasks == 4
    assert metrics.completed_tasks == 2
    assert metrics.failed_tasks == 1
    assert metrics.throughput == 4.0
    assert metrics.efficiency_score == 37.5
    assert metrics.avg_completion_time_ms == 90000.0
    assert metrics.avg_battery_usage == 30.0
    assert metrics.avg_ai_latency_ms == 200.0
    assert metrics.ai_decisions_count == 2


def test_metrics_for_empty_run_are_zero():
    metrics = compute_run_metrics("r", [], [], [], START, START)

    assert (metrics.total_tasks, metrics.throughput, metrics.efficiency_score) == (0, 0.0, 0.0)
    assert metrics.avg_ai_latency_ms == 0.0


def test_efficiency_never_negative():
    tasks = [_task("failed", completed_s=5) for _ in range(3)]

    metrics = compute_run_metrics("r", tasks, [], [], START, START + timedelta(hours=1))

    assert metrics.efficiency_score == 0.0
