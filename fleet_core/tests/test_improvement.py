import pytest

from fleet_core.entities import RunMetrics
from fleet_core.errors import ValidationError
from fleet_core.improvement import StrategyImprover, battery_threshold_for, routing_for, synthesize_strategy


def _history(store, scenario_id: str, count: int):
    runs = []
    for i in range(count):
        run = store.create_run(scenario_id, {})
        store.upsert_metrics(
            RunMetrics(
                run_id=run.id,
                total_tasks=10,
                completed_tasks=5 + i,
                efficiency_score=50.0 + 5 * i,
                throughput=10.0 + i,
                avg_battery_usage=30.0,
            )
        )
        store.update_run(run.id, status="completed", final_score=50.0 + 5 * i)
        runs.append(run)
    return runs


def test_four_runs_enable_adaptive_routing_and_batching(store, oracle):
    runs = _history(store, "s1", 4)

    out = StrategyImprover(store, oracle).improve_strategy("s1")

    strategy = out["improved_strategy"]
    assert out["runs_analyzed"] == 4
    assert strategy["routing"] == "dynamic-adaptive"
    assert strategy["task_batching"] is True
    assert strategy["battery_threshold"] == 22.0
    assert strategy["version"] == 5
    assert strategy["based_on_runs"] == 4
    assert strategy["predicted_improvement"] == 12.0
    assert strategy["ai_recommendations"]
    assert out["ai_source"] == "fallback"
    assert [p["run"] for p in out["performance_trend"]] == [1, 2, 3, 4]
    assert out["performance_trend"][3]["completion_rate"] == 80.0
    assert strategy["trend"] == out["performance_trend"]
    assert store.get_run(runs[-1].id).improvement_notes is not None


def test_no_runs_reports_insufficient_history(store, oracle):
    out = StrategyImprover(store, oracle).improve_strategy("fresh")

    assert out["runs_analyzed"] == 0
    assert out["performance_trend"] == []
    assert out["improved_strategy"] is None
    assert "at least 1" in out["message"]
    assert store.list_decisions() == []


def test_run_without_metrics_has_zero_completion_rate(store, oracle):
    store.create_run("s2", {})

    out = StrategyImprover(store, oracle).improve_strategy("s2")

    assert out["performance_trend"] == [
        {"run": 1, "score": None, "efficiency": None, "throughput": None, "completion_rate": 0.0, "battery_usage": None}
    ]
    assert out["improved_strategy"]["routing"] == "nearest-first"
    assert out["improved_strategy"]["task_batching"] is False


def test_scenario_id_is_required(store, oracle):
    with pytest.raises(ValidationError):
        StrategyImprover(store, oracle).improve_strategy("")


def test_battery_threshold_never_rises_and_stops_at_twenty():
    thresholds = [battery_threshold_for(n) for n in range(12)]
    assert thresholds[:6] == [30.0, 28.0, 26.0, 24.0, 22.0, 20.0]
    assert all(a >= b for a, b in zip(thresholds, thresholds[1:]))
    assert min(thresholds) == 20.0


@pytest.mark.parametrize("runs, routing, batching", [(2, "nearest-first", False), (3, "dynamic-adaptive", False), (4, "dynamic-adaptive", True)])
def test_strategy_switches_by_run_count(runs, routing, batching):
    strategy = synthesize_strategy(runs, {"recommendations": ["x"], "predicted_gain_percent": 7})
    assert routing_for(runs) == routing
    assert strategy.routing == routing
    assert strategy.task_batching is batching
    assert strategy.ai_recommendations == ["x"]
    assert strategy.predicted_improvement == 7.0
