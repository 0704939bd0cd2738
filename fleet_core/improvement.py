from __future__ import annotations

"""
File: fleet_core/improvement.py
Purpose: Self-improvement loop that derives the next run's strategy.
Key responsibilities:
- Build the per-run performance trend for a scenario.
- Ask the oracle to analyze the latest run.
- Synthesize an advisory strategy from the run count and analysis.
Key entrypoints:
- StrategyImprover.improve_strategy()
"""

from dataclasses import asdict, dataclass, field
import logging
from typing import Any

from fleet_core.entities import RunMetrics, SimulationRun, utcnow
from fleet_core.errors import ValidationError
from fleet_core.oracle.adapter import DecisionOracle
from fleet_core.store.base import FleetStore

logger = logging.getLogger("fleet-core.improvement")


def battery_threshold_for(run_count: int) -> float:
    """Charge floor for the next run: 30 minus 2 per run, never below 20."""
    return float(max(20, 30 - 2 * run_count))


def routing_for(run_count: int) -> str:
    return "dynamic-adaptive" if run_count > 2 else "nearest-first"


@dataclass
class Strategy:
    """Versioned parameter set governing assignment for a run."""
    version: int
    based_on_runs: int
    routing: str
    battery_threshold: float
    task_batching: bool
    ai_recommendations: list[str] = field(default_factory=list)
    predicted_improvement: float = 0.0
    generated_at: str = field(default_factory=lambda: utcnow().isoformat())


def trend_entry(run: SimulationRun, metrics: RunMetrics | None) -> dict[str, Any]:
    """One point of the performance trend."""
    total = metrics.total_tasks if metrics else 0
    completed = metrics.completed_tasks if metrics else 0
    return {
        "run": run.run_number,
        "score": run.final_score,
        "efficiency": metrics.efficiency_score if metrics else None,
        "throughput": metrics.throughput if metrics else None,
        "completion_rate": (completed / total * 100.0) if total > 0 else 0.0,
        "battery_usage": metrics.avg_battery_usage if metrics else None,
    }


def synthesize_strategy(run_count: int, analysis: dict[str, Any]) -> Strategy:
    return Strategy(
        version=run_count + 1,
        based_on_runs=run_count,
        routing=routing_for(run_count),
        battery_threshold=battery_threshold_for(run_count),
        task_batching=run_count > 3,
        ai_recommendations=list(analysis.get("recommendations") or []),
        predicted_improvement=float(analysis.get("predicted_gain_percent") or 0.0),
    )


class StrategyImprover:
    """Reads a scenario's run history and proposes the next strategy."""

    def __init__(self, store: FleetStore, oracle: DecisionOracle) -> None:
        self.store = store
        self.oracle = oracle

    def improve_strategy(self, scenario_id: str) -> dict[str, Any]:
        if not scenario_id:
            raise ValidationError("scenario_id is required")
        runs = self.store.list_runs(scenario_id)
        if not runs:
            return {
                "message": "Need at least 1 completed run to generate improvements",
                "runs_analyzed": 0,
                "performance_trend": [],
                "improved_strategy": None,
            }

        trend = [trend_entry(run, self.store.get_metrics(run.id)) for run in runs]
        analysis = self.oracle.analyze_run(runs[-1].id)
        strategy = synthesize_strategy(len(runs), analysis["analysis"])
        logger.info(
            "strategy synthesized scenario_id=%s version=%s routing=%s battery_threshold=%s",
            scenario_id,
            strategy.version,
            strategy.routing,
            strategy.battery_threshold,
        )
        return {
            "runs_analyzed": len(runs),
            "performance_trend": trend,
            "improved_strategy": {**asdict(strategy), "trend": trend},
            "ai_source": analysis["source"],
        }
