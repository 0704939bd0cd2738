from __future__ import annotations

"""
File: fleet_core/oracle/adapter.py
Purpose: Decision oracle adapter exposing the four oracle operations.
Key responsibilities:
- Build prompts and context from store state.
- Time each generation, including any failed remote attempt.
- Persist an audit decision with source-dependent confidence.
Key entrypoints:
- DecisionOracle.optimize_tasks(), analyze_run(), handle_failure(), recommend_scaling()
- DecisionOracle.copilot_chat()
"""

import json
import logging
import time
from typing import Any

from fleet_core.entities import AIDecision, RunMetrics, SimulationRun, to_payload
from fleet_core.errors import NotFoundError, ValidationError
from fleet_core.oracle.generators import DecisionGenerator, Generation
from fleet_core.oracle.prompts import (
    RequestKind,
    copilot_prompt,
    failure_response_prompt,
    run_analysis_prompt,
    scaling_recommendation_prompt,
    task_optimization_prompt,
)
from fleet_core.store.base import FleetStore

logger = logging.getLogger("fleet-core.oracle")

# (external, fallback) confidence per request kind.
CONFIDENCE: dict[RequestKind, tuple[float, float]] = {
    RequestKind.TASK_OPTIMIZATION: (0.92, 0.75),
    RequestKind.RUN_ANALYSIS: (0.88, 0.70),
    RequestKind.FAILURE_RESPONSE: (0.85, 0.65),
    RequestKind.SCALING_RECOMMENDATION: (0.90, 0.72),
}

BASELINE_METRICS = ("efficiency_score", "throughput", "completed_tasks", "failed_tasks", "avg_ai_latency_ms")

COPILOT_LOW_BATTERY = 25.0
COPILOT_TASK_WINDOW = 10


def compute_baseline(current: RunMetrics | None, previous: RunMetrics | None, previous_run: SimulationRun | None) -> dict[str, Any]:
    """Metric deltas of the current run against the preceding one."""
    if current is None or previous is None or previous_run is None:
        return {"previous_run_number": previous_run.run_number if previous_run else None, "deltas": {}}
    deltas = {
        name: round(float(getattr(current, name)) - float(getattr(previous, name)), 6)
        for name in BASELINE_METRICS
    }
    return {"previous_run_number": previous_run.run_number, "deltas": deltas}


def _require(value: str | None, name: str) -> str:
    if not value or not str(value).strip():
        raise ValidationError(f"{name} is required")
    return str(value)


class DecisionOracle:
    """Oracle operations over a generator chosen at construction."""

    def __init__(self, store: FleetStore, generator: DecisionGenerator) -> None:
        self.store = store
        self.generator = generator

    def _generate(self, kind: RequestKind, prompt: str, context: dict[str, Any]) -> tuple[Generation, float]:
        """Run the generator and return its output with wall-clock latency in ms."""
        started = time.perf_counter()
        generation = self.generator.generate(kind, prompt, context)
        latency_ms = round((time.perf_counter() - started) * 1000.0, 3)
        logger.info("oracle decision kind=%s source=%s latency_ms=%s", kind.value, generation.source, latency_ms)
        return generation, latency_ms

    def _audit(self, run_id: str, kind: RequestKind, input_state: dict[str, Any], generation: Generation, latency_ms: float) -> None:
        external, fallback = CONFIDENCE[kind]
        self.store.add_decision(
            AIDecision(
                run_id=run_id,
                decision_type=kind.value,
                input_state=input_state,
                decision_output=generation.result,
                confidence=external if generation.source == "external" else fallback,
                latency_ms=latency_ms,
            )
        )

    def _run(self, run_id: str | None) -> SimulationRun:
        run = self.store.get_run(_require(run_id, "run_id"))
        if run is None:
            raise NotFoundError(f"run not found: {run_id}")
        return run

    def optimize_tasks(self, run_id: str) -> dict[str, Any]:
        """Ask for a task-to-robot plan for the run's pending tasks."""
        run = self._run(run_id)
        robots = self.store.list_robots(exclude_statuses=("offline",))
        tasks = self.store.list_tasks(run_id=run.id, status="pending")
        prompt = task_optimization_prompt([to_payload(r) for r in robots], [to_payload(t) for t in tasks])
        generation, latency_ms = self._generate(
            RequestKind.TASK_OPTIMIZATION, prompt, {"robots": robots, "tasks": tasks}
        )
        self._audit(
            run.id,
            RequestKind.TASK_OPTIMIZATION,
            {"robots": len(robots), "tasks": len(tasks)},
            generation,
            latency_ms,
        )
        return {"decision": generation.result, "latency": latency_ms, "source": generation.source}

    def analyze_run(self, run_id: str) -> dict[str, Any]:
        """Compare a run with its predecessor and store the analysis as improvement notes."""
        run = self._run(run_id)
        metrics = self.store.get_metrics(run.id)
        previous_run = self.store.get_previous_run(run.scenario_id, run.run_number)
        previous = self.store.get_metrics(previous_run.id) if previous_run else None
        baseline = compute_baseline(metrics, previous, previous_run)

        current_payload = to_payload(metrics) if metrics else {}
        prompt = run_analysis_prompt(current_payload, to_payload(previous) if previous else {}, baseline)
        generation, latency_ms = self._generate(
            RequestKind.RUN_ANALYSIS, prompt, {"metrics": metrics, "baseline": baseline}
        )
        self._audit(run.id, RequestKind.RUN_ANALYSIS, current_payload, generation, latency_ms)
        self.store.update_run(run.id, improvement_notes=json.dumps(generation.result))
        return {
            "analysis": generation.result,
            "latency": latency_ms,
            "source": generation.source,
            "baseline": baseline,
        }

    def handle_failure(self, run_id: str, scenario_kind: str, description: str | None = None) -> dict[str, Any]:
        """Ask for a response plan to a disruption that hit the run."""
        scenario_kind = _require(scenario_kind, "scenario_kind")
        run = self._run(run_id)
        robots = self.store.list_robots(exclude_statuses=("offline",))
        tasks = self.store.list_tasks(run_id=run.id)
        scenario = {
            "type": scenario_kind,
            "description": description or f"{scenario_kind} triggered during run",
        }
        prompt = failure_response_prompt(scenario, [to_payload(r) for r in robots], [to_payload(t) for t in tasks])
        generation, latency_ms = self._generate(
            RequestKind.FAILURE_RESPONSE,
            prompt,
            {"scenario_kind": scenario_kind, "robots": robots, "tasks": tasks},
        )
        self._audit(run.id, RequestKind.FAILURE_RESPONSE, {"scenario": scenario_kind}, generation, latency_ms)
        return {"response": generation.result, "latency": latency_ms, "source": generation.source}

    def recommend_scaling(self, run_id: str, history: int = 10) -> dict[str, Any]:
        """Ask for fleet sizing advice from recent run metrics."""
        run = self._run(run_id)
        metrics = [to_payload(m) for m in self.store.list_recent_metrics(limit=history)]
        fleet_size = len(self.store.list_robots())
        prompt = scaling_recommendation_prompt(metrics, fleet_size)
        generation, latency_ms = self._generate(
            RequestKind.SCALING_RECOMMENDATION, prompt, {"metrics": metrics, "fleet_size": fleet_size}
        )
        self._audit(
            run.id,
            RequestKind.SCALING_RECOMMENDATION,
            {"runs": len(metrics), "fleet_size": fleet_size},
            generation,
            latency_ms,
        )
        return {"recommendation": generation.result, "latency": latency_ms, "source": generation.source}

    def copilot_chat(self, question: str) -> dict[str, Any]:
        """Answer an operator question from current fleet state; nothing is audited."""
        question = _require(question, "question").strip()
        robots = self.store.list_robots()
        tasks = sorted(self.store.list_tasks(), key=lambda t: t.created_at, reverse=True)[:COPILOT_TASK_WINDOW]
        metrics = [to_payload(m) for m in self.store.list_recent_metrics(limit=3)]
        decisions = self.store.list_decisions(limit=5)
        low = sum(1 for r in robots if r.battery_level < COPILOT_LOW_BATTERY)
        offline = sum(1 for r in robots if r.status == "offline")
        alerts = []
        if low:
            alerts.append(f"{low} robots below {COPILOT_LOW_BATTERY:g}% battery")
        if offline:
            alerts.append(f"{offline} robots offline")

        prompt = copilot_prompt(
            question,
            {
                "robots": [
                    {
                        "name": r.name,
                        "type": r.type,
                        "status": r.status,
                        "battery_level": r.battery_level,
                        "position": [r.position_x, r.position_y],
                    }
                    for r in robots
                ],
                "tasks": [{"type": t.type, "priority": t.priority, "status": t.status} for t in tasks],
                "metrics": metrics,
                "decisions": [
                    {"decision_type": d.decision_type, "confidence": d.confidence, "latency_ms": d.latency_ms}
                    for d in decisions
                ],
                "alerts": alerts,
            },
        )
        generation, latency_ms = self._generate(
            RequestKind.COPILOT_CHAT,
            prompt,
            {"question": question, "robots": robots, "metrics": metrics, "alerts": alerts},
        )
        return {
            "response": generation.result["response"],
            "latency": latency_ms,
            "source": generation.source,
            "context_summary": alerts,
        }
