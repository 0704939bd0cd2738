from __future__ import annotations

"""
File: fleet_core/oracle/generators.py
Purpose: Decision generators behind the oracle adapter.
Key responsibilities:
- Call the remote generative endpoint and validate its JSON or plain-text output.
- Produce deterministic rule-based output for every request kind.
- Chain remote and rule-based generation so a result always comes back.
Key entrypoints:
- select_generator()
Config/env vars:
- ORACLE_API_KEY / GEMINI_API_KEY, ORACLE_URL, ORACLE_TIMEOUT_S
"""

from dataclasses import dataclass
import json
import logging
import re
from typing import Any, Callable, Literal, Protocol

import httpx
from pydantic import BaseModel, ValidationError as PydanticValidationError

from fleet_core.assignment import plan_nearest_first
from fleet_core.entities import Robot, Task
from fleet_core.errors import ExternalServiceError
from fleet_core.oracle.prompts import RequestKind
from fleet_core.schemas import (
    RESPONSE_MODELS,
    CopilotAnswer,
    FailureResponsePlan,
    RunAnalysis,
    ScalingRecommendation,
    TaskOptimizationPlan,
)
from fleet_core.settings import Settings

logger = logging.getLogger("fleet-core.oracle")

Source = Literal["external", "fallback"]

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}|\[[\s\S]*\]")

# The rule engine plans with a stricter charge floor than the assignment engine.
FALLBACK_BATTERY_THRESHOLD = 30.0

# Direction of improvement for each baseline metric.
METRIC_HIGHER_IS_BETTER = {
    "efficiency_score": True,
    "throughput": True,
    "completed_tasks": True,
    "failed_tasks": False,
    "avg_ai_latency_ms": False,
}


@dataclass
class Generation:
    """Output of one generator call."""
    result: dict[str, Any]
    source: Source


class DecisionGenerator(Protocol):
    def generate(self, kind: RequestKind, prompt: str, context: dict[str, Any]) -> Generation: ...


def parse_structured(kind: RequestKind, text: str) -> dict[str, Any]:
    """Extract the JSON payload from generated text and validate it for kind."""
    match = _JSON_BLOCK.search(text)
    if match is None:
        raise ExternalServiceError(f"no JSON in oracle response kind={kind.value}")
    try:
        payload = json.loads(match.group(0))
    except (json.JSONDecodeError, RecursionError) as exc:
        raise ExternalServiceError(f"malformed JSON in oracle response kind={kind.value}: {exc}") from exc
    if isinstance(payload, list) and kind is RequestKind.TASK_OPTIMIZATION:
        payload = {"assignments": payload}
    try:
        model = RESPONSE_MODELS[kind.value].model_validate(payload)
    except PydanticValidationError as exc:
        raise ExternalServiceError(f"oracle response failed validation kind={kind.value}: {exc}") from exc
    return model.model_dump()


def parse_free_text(kind: RequestKind, text: str) -> dict[str, Any]:
    """Wrap a plain-text answer; an empty answer counts as a failed call."""
    answer = text.strip()
    if not answer:
        raise ExternalServiceError(f"empty oracle response kind={kind.value}")
    return CopilotAnswer(response=answer).model_dump()


class RemoteGenerator:
    """Generative endpoint client (Gemini generateContent wire format)."""

    def __init__(
        self,
        api_key: str,
        url: str,
        timeout_s: float,
        temperature: float = 0.3,
        max_tokens: int = 2048,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required for the remote generator")
        self.api_key = api_key
        self.url = url
        self.timeout_s = timeout_s
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.transport = transport

    def generate(self, kind: RequestKind, prompt: str, context: dict[str, Any]) -> Generation:
        body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": self.temperature, "maxOutputTokens": self.max_tokens},
        }
        try:
            with httpx.Client(timeout=self.timeout_s, transport=self.transport) as client:
                resp = client.post(self.url, params={"key": self.api_key}, json=body)
                resp.raise_for_status()
                data = resp.json()
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"oracle unreachable kind={kind.value}: {exc}") from exc
        except (ValueError, KeyError, IndexError, TypeError, RecursionError) as exc:
            raise ExternalServiceError(f"unexpected oracle envelope kind={kind.value}: {exc}") from exc
        if kind is RequestKind.COPILOT_CHAT:
            return Generation(result=parse_free_text(kind, str(text)), source="external")
        return Generation(result=parse_structured(kind, str(text)), source="external")


def _task_optimization(context: dict[str, Any]) -> BaseModel:
    robots: list[Robot] = context.get("robots", [])
    tasks: list[Task] = context.get("tasks", [])
    plan = plan_nearest_first(robots, tasks, FALLBACK_BATTERY_THRESHOLD)
    return TaskOptimizationPlan(
        assignments=plan,
        summary=(
            f"Rule-based: nearest-first assignment with battery threshold of "
            f"{FALLBACK_BATTERY_THRESHOLD:g}% ({len(plan)}/{len(tasks)} tasks placed)"
        ),
    )


def _run_analysis(context: dict[str, Any]) -> BaseModel:
    baseline: dict[str, Any] = context.get("baseline", {})
    previous = baseline.get("previous_run_number")
    improvements: list[str] = []
    regressions: list[str] = []
    for metric, delta in sorted(baseline.get("deltas", {}).items()):
        if delta == 0:
            continue
        change = f"{metric} {'up' if delta > 0 else 'down'} {abs(delta):g} vs run #{previous}"
        if (delta > 0) == METRIC_HIGHER_IS_BETTER.get(metric, True):
            improvements.append(change)
        else:
            regressions.append(change)
    if not improvements and not regressions:
        improvements = ["Task routing efficiency"]
        regressions = ["Battery consumption slightly higher"]
    return RunAnalysis(
        improvements=improvements,
        regressions=regressions,
        recommendations=[
            "Reduce idle time between tasks",
            "Implement predictive battery management",
            "Add parallel task assignment for heavy-lift robots",
        ],
        predicted_gain_percent=12,
        summary="Rule-based analysis suggests 12% improvement potential through routing optimization",
    )


def _failure_response(context: dict[str, Any]) -> BaseModel:
    scenario_kind = str(context.get("scenario_kind", ""))
    risk = "high" if scenario_kind in {"robot_failure", "battery_shortage"} else "medium"
    return FailureResponsePlan(
        reassignments=["Redistribute failed robot tasks to nearest idle units"],
        priority_changes=["Elevate all pending deliveries to priority 8+"],
        strategy="Consolidate fleet to cover critical zones first, defer low-priority tasks",
        risk_level=risk,
    )


def _scaling_recommendation(context: dict[str, Any]) -> BaseModel:
    fleet_size = int(context.get("fleet_size", 6))
    return ScalingRecommendation(
        recommended_additions=2,
        robot_types=["delivery", "heavy_lift"],
        optimal_fleet_size=fleet_size + 2,
        roi_estimate="34% throughput increase with 2 additional units",
        reasoning="Current fleet utilization exceeds 80% during peak hours",
    )


# Keyword stems per copilot topic, checked in order.
COPILOT_TOPICS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("efficiency", ("efficien", "drop", "why")),
    ("optimize", ("optim", "improv", "better")),
    ("cost", ("cost", "money", "reduc", "save")),
    ("failure", ("fail", "error", "crash", "down")),
    ("scaling", ("scal", "grow", "add", "expand", "demand")),
)


def copilot_topic(question: str) -> str:
    lowered = question.lower()
    for topic, stems in COPILOT_TOPICS:
        if any(stem in lowered for stem in stems):
            return topic
    return "default"


def _copilot_chat(context: dict[str, Any]) -> BaseModel:
    robots: list[Robot] = context.get("robots", [])
    alerts: list[str] = context.get("alerts", [])
    metrics: list[dict[str, Any]] = context.get("metrics", [])
    latest = metrics[0] if metrics else {}
    active = sum(1 for r in robots if r.status in ("assigned", "working"))
    idle = sum(1 for r in robots if r.status == "idle")
    low = sorted((r for r in robots if r.status != "offline"), key=lambda r: r.battery_level)[:2]
    topic = copilot_topic(str(context.get("question", "")))
    if topic == "efficiency":
        lines = [
            f"- Latest efficiency score: {latest.get('efficiency_score', 0):g}",
            f"- {idle} robots idle while {active} are busy; idle time between tasks is the main loss",
            "- Run auto-optimize to rebind pending tasks nearest-first",
        ]
    elif topic == "optimize":
        lines = [
            f"- Auto-optimize pending tasks across {idle} idle robots",
            "- Raise the battery threshold so low units charge before dispatch",
            "- Trigger the improvement loop after each completed run",
        ]
    elif topic == "cost":
        lines = [
            "- Charge robots during low-demand windows",
            f"- Consolidate work onto the {active} busy units before waking idle ones",
            "- Defer low-priority tasks when the fleet is short on charge",
        ]
    elif topic == "failure":
        lines = [
            f"- Failed tasks in the latest run: {latest.get('failed_tasks', 0)}",
            "- Failed robots release their tasks back to pending for reassignment",
            "- Trigger the robot_failure scenario to rehearse recovery",
        ]
    elif topic == "scaling":
        lines = [
            f"- Current fleet size: {len(robots)} robots, {active} busy",
            f"- Latest throughput: {latest.get('throughput', 0):g} tasks/hour",
            "- Request a scaling recommendation for sizing advice",
        ]
    else:
        lines = [
            f"- Fleet: {len(robots)} robots, {active} busy, {idle} idle",
            "- Ask about efficiency, optimization, cost, failures or scaling",
        ]
    if low:
        lines.append("- Lowest charge: " + ", ".join(f"{r.name} {r.battery_level:g}%" for r in low))
    lines.extend(f"- Alert: {alert}" for alert in alerts)
    return CopilotAnswer(response="\n".join(lines))


class RuleBasedGenerator:
    """Deterministic generator; one rule set per request kind."""

    RULES: dict[RequestKind, Callable[[dict[str, Any]], BaseModel]] = {
        RequestKind.TASK_OPTIMIZATION: _task_optimization,
        RequestKind.RUN_ANALYSIS: _run_analysis,
        RequestKind.FAILURE_RESPONSE: _failure_response,
        RequestKind.SCALING_RECOMMENDATION: _scaling_recommendation,
        RequestKind.COPILOT_CHAT: _copilot_chat,
    }

    def generate(self, kind: RequestKind, prompt: str, context: dict[str, Any]) -> Generation:
        return Generation(result=self.RULES[kind](context).model_dump(), source="fallback")


class FallbackGenerator:
    """Try the primary generator, substitute the fallback on ExternalServiceError."""

    def __init__(self, primary: DecisionGenerator, fallback: DecisionGenerator) -> None:
        self.primary = primary
        self.fallback = fallback

    def generate(self, kind: RequestKind, prompt: str, context: dict[str, Any]) -> Generation:
        try:
            return self.primary.generate(kind, prompt, context)
        except ExternalServiceError as exc:
            logger.warning("oracle external call failed, using fallback kind=%s err=%s", kind.value, exc)
            return self.fallback.generate(kind, prompt, context)


def select_generator(config: Settings, transport: httpx.BaseTransport | None = None) -> DecisionGenerator:
    """Pick the generator once, based on credential availability."""
    rules = RuleBasedGenerator()
    if not config.oracle_api_key:
        logger.info("no oracle credential configured; rule-based decisions only")
        return rules
    remote = RemoteGenerator(
        api_key=config.oracle_api_key,
        url=config.oracle_url,
        timeout_s=config.oracle_timeout_s,
        temperature=config.oracle_temperature,
        max_tokens=config.oracle_max_tokens,
        transport=transport,
    )
    return FallbackGenerator(remote, rules)
