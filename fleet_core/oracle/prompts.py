from __future__ import annotations

"""
File: fleet_core/oracle/prompts.py
Purpose: Request kinds and prompt templates for the decision oracle.
Key responsibilities:
- Enumerate the oracle request kinds, including free-text copilot chat.
- Render kind-specific prompts embedding serialized fleet state.
"""

from enum import Enum
import json
from typing import Any


class RequestKind(str, Enum):
    """Oracle request kinds; values double as audit decision types."""
    TASK_OPTIMIZATION = "task_optimization"
    RUN_ANALYSIS = "run_analysis"
    FAILURE_RESPONSE = "failure_response"
    SCALING_RECOMMENDATION = "scaling_recommendation"
    COPILOT_CHAT = "copilot_chat"


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, sort_keys=True, default=str)


def task_optimization_prompt(robots: list[dict[str, Any]], tasks: list[dict[str, Any]]) -> str:
    return f"""
You are an AI fleet optimizer for an autonomous robotics warehouse.

AVAILABLE ROBOTS:
{_dump(robots)}

PENDING TASKS:
{_dump(tasks)}

Assign each task to the optimal robot considering:
1. Distance from robot to task origin
2. Robot battery level (>30% required)
3. Robot payload capacity vs task requirements
4. Current workload balance

Return JSON: {{ "assignments": [{{ "task_id": "...", "robot_id": "...", "reasoning": "..." }}], "summary": "..." }}
Only return valid JSON, no markdown."""


def run_analysis_prompt(metrics: dict[str, Any], previous: dict[str, Any], baseline: dict[str, Any]) -> str:
    return f"""
You are analyzing a robotics simulation run for performance optimization.

CURRENT RUN METRICS:
{_dump(metrics)}

PREVIOUS RUN METRICS (for comparison):
{_dump(previous)}

DELTAS VS PREVIOUS RUN:
{_dump(baseline)}

Analyze:
1. What improved vs previous run?
2. What degraded?
3. Top 3 specific strategy changes for next run
4. Predicted efficiency gain

Return JSON: {{ "improvements": [...], "regressions": [...], "recommendations": [...], "predicted_gain_percent": N, "summary": "..." }}
Only return valid JSON, no markdown."""


def failure_response_prompt(scenario: dict[str, str], robots: list[dict[str, Any]], tasks: list[dict[str, Any]]) -> str:
    return f"""
You are an emergency response AI for a robotics fleet.

SCENARIO: {scenario["type"]} - {scenario["description"]}

ACTIVE ROBOTS:
{_dump(robots)}

CURRENT TASKS:
{_dump(tasks)}

Generate an emergency response plan:
1. Which tasks to reprioritize?
2. Which robots to reassign?
3. What new routing strategy?
4. Risk mitigation steps

Return JSON: {{ "reassignments": [...], "priority_changes": [...], "strategy": "...", "risk_level": "high|medium|low" }}
Only return valid JSON, no markdown."""


def scaling_recommendation_prompt(metrics: list[dict[str, Any]], fleet_size: int) -> str:
    return f"""
You are a robotics fleet scaling advisor.

CURRENT FLEET SIZE: {fleet_size}

HISTORICAL METRICS:
{_dump(metrics)}

Based on throughput trends, task completion rates, and efficiency scores:
1. How many additional robots are needed?
2. What robot types should be added?
3. Optimal fleet composition
4. Estimated ROI of scaling

Return JSON: {{ "recommended_additions": N, "robot_types": [...], "optimal_fleet_size": N, "roi_estimate": "...", "reasoning": "..." }}
Only return valid JSON, no markdown."""


def copilot_prompt(question: str, context: dict[str, Any]) -> str:
    return f"""
You are an AI operations assistant for an autonomous robotics command center.
You help warehouse operations managers optimize their robot fleets.

CURRENT FLEET STATE:
{_dump(context.get("robots", []))}

ACTIVE TASKS:
{_dump(context.get("tasks", []))}

RECENT METRICS:
{_dump(context.get("metrics", []))}

RECENT AI DECISIONS:
{_dump(context.get("decisions", []))}

ACTIVE ALERTS:
{_dump(context.get("alerts", []))}

USER QUESTION: {json.dumps(question)}

Be specific with robot names, metrics, and actionable numbers.
Keep the answer under 150 words and use bullet points for recommendations.
Do NOT return JSON. Respond in plain text."""
