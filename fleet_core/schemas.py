from __future__ import annotations

"""
File: fleet_core/schemas.py
Purpose: Pydantic contracts for decision oracle payloads.
Key responsibilities:
- Validate structured output from the remote generator.
- Give rule-based output the same shape as remote output.
Key entrypoints:
- RESPONSE_MODELS
"""

from typing import Any, Literal

from pydantic import BaseModel, Field


class TaskOptimizationPlan(BaseModel):
    """Task-to-robot plan proposed for a run's pending tasks."""
    assignments: list[dict[str, Any]] = Field(default_factory=list)
    summary: str = ""


class RunAnalysis(BaseModel):
    """Post-run analysis compared against the preceding run."""
    improvements: list[str] = Field(default_factory=list)
    regressions: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    predicted_gain_percent: float = 0.0
    summary: str = ""


class FailureResponsePlan(BaseModel):
    """Emergency response plan for a disruption scenario."""
    reassignments: list[Any] = Field(default_factory=list)
    priority_changes: list[Any] = Field(default_factory=list)
    strategy: str = ""
    risk_level: Literal["high", "medium", "low"] = "medium"


class ScalingRecommendation(BaseModel):
    """Fleet sizing advice derived from historical metrics."""
    recommended_additions: int = Field(default=0, ge=0)
    robot_types: list[str] = Field(default_factory=list)
    optimal_fleet_size: int = Field(default=0, ge=0)
    roi_estimate: str = ""
    reasoning: str = ""


class CopilotAnswer(BaseModel):
    """Plain-text operator answer from the copilot."""
    response: str = ""


RESPONSE_MODELS: dict[str, type[BaseModel]] = {
    "task_optimization": TaskOptimizationPlan,
    "run_analysis": RunAnalysis,
    "failure_response": FailureResponsePlan,
    "scaling_recommendation": ScalingRecommendation,
    "copilot_chat": CopilotAnswer,
}
