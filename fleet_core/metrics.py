from __future__ import annotations

"""
File: fleet_core/metrics.py
Purpose: Compute aggregate run metrics from task, robot and decision records.
Key responsibilities:
- Completion counts, throughput, efficiency, completion time and AI latency.
"""

from datetime import datetime

from fleet_core.entities import AIDecision, Robot, RunMetrics, Task


def compute_run_metrics(
    run_id: str,
    tasks: list[Task],
    robots: list[Robot],
    decisions: list[AIDecision],
    started_at: datetime,
    ended_at: datetime,
) -> RunMetrics:
    """Compute run-level metrics used by the self-improvement loop."""
    total_tasks = len(tasks)
    completed = [t for t in tasks if t.status == "completed"]
    failed_tasks = sum(1 for t in tasks if t.status == "failed")
    completion_rate = (len(completed) / total_tasks * 100.0) if total_tasks else 0.0
    failure_rate = (failed_tasks / total_tasks * 100.0) if total_tasks else 0.0
    efficiency = min(100.0, max(0.0, completion_rate - 0.5 * failure_rate))

    hours = (ended_at - started_at).total_seconds() / 3600.0
    throughput = len(completed) / hours if hours > 0 else 0.0

    durations = [
        (t.completed_at - (t.assigned_at or t.created_at)).total_seconds() * 1000.0
        for t in completed
        if t.completed_at is not None
    ]
    avg_completion_time_ms = sum(durations) / len(durations) if durations else 0.0

    # Runs start fully charged, so usage is the charge missing at the end.
    usage = [100.0 - r.battery_level for r in robots]
    avg_battery_usage = sum(usage) / len(usage) if usage else 0.0

    latencies = [d.latency_ms for d in decisions]
    avg_ai_latency_ms = sum(latencies) / len(latencies) if latencies else 0.0

    return RunMetrics(
        run_id=run_id,
        total_tasks=total_tasks,
        completed_tasks=len(completed),
        failed_tasks=failed_tasks,
        throughput=round(throughput, 6),
        efficiency_score=round(efficiency, 6),
        avg_ai_latency_ms=round(avg_ai_latency_ms, 6),
        avg_battery_usage=round(avg_battery_usage, 6),
        avg_completion_time_ms=round(avg_completion_time_ms, 6),
        ai_decisions_count=len(decisions),
    )
