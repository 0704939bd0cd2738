from __future__ import annotations

"""
File: fleet_core/entities.py
Purpose: Core dataclasses and type aliases for fleet records.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal
import uuid


RobotStatus = Literal["idle", "active", "working", "charging", "offline", "rerouting"]
TaskStatus = Literal["pending", "assigned", "working", "completed", "failed"]
RunStatus = Literal["running", "completed"]
AlertLevel = Literal["critical", "warning", "info"]

TERMINAL_TASK_STATES = frozenset({"completed", "failed"})
OPEN_TASK_STATES = frozenset({"pending", "assigned", "working"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Robot:
    """Robot state as persisted by the store."""
    id: str
    name: str
    type: str = "delivery"
    status: RobotStatus = "idle"
    battery_level: float = 100.0
    position_x: float = 0.0
    position_y: float = 0.0
    current_task_id: str | None = None
    last_seen: datetime | None = None


@dataclass
class Task:
    """Task definition and lifecycle tracking."""
    run_id: str | None
    priority: int
    origin_x: float
    origin_y: float
    destination_x: float
    destination_y: float
    type: str = "delivery"
    status: TaskStatus = "pending"
    robot_id: str | None = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    assigned_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass
class SimulationRun:
    """One execution of a scenario."""
    scenario_id: str
    run_number: int
    status: RunStatus = "running"
    strategy: dict[str, Any] = field(default_factory=dict)
    final_score: float | None = None
    improvement_notes: str | None = None
    id: str = field(default_factory=new_id)
    start_time: datetime = field(default_factory=utcnow)
    end_time: datetime | None = None


@dataclass
class RunMetrics:
    """Per-run aggregate metrics."""
    run_id: str
    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    throughput: float = 0.0
    efficiency_score: float = 0.0
    avg_ai_latency_ms: float = 0.0
    avg_battery_usage: float = 0.0
    avg_completion_time_ms: float = 0.0
    ai_decisions_count: int = 0


@dataclass
class AIDecision:
    """Audit record of one oracle or assignment decision."""
    run_id: str
    decision_type: str
    input_state: dict[str, Any]
    decision_output: Any
    confidence: float
    latency_ms: float
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class Alert:
    """Fleet health alert kept in the rolling alert log."""
    level: AlertLevel
    title: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)
    forwarded: bool = False
    forward_error: str | None = None


def to_payload(record: Any) -> dict[str, Any]:
    """Serialize a record dataclass to a JSON-friendly dict."""
    payload = asdict(record)
    for key, value in payload.items():
        if isinstance(value, datetime):
            payload[key] = value.isoformat()
    return payload
