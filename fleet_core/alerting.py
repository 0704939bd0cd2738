from __future__ import annotations

"""
File: fleet_core/alerting.py
Purpose: On-demand fleet health scan with a bounded alert log.
Key responsibilities:
- Raise leveled alerts for low battery, offline robots and task failure bursts.
- Keep the most recent alerts in an owned rolling log.
- Forward alerts to an optional webhook, best effort.
Key entrypoints:
- AlertMonitor.check_fleet_health(), AlertMonitor.alert_log()
Config/env vars:
- ALERT_WEBHOOK_URL, NOTIFY_TIMEOUT_S, ALERT_LOG_CAPACITY
"""

from collections import deque
from datetime import timedelta
import logging
import threading
from typing import Any, Protocol

import httpx

from fleet_core.entities import Alert, AlertLevel, to_payload, utcnow
from fleet_core.errors import ExternalServiceError
from fleet_core.store.base import FleetStore

logger = logging.getLogger("fleet-core.alerting")

CRITICAL_BATTERY = 15.0
LOW_BATTERY = 30.0
FAILED_TASK_WINDOW = timedelta(hours=1)
FAILED_TASK_LIMIT = 3
READ_LIMIT = 20

EMBED_COLORS = {"critical": 0xFF0000, "warning": 0xFFA500, "info": 0x3B82F6}


class AlertLog:
    """Capacity-bounded alert history; the oldest alert is evicted first."""

    def __init__(self, capacity: int = 50) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self._alerts: deque[Alert] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def append(self, alert: Alert) -> None:
        with self._lock:
            self._alerts.append(alert)

    def recent(self, limit: int = READ_LIMIT) -> list[Alert]:
        """Newest alerts first."""
        with self._lock:
            return list(reversed(self._alerts))[:limit]

    def __len__(self) -> int:
        with self._lock:
            return len(self._alerts)


class NotificationSink(Protocol):
    def send(self, alert: Alert) -> None: ...


class WebhookNotifier:
    """Posts alerts as chat embeds to a webhook URL."""

    def __init__(self, url: str, timeout_s: float = 5.0, transport: httpx.BaseTransport | None = None) -> None:
        self.url = url
        self.timeout_s = timeout_s
        self.transport = transport

    def send(self, alert: Alert) -> None:
        body = {
            "embeds": [
                {
                    "title": f"ARCC Alert: {alert.title}",
                    "description": alert.message,
                    "color": EMBED_COLORS.get(alert.level, EMBED_COLORS["info"]),
                    "fields": [{"name": k, "value": str(v), "inline": True} for k, v in alert.data.items()],
                    "timestamp": alert.timestamp.isoformat(),
                }
            ]
        }
        try:
            with httpx.Client(timeout=self.timeout_s, transport=self.transport) as client:
                resp = client.post(self.url, json=body)
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"webhook delivery failed: {exc}") from exc


class AlertMonitor:
    """Scans robots and recent task failures and records alerts."""

    def __init__(self, store: FleetStore, log: AlertLog, sink: NotificationSink | None = None) -> None:
        self.store = store
        self.log = log
        self.sink = sink

    def raise_alert(self, level: AlertLevel, title: str, message: str, data: dict[str, Any] | None = None) -> Alert:
        """Record an alert and forward it when a sink is configured."""
        alert = Alert(level=level, title=title, message=message, data=data or {})
        if self.sink is not None:
            try:
                self.sink.send(alert)
                alert.forwarded = True
            except ExternalServiceError as exc:
                logger.warning("alert forwarding failed title=%s err=%s", title, exc)
                alert.forward_error = str(exc)
        self.log.append(alert)
        return alert

    def check_fleet_health(self) -> list[dict[str, Any]]:
        alerts: list[Alert] = []
        for robot in self.store.list_robots():
            battery = f"{robot.battery_level:.0f}%"
            if robot.battery_level < CRITICAL_BATTERY:
                alerts.append(self.raise_alert(
                    "critical",
                    "Critical Battery",
                    f"{robot.name} battery at {battery} - immediate charging required",
                    {"robot": robot.name, "battery": battery},
                ))
            elif robot.battery_level < LOW_BATTERY:
                alerts.append(self.raise_alert(
                    "warning",
                    "Low Battery",
                    f"{robot.name} battery at {battery}",
                    {"robot": robot.name, "battery": battery},
                ))

            if robot.status == "offline":
                alerts.append(self.raise_alert(
                    "critical",
                    "Robot Offline",
                    f"{robot.name} is offline - tasks may need reassignment",
                    {"robot": robot.name, "last_seen": robot.last_seen.isoformat() if robot.last_seen else None},
                ))

        failed = self.store.count_tasks_since("failed", utcnow() - FAILED_TASK_WINDOW)
        if failed > FAILED_TASK_LIMIT:
            alerts.append(self.raise_alert(
                "warning",
                "High Task Failure Rate",
                f"{failed} tasks failed in the last hour",
                {"failed_count": failed},
            ))

        if alerts:
            logger.info("fleet health alerts=%s", len(alerts))
        return [to_payload(a) for a in alerts]

    def alert_log(self) -> list[dict[str, Any]]:
        return [to_payload(a) for a in self.log.recent(READ_LIMIT)]
