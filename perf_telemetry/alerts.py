"""
Alert Log and Routing

Bounded alert history. An optional fingerprint cooldown keeps a breach that
persists across ticks from flooding the log. Alerts are re-published on the event
channel; `WebhookAlertForwarder` posts them to an HTTP endpoint.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import httpx

from .events import EventBus, EventType, TelemetryEvent
from .leaks import LeakPattern
from .logging_config import get_logger
from .samples import ProcessKind

logger = get_logger(__name__)


class AlertKind(str, Enum):
    THRESHOLD_EXCEEDED = "threshold-exceeded"
    LEAK_DETECTED = "leak-detected"
    OOM_RISK = "oom-risk"


class AlertSeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class Alert:
    """A recorded alert."""
    id: str
    timestamp: float  # epoch ms
    kind: AlertKind
    severity: AlertSeverity
    message: str
    current_value: float
    process_kind: ProcessKind
    threshold: float | None = None
    process_id: int | None = None
    leak_pattern: LeakPattern | None = None
    fingerprint: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "kind": self.kind.value,
            "severity": self.severity.value,
            "message": self.message,
            "current_value": self.current_value,
            "threshold": self.threshold,
            "process_kind": self.process_kind.value,
            "process_id": self.process_id,
            "leak_pattern": self.leak_pattern.to_dict() if self.leak_pattern else None,
        }


class AlertCooldownManager:
    """Manages alert cooldowns to prevent alert storms."""

    def __init__(self, cooldown_seconds: float = 60, clock: Callable[[], float] = time.monotonic):
        """Initialize cooldown manager.

        Args:
            cooldown_seconds: Seconds to wait before re-alerting (0 disables)
            clock: Monotonic clock in seconds
        """
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock
        self._last_alerts: dict[str, float] = {}

    def can_alert(self, fingerprint: str) -> bool:
        """Check if an alert can be sent based on cooldown."""
        if self.cooldown_seconds <= 0:
            return True
        last = self._last_alerts.get(fingerprint)
        if last is None:
            return True
        return self.clock() - last >= self.cooldown_seconds

    def record_alert(self, fingerprint: str) -> None:
        self._last_alerts[fingerprint] = self.clock()

    def get_cooldown_remaining(self, fingerprint: str) -> float:
        """Seconds remaining in cooldown, 0 if not in cooldown."""
        last = self._last_alerts.get(fingerprint)
        if last is None or self.cooldown_seconds <= 0:
            return 0
        return max(0.0, self.cooldown_seconds - (self.clock() - last))

    def clear(self) -> None:
        self._last_alerts.clear()


def alert_fingerprint(
    kind: AlertKind,
    severity: AlertSeverity,
    process_kind: ProcessKind,
    process_id: int | None = None,
    dimension: str | None = None,
) -> str:
    """Deduplication key for an alert."""
    components = [
        kind.value,
        severity.value,
        process_kind.value,
        str(process_id) if process_id is not None else "-",
        dimension or "-",
    ]
    return ":".join(components)


def _wall_clock_ms() -> float:
    return time.time() * 1000


class AlertManager:
    """Bounded alert log with cooldown and event fan-out."""

    def __init__(
        self,
        capacity: int = 100,
        cooldown_seconds: float = 0,
        events: EventBus | None = None,
        clock: Callable[[], float] = _wall_clock_ms,
        cooldown_clock: Callable[[], float] = time.monotonic,
    ):
        self.capacity = capacity
        self.events = events
        self.clock = clock
        self.cooldown = AlertCooldownManager(cooldown_seconds, clock=cooldown_clock)
        self._alerts: deque[Alert] = deque(maxlen=capacity)
        self._suppressed = 0

    def emit(
        self,
        kind: AlertKind | str,
        severity: AlertSeverity | str,
        message: str,
        current_value: float,
        process_kind: ProcessKind | str = ProcessKind.PRIMARY,
        threshold: float | None = None,
        process_id: int | None = None,
        leak_pattern: LeakPattern | None = None,
        dimension: str | None = None,
    ) -> Alert | None:
        """Record an alert unless its fingerprint is cooling down.

        Returns:
            The stored Alert, or None when suppressed
        """
        kind = AlertKind(kind)
        severity = AlertSeverity(severity)
        process_kind = ProcessKind(process_kind)

        fingerprint = alert_fingerprint(kind, severity, process_kind, process_id, dimension)
        if not self.cooldown.can_alert(fingerprint):
            self._suppressed += 1
            logger.debug(
                "Alert suppressed by cooldown",
                fingerprint=fingerprint,
                remaining_s=round(self.cooldown.get_cooldown_remaining(fingerprint), 1),
            )
            return None
        self.cooldown.record_alert(fingerprint)

        alert = Alert(
            id=uuid.uuid4().hex[:12],
            timestamp=self.clock(),
            kind=kind,
            severity=severity,
            message=message,
            current_value=current_value,
            process_kind=process_kind,
            threshold=threshold,
            process_id=process_id,
            leak_pattern=leak_pattern,
            fingerprint=fingerprint,
        )
        self._alerts.append(alert)

        logger.warning(
            message,
            alert_id=alert.id,
            kind=kind.value,
            severity=severity.value,
            current_value=current_value,
            process_kind=process_kind.value,
            process_id=process_id,
        )
        if self.events is not None:
            self.events.emit(EventType.ALERT, alert.to_dict())
        return alert

    def get_alerts(self, count: int = 20) -> list[Alert]:
        """Newest `count` alerts, oldest first."""
        alerts = list(self._alerts)
        if count <= 0:
            return []
        return alerts[-count:]

    def counts_by_kind(self) -> dict[str, int]:
        counts = {kind.value: 0 for kind in AlertKind}
        for alert in self._alerts:
            counts[alert.kind.value] += 1
        return counts

    @property
    def suppressed_count(self) -> int:
        return self._suppressed

    def __len__(self) -> int:
        return len(self._alerts)

    def resize(self, capacity: int) -> None:
        self.capacity = capacity
        self._alerts = deque(self._alerts, maxlen=capacity)

    def set_cooldown(self, cooldown_seconds: float) -> None:
        self.cooldown.cooldown_seconds = cooldown_seconds

    def clear(self) -> None:
        """Drop the log and every cooldown entry."""
        self._alerts.clear()
        self.cooldown.clear()
        self._suppressed = 0


@dataclass
class WebhookAlertForwarder:
    """Posts alert events to a webhook.

    Subscribe it to the `alert` event; each alert is sent from a task on the
    running loop. Send failures are logged and never raised.

    Usage:
        forwarder = WebhookAlertForwarder("https://hooks.example/alerts")
        forwarder.attach(engine.events)
    """
    url: str
    timeout_s: float = 10.0
    client: httpx.AsyncClient | None = None
    source: str = "perf-telemetry"
    _pending: set = field(default_factory=set, repr=False)
    _unsubscribe: Callable[[], None] | None = field(default=None, repr=False)

    def attach(self, events: EventBus) -> None:
        self._unsubscribe = events.subscribe(EventType.ALERT, self)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def __call__(self, event: TelemetryEvent) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop, alert not forwarded", url=self.url)
            return
        task = loop.create_task(self.send([event.data]))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def send(self, alerts: list[dict[str, Any]]) -> dict[str, Any]:
        """Post a batch of alert dicts.

        Returns:
            Status dict: success with the response code, or error with a message
        """
        payload = {
            "alerts": alerts,
            "sent_at": datetime.now(timezone.utc).isoformat(),
            "source": self.source,
        }
        try:
            if self.client is not None:
                response = await self.client.post(self.url, json=payload, timeout=self.timeout_s)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(self.url, json=payload, timeout=self.timeout_s)
            response.raise_for_status()
            return {"status": "success", "response_code": response.status_code}
        except httpx.HTTPError as e:
            logger.warning("Alert webhook failed", url=self.url, error=str(e))
            return {"status": "error", "message": str(e)}

    async def flush(self) -> None:
        """Wait for in-flight sends."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
