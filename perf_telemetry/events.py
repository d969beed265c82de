"""Event models and subscriber channel for telemetry updates."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .logging_config import get_logger

logger = get_logger(__name__)


class EventType(str, Enum):
    """Events published by the telemetry engine."""
    METRIC = "metric"
    IPC_COMPLETE = "ipc-complete"
    VOICE_TIMING = "voice-timing"
    RENDER_METRICS = "render-metrics"
    SNAPSHOT = "snapshot"
    SAMPLE = "sample"
    ALERT = "alert"
    STARTED = "started"
    STOPPED = "stopped"
    REPORT_EXPORTED = "report-exported"
    CONFIG_UPDATED = "config-updated"
    RESET = "reset"


class TelemetryEvent(BaseModel):
    """A single published event."""

    type: EventType = Field(..., description="Event type")
    data: dict[str, Any] = Field(default_factory=dict, description="JSON-ready payload")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return self.model_dump_json()


Subscriber = Callable[[TelemetryEvent], Any]


class EventBus:
    """Synchronous publish/subscribe channel.

    Subscribers run in subscription order on the publishing call, so an
    event observed after another was published after it. A subscriber that
    raises is logged and skipped; the remaining subscribers still run.
    """

    def __init__(self):
        self._subscribers: dict[EventType, list[Subscriber]] = {}
        self._wildcard: list[Subscriber] = []

    def subscribe(self, event_type: EventType | str | None, callback: Subscriber) -> Callable[[], None]:
        """Register a callback.

        Args:
            event_type: Event to listen for, or None for every event
            callback: Called with the TelemetryEvent

        Returns:
            A function that removes the subscription
        """
        if event_type is None:
            bucket = self._wildcard
        else:
            bucket = self._subscribers.setdefault(EventType(event_type), [])
        bucket.append(callback)

        def unsubscribe() -> None:
            if callback in bucket:
                bucket.remove(callback)

        return unsubscribe

    def subscriber_count(self, event_type: EventType | str | None = None) -> int:
        """Count subscribers for one event type (or wildcard ones)."""
        if event_type is None:
            return len(self._wildcard)
        return len(self._subscribers.get(EventType(event_type), []))

    def emit(self, event_type: EventType, data: dict[str, Any] | None = None) -> TelemetryEvent:
        """Publish an event to its subscribers and to wildcard subscribers."""
        event = TelemetryEvent(type=event_type, data=data or {})
        for callback in [*self._subscribers.get(event.type, []), *self._wildcard]:
            try:
                callback(event)
            except Exception as e:
                logger.warning(
                    "Event subscriber failed",
                    event_type=event.type.value,
                    error=str(e),
                )
        return event

    def clear(self) -> None:
        """Remove all subscribers."""
        self._subscribers.clear()
        self._wildcard.clear()
