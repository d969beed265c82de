"""
IPC/Operation Timing Tracker

Pairs start and end calls into durations and feeds them to the metric store.

Usage:
    tracker.start_timing("settings:get", request_id)
    ...
    tracker.end_timing("settings:get", request_id, success=True)

    with tracker.track("settings:get"):
        handle_request()
"""

from __future__ import annotations

import inspect
import itertools
import time
from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any

from .events import EventBus, EventType
from .logging_config import get_logger
from .store import MetricCategory, MetricStore

logger = get_logger(__name__)


def _monotonic_ms() -> float:
    return time.perf_counter() * 1000


@dataclass
class PendingTiming:
    """An operation between start and end."""
    channel: str
    start_time: float
    end_time: float | None = None
    duration: float | None = None
    success: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "channel": self.channel,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration": self.duration,
            "success": self.success,
            "error": self.error,
        }


class TimingTracker:
    """Tracks in-flight operations keyed by (channel, request_id)."""

    def __init__(
        self,
        store: MetricStore,
        events: EventBus | None = None,
        clock: Callable[[], float] = _monotonic_ms,
        latency_metric: str = "ipcLatency",
        messages_metric: str = "ipcMessages",
        errors_metric: str = "ipcErrors",
    ):
        self.store = store
        self.events = events
        self.clock = clock
        self.latency_metric = latency_metric
        self.messages_metric = messages_metric
        self.errors_metric = errors_metric
        self._pending: dict[tuple[str, str], PendingTiming] = {}
        self._request_ids = itertools.count(1)

    @property
    def pending_count(self) -> int:
        """Number of operations started but not ended."""
        return len(self._pending)

    def start_timing(self, channel: str, request_id: str) -> None:
        """Start timing an operation. A repeated start for the same key wins."""
        if not self.store.enabled:
            return
        self._pending[(channel, str(request_id))] = PendingTiming(
            channel=channel,
            start_time=self.clock(),
        )

    def end_timing(
        self,
        channel: str,
        request_id: str,
        success: bool = True,
        error: str | None = None,
    ) -> float:
        """Finish timing an operation.

        Returns:
            Duration in milliseconds, or 0.0 when no matching start exists
        """
        if not self.store.enabled:
            return 0.0

        key = (channel, str(request_id))
        timing = self._pending.pop(key, None)
        if timing is None:
            logger.warning("No timing found", channel=channel, request_id=str(request_id))
            return 0.0

        timing.end_time = self.clock()
        timing.duration = max(0.0, timing.end_time - timing.start_time)
        timing.success = success
        timing.error = error

        self.store.record(
            self.latency_metric,
            timing.duration,
            {"channel": channel, "success": success},
        )
        self._increment(self.messages_metric)
        if not success:
            self._increment(self.errors_metric)

        if self.events is not None:
            self.events.emit(EventType.IPC_COMPLETE, {
                "channel": channel,
                "duration_ms": timing.duration,
                "success": success,
                "error": error,
            })
        return timing.duration

    def _increment(self, name: str) -> None:
        metric = self.store.get(name)
        if metric is not None:
            self.store.record(name, metric.current + 1)

    def track(self, channel: str, request_id: str | None = None) -> "_TrackedOperation":
        """Context manager timing the enclosed block (sync or async).

        A block that raises is recorded as a failure and the exception
        propagates.
        """
        if request_id is None:
            request_id = f"auto-{next(self._request_ids)}"
        return _TrackedOperation(self, channel, str(request_id))

    def clear(self) -> None:
        """Forget all in-flight timings."""
        self._pending.clear()


class _TrackedOperation:
    """Context manager returned by TimingTracker.track."""

    def __init__(self, tracker: TimingTracker, channel: str, request_id: str):
        self.tracker = tracker
        self.channel = channel
        self.request_id = request_id
        self.duration_ms: float = 0.0

    def __enter__(self):
        self.tracker.start_timing(self.channel, self.request_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = self.tracker.end_timing(
            self.channel,
            self.request_id,
            success=exc_type is None,
            error=str(exc_val) if exc_val is not None else None,
        )
        return False

    async def __aenter__(self):
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return self.__exit__(exc_type, exc_val, exc_tb)


def measure_time(
    store: MetricStore,
    name: str,
    category: MetricCategory | str = MetricCategory.CUSTOM,
) -> Callable:
    """Decorator recording a function's duration (ms) into a metric.

    The metric is registered on first use if missing.

    Usage:
        @measure_time(engine.store, "indexBuild")
        async def build_index():
            ...
    """
    if name not in store:
        store.register(name, category, 0, "ms")

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                store.record(name, (time.perf_counter() - start) * 1000, {"category": MetricCategory(category).value})

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                store.record(name, (time.perf_counter() - start) * 1000, {"category": MetricCategory(category).value})

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
