"""
Leak Pattern Classification

Heuristic labelling of a detected leak from listener counts, active timers
and the heap growth rate. The first matching rule wins.

`ResourceTracker` keeps those counts. Hosts report listeners and timers
themselves, or schedule callbacks through `create_tracked_interval` and
`create_tracked_timeout` so that registration is automatic.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .logging_config import get_logger

logger = get_logger(__name__)

LISTENER_LIMIT = 100
LISTENER_CRITICAL = 500
TIMER_LIMIT = 50
TIMER_CRITICAL = 100
CACHE_GROWTH_MB_PER_MIN = 10
CLOSURE_GROWTH_MB_PER_MIN = 2


class LeakPatternType(str, Enum):
    LISTENER_ACCUMULATION = "listener-accumulation"
    TIMER_ACCUMULATION = "timer-accumulation"
    UNBOUNDED_CACHE = "unbounded-cache"
    CLOSURE_RETENTION = "closure-retention"
    UNKNOWN = "unknown"


class LeakSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TimerKind(str, Enum):
    INTERVAL = "interval"
    TIMEOUT = "timeout"


@dataclass
class LeakPattern:
    """Likely cause of a leak, with a suggested remediation."""
    type: LeakPatternType
    description: str
    severity: LeakSeverity
    suggested_fix: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "type": self.type.value,
            "description": self.description,
            "severity": self.severity.value,
            "suggested_fix": self.suggested_fix,
        }


@dataclass
class ListenerEntry:
    target: str
    event: str
    count: int
    updated_at: float  # epoch ms


@dataclass
class TimerEntry:
    id: int
    kind: TimerKind
    created_at: float  # epoch ms


@dataclass
class TrackedTimer:
    """A scheduled callback registered with a ResourceTracker."""
    track_id: int
    kind: TimerKind
    task: asyncio.Task

    def cancel(self) -> None:
        self.task.cancel()


async def _run_callback(callback: Callable[[], Any], kind: TimerKind) -> None:
    try:
        result = callback()
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.warning("Tracked timer callback failed", kind=kind.value, error=str(e))


class ResourceTracker:
    """Counts registered event listeners and active timers in the host."""

    def __init__(self):
        self._listeners: dict[tuple[str, str], ListenerEntry] = {}
        self._timers: dict[int, TimerEntry] = {}
        self._timer_ids = itertools.count(1)

    def track_listener(self, target: str, event: str, delta: int = 1) -> None:
        """Adjust the listener count for (target, event).

        Entries reaching zero or below are removed; a non-positive delta for
        an untracked pair is ignored.
        """
        key = (target, event)
        entry = self._listeners.get(key)
        if entry is not None:
            entry.count += delta
            if entry.count <= 0:
                del self._listeners[key]
            else:
                entry.updated_at = time.time() * 1000
        elif delta > 0:
            self._listeners[key] = ListenerEntry(
                target=target,
                event=event,
                count=delta,
                updated_at=time.time() * 1000,
            )

    def track_timer(self, kind: TimerKind | str = TimerKind.INTERVAL) -> int:
        """Register an active timer and return its tracking id."""
        timer_id = next(self._timer_ids)
        self._timers[timer_id] = TimerEntry(
            id=timer_id,
            kind=TimerKind(kind),
            created_at=time.time() * 1000,
        )
        return timer_id

    def untrack_timer(self, timer_id: int) -> None:
        self._timers.pop(timer_id, None)

    def create_tracked_interval(self, callback: Callable[[], Any], interval_s: float) -> TrackedTimer:
        """Run `callback` every `interval_s` on the running loop, tracked until cleared.

        Callback failures are logged and the interval keeps running.

        Raises:
            RuntimeError: If no event loop is running
        """
        loop = asyncio.get_running_loop()
        track_id = self.track_timer(TimerKind.INTERVAL)

        async def run() -> None:
            while True:
                await asyncio.sleep(interval_s)
                await _run_callback(callback, TimerKind.INTERVAL)

        return TrackedTimer(track_id, TimerKind.INTERVAL, loop.create_task(run()))

    def create_tracked_timeout(self, callback: Callable[[], Any], delay_s: float) -> TrackedTimer:
        """Run `callback` once after `delay_s`; untracked when it fires or is cleared.

        Raises:
            RuntimeError: If no event loop is running
        """
        loop = asyncio.get_running_loop()
        track_id = self.track_timer(TimerKind.TIMEOUT)

        async def run() -> None:
            try:
                await asyncio.sleep(delay_s)
                await _run_callback(callback, TimerKind.TIMEOUT)
            finally:
                self.untrack_timer(track_id)

        return TrackedTimer(track_id, TimerKind.TIMEOUT, loop.create_task(run()))

    def clear_tracked(self, timer: TrackedTimer) -> None:
        """Cancel a tracked interval or timeout and stop counting it."""
        timer.cancel()
        self.untrack_timer(timer.track_id)

    @property
    def listener_total(self) -> int:
        return sum(entry.count for entry in self._listeners.values())

    @property
    def timer_count(self) -> int:
        return len(self._timers)

    def listener_stats(self) -> dict[str, Any]:
        """Total listeners and the per-target breakdown."""
        by_target: dict[str, int] = {}
        for entry in self._listeners.values():
            by_target[entry.target] = by_target.get(entry.target, 0) + entry.count
        return {"total": self.listener_total, "by_target": by_target}

    def timer_stats(self) -> dict[str, int]:
        """Active timers by kind."""
        intervals = sum(1 for t in self._timers.values() if t.kind is TimerKind.INTERVAL)
        return {
            "intervals": intervals,
            "timeouts": len(self._timers) - intervals,
            "total": len(self._timers),
        }

    def clear(self) -> None:
        self._listeners.clear()
        self._timers.clear()


def classify_leak_pattern(growth_rate: float, listener_total: int, timer_count: int) -> LeakPattern:
    """Label the most likely leak cause.

    Args:
        growth_rate: Heap growth in MB/min
        listener_total: Sum of tracked listener counts
        timer_count: Number of active tracked timers

    Returns:
        LeakPattern for the first matching rule
    """
    if listener_total > LISTENER_LIMIT:
        return LeakPattern(
            type=LeakPatternType.LISTENER_ACCUMULATION,
            description=f"High event listener count detected: {listener_total} listeners",
            severity=LeakSeverity.CRITICAL if listener_total > LISTENER_CRITICAL else LeakSeverity.HIGH,
            suggested_fix="Remove event listeners when their owner is torn down, or register them through a scope that unsubscribes automatically.",
        )

    if timer_count > TIMER_LIMIT:
        return LeakPattern(
            type=LeakPatternType.TIMER_ACCUMULATION,
            description=f"Too many active timers: {timer_count}",
            severity=LeakSeverity.CRITICAL if timer_count > TIMER_CRITICAL else LeakSeverity.HIGH,
            suggested_fix="Cancel intervals and timeouts once they are no longer needed.",
        )

    if growth_rate > CACHE_GROWTH_MB_PER_MIN:
        return LeakPattern(
            type=LeakPatternType.UNBOUNDED_CACHE,
            description=f"Very fast memory growth: {growth_rate:.2f} MB/min",
            severity=LeakSeverity.CRITICAL,
            suggested_fix="Check for unbounded lists, dicts or caches. Add LRU eviction or size limits.",
        )

    if growth_rate > CLOSURE_GROWTH_MB_PER_MIN:
        return LeakPattern(
            type=LeakPatternType.CLOSURE_RETENTION,
            description="Moderate consistent growth may indicate closure retention",
            severity=LeakSeverity.MEDIUM,
            suggested_fix="Check for closures capturing large objects. Avoid storing references in long-lived scopes.",
        )

    return LeakPattern(
        type=LeakPatternType.UNKNOWN,
        description="Memory leak pattern not identified",
        severity=LeakSeverity.LOW,
        suggested_fix="Take heap snapshots at intervals and compare allocations to find the growing objects.",
    )
