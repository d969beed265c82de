"""
Time-Series Metric Store

Bounded per-metric history with running aggregates. `avg` covers only the
retained window; `min` and `max` cover every value ever recorded.
"""

from __future__ import annotations

import math
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .events import EventBus, EventType
from .logging_config import get_logger

logger = get_logger(__name__)


class MetricCategory(str, Enum):
    """Performance metric categories."""
    FPS = "fps"
    MEMORY = "memory"
    CPU = "cpu"
    IPC = "ipc"
    VOICE = "voice"
    RENDER = "render"
    CUSTOM = "custom"


@dataclass
class DataPoint:
    """Single time-series value."""
    timestamp: float  # epoch ms
    value: float
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = {"timestamp": self.timestamp, "value": self.value}
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data


@dataclass
class Metric:
    """A named metric with bounded history."""
    name: str
    category: MetricCategory
    current: float
    min: float
    max: float
    avg: float
    unit: str
    history: deque = field(default_factory=deque)
    sample_count: int = 0  # lifetime recordings, not bounded by history

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "category": self.category.value,
            "current": self.current,
            "min": self.min,
            "max": self.max,
            "avg": self.avg,
            "unit": self.unit,
            "sample_count": self.sample_count,
            "history": [dp.to_dict() for dp in self.history],
        }


# name -> (category, initial value, unit)
CORE_METRICS: dict[str, tuple[MetricCategory, float, str]] = {
    # Frame rate
    "fps": (MetricCategory.FPS, 60, "fps"),
    "frameTime": (MetricCategory.FPS, 16.67, "ms"),
    "avgFps": (MetricCategory.FPS, 60, "fps"),
    # Memory
    "heapUsed": (MetricCategory.MEMORY, 0, "MB"),
    "heapTotal": (MetricCategory.MEMORY, 0, "MB"),
    "rss": (MetricCategory.MEMORY, 0, "MB"),
    "memoryPercent": (MetricCategory.MEMORY, 0, "%"),
    # CPU
    "cpuUsage": (MetricCategory.CPU, 0, "%"),
    "cpuUser": (MetricCategory.CPU, 0, "ms"),
    "cpuSystem": (MetricCategory.CPU, 0, "ms"),
    # IPC
    "ipcLatency": (MetricCategory.IPC, 0, "ms"),
    "ipcMessages": (MetricCategory.IPC, 0, "count"),
    "ipcErrors": (MetricCategory.IPC, 0, "count"),
    # Voice pipeline
    "wakeWordLatency": (MetricCategory.VOICE, 0, "ms"),
    "sttLatency": (MetricCategory.VOICE, 0, "ms"),
    "llmLatency": (MetricCategory.VOICE, 0, "ms"),
    "ttsLatency": (MetricCategory.VOICE, 0, "ms"),
    "totalResponseTime": (MetricCategory.VOICE, 0, "ms"),
    # Render
    "particleCount": (MetricCategory.RENDER, 0, "count"),
    "drawCalls": (MetricCategory.RENDER, 0, "count"),
    "triangles": (MetricCategory.RENDER, 0, "count"),
}


def _wall_clock_ms() -> float:
    return time.time() * 1000


class MetricStore:
    """Registry of named metrics with FIFO-bounded history."""

    def __init__(
        self,
        history_size: int = 300,
        events: EventBus | None = None,
        clock: Callable[[], float] = _wall_clock_ms,
    ):
        """Initialize the store with the core metrics registered.

        Args:
            history_size: Maximum retained points per metric
            events: Channel for `metric` events (optional)
            clock: Wall clock in epoch milliseconds
        """
        self.history_size = history_size
        self.events = events
        self.clock = clock
        self.enabled = True
        self._metrics: dict[str, Metric] = {}
        self._register_core_metrics()

    def _register_core_metrics(self) -> None:
        for name, (category, initial, unit) in CORE_METRICS.items():
            self.register(name, category, initial, unit)

    def register(
        self,
        name: str,
        category: MetricCategory | str = MetricCategory.CUSTOM,
        initial: float = 0,
        unit: str = "",
    ) -> Metric:
        """Register a metric, replacing any metric of the same name."""
        metric = Metric(
            name=name,
            category=MetricCategory(category),
            current=initial,
            min=initial,
            max=initial,
            avg=initial,
            unit=unit,
            history=deque(maxlen=self.history_size),
        )
        self._metrics[name] = metric
        return metric

    def __contains__(self, name: str) -> bool:
        return name in self._metrics

    def get(self, name: str) -> Metric | None:
        """Get a metric by name."""
        return self._metrics.get(name)

    def names(self) -> list[str]:
        """Registered metric names in registration order."""
        return list(self._metrics)

    def all(self) -> dict[str, Metric]:
        """Shallow copy of the registry."""
        return dict(self._metrics)

    def record(
        self,
        name: str,
        value: float,
        metadata: dict[str, Any] | None = None,
    ) -> Metric | None:
        """Record a value for a registered metric.

        Unknown names and non-finite values are logged and ignored so that
        instrumentation mistakes never reach the host application.

        Returns:
            The updated Metric, or None when nothing was recorded
        """
        if not self.enabled:
            return None

        metric = self._metrics.get(name)
        if metric is None:
            logger.warning("Unknown metric", metric=name)
            return None

        value = float(value)
        if not math.isfinite(value):
            logger.warning("Non-finite metric value", metric=name, value=str(value))
            return None

        metric.current = value
        if metric.sample_count == 0:
            metric.min = value
            metric.max = value
        else:
            metric.min = min(metric.min, value)
            metric.max = max(metric.max, value)
        metric.sample_count += 1

        metric.history.append(DataPoint(timestamp=self.clock(), value=value, metadata=metadata))
        metric.avg = sum(dp.value for dp in metric.history) / len(metric.history)

        if self.events is not None:
            self.events.emit(EventType.METRIC, {
                "metric": name,
                "value": value,
                "avg": metric.avg,
                "metadata": dict(metadata) if metadata else None,
            })
        return metric

    def get_history(self, name: str, limit: int | None = None) -> list[DataPoint]:
        """Most recent `limit` points (all when limit is None or <= 0)."""
        metric = self._metrics.get(name)
        if metric is None:
            return []
        history = list(metric.history)
        if limit and limit > 0:
            return history[-limit:]
        return history

    def summary(self) -> dict[str, dict[str, Any]]:
        """Current/avg/min/max per metric, rounded for display."""
        return {
            name: {
                "current": metric.current,
                "avg": round(metric.avg, 2),
                "min": round(metric.min, 2),
                "max": round(metric.max, 2),
                "unit": metric.unit,
            }
            for name, metric in self._metrics.items()
        }

    def resize(self, history_size: int) -> None:
        """Change history capacity, keeping the newest points.

        Averages are recomputed over the surviving window.
        """
        self.history_size = history_size
        for metric in self._metrics.values():
            metric.history = deque(metric.history, maxlen=history_size)
            if metric.history:
                metric.avg = sum(dp.value for dp in metric.history) / len(metric.history)

    def reset(self) -> None:
        """Drop every metric and re-register the core set."""
        self._metrics.clear()
        self._register_core_metrics()
