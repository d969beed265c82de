"""
Bottleneck Detection

Stateless threshold evaluation over current metric values. Each dimension
yields at most one bottleneck; critical is checked first and wins.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .config import PerformanceThresholds, ThresholdPair
from .store import Metric


class BottleneckType(str, Enum):
    """Dimensions checked for bottlenecks."""
    FPS = "fps"
    FRAME_TIME = "frame_time"
    MEMORY = "memory"
    CPU = "cpu"
    IPC_LATENCY = "ipc_latency"


class BottleneckSeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class Bottleneck:
    """A metric breaching a configured threshold."""
    type: BottleneckType
    severity: BottleneckSeverity
    description: str
    value: float
    threshold: float
    recommendation: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "description": self.description,
            "value": self.value,
            "threshold": self.threshold,
            "recommendation": self.recommendation,
        }


@dataclass(frozen=True)
class _Rule:
    type: BottleneckType
    metric: str
    use_avg: bool
    lower_is_worse: bool
    critical_text: str
    warning_text: str
    critical_fix: str
    warning_fix: str


_RULES = (
    _Rule(
        type=BottleneckType.FPS,
        metric="avgFps",
        use_avg=False,
        lower_is_worse=True,
        critical_text="FPS critically low",
        warning_text="FPS below target",
        critical_fix="Reduce particle count or disable post-processing effects",
        warning_fix="Consider reducing visual quality settings",
    ),
    _Rule(
        type=BottleneckType.FRAME_TIME,
        metric="frameTime",
        use_avg=False,
        lower_is_worse=False,
        critical_text="Frame time critically high",
        warning_text="Frame time above target",
        critical_fix="Profile the render loop and cut per-frame work",
        warning_fix="Batch draw calls or lower effect quality",
    ),
    _Rule(
        type=BottleneckType.MEMORY,
        metric="memoryPercent",
        use_avg=False,
        lower_is_worse=False,
        critical_text="Memory usage critical",
        warning_text="High memory usage",
        critical_fix="Reduce memory usage or restart application",
        warning_fix="Clear conversation history or reduce cache size",
    ),
    _Rule(
        type=BottleneckType.CPU,
        metric="cpuUsage",
        use_avg=False,
        lower_is_worse=False,
        critical_text="High CPU usage",
        warning_text="Elevated CPU usage",
        critical_fix="Reduce background processing or particle simulations",
        warning_fix="Monitor CPU usage pattern",
    ),
    _Rule(
        type=BottleneckType.IPC_LATENCY,
        metric="ipcLatency",
        use_avg=True,
        lower_is_worse=False,
        critical_text="High IPC latency",
        warning_text="Elevated IPC latency",
        critical_fix="Reduce IPC message frequency or batch operations",
        warning_fix="Consider optimizing IPC payloads",
    ),
)


def _breaches(value: float, threshold: float, lower_is_worse: bool) -> bool:
    if lower_is_worse:
        return value < threshold
    return value > threshold


def _pair_for(thresholds: PerformanceThresholds, bottleneck_type: BottleneckType) -> ThresholdPair:
    return getattr(thresholds, bottleneck_type.value)


def detect_bottlenecks(
    metrics: Mapping[str, Metric],
    thresholds: PerformanceThresholds,
) -> list[Bottleneck]:
    """Evaluate current metric values against thresholds.

    Deterministic given the metrics and thresholds; reads only.

    Args:
        metrics: Registered metrics by name
        thresholds: Warning/critical pairs per dimension

    Returns:
        Zero or more bottlenecks, in dimension order
    """
    bottlenecks: list[Bottleneck] = []

    for rule in _RULES:
        metric = metrics.get(rule.metric)
        if metric is None:
            continue
        # Latency only counts once something has been timed
        if rule.use_avg and metric.current <= 0:
            continue

        value = metric.avg if rule.use_avg else metric.current
        pair = _pair_for(thresholds, rule.type)

        if _breaches(value, pair.critical, rule.lower_is_worse):
            bottlenecks.append(Bottleneck(
                type=rule.type,
                severity=BottleneckSeverity.CRITICAL,
                description=rule.critical_text,
                value=value,
                threshold=pair.critical,
                recommendation=rule.critical_fix,
            ))
        elif _breaches(value, pair.warning, rule.lower_is_worse):
            bottlenecks.append(Bottleneck(
                type=rule.type,
                severity=BottleneckSeverity.WARNING,
                description=rule.warning_text,
                value=value,
                threshold=pair.warning,
                recommendation=rule.warning_fix,
            ))

    return bottlenecks
