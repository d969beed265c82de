"""
Heap Growth Trend Analysis

Fits heap-used MB against time over the recent window with ordinary least
squares. A steep, well-fitting upward line is reported as a leak.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

import numpy as np

from .samples import MemorySampleStore, ProcessKind

MIN_SAMPLES = 3
STABLE_RATE_MB_PER_MIN = 0.1
MIN_FIT_QUALITY = 0.5
MS_PER_MINUTE = 60_000


class TrendDirection(str, Enum):
    INCREASING = "increasing"
    STABLE = "stable"
    DECREASING = "decreasing"


@dataclass
class GrowthAnalysis:
    """Result of a growth analysis for one process buffer."""
    is_leaking: bool = False
    growth_rate_mb_per_minute: float = 0.0
    average_used_mb: float = 0.0
    peak_used_mb: float = 0.0
    trend_direction: TrendDirection = TrendDirection.STABLE
    confidence_score: float = 0.0
    window_minutes: float = 0.0
    sample_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "is_leaking": self.is_leaking,
            "growth_rate_mb_per_minute": self.growth_rate_mb_per_minute,
            "average_used_mb": self.average_used_mb,
            "peak_used_mb": self.peak_used_mb,
            "trend_direction": self.trend_direction.value,
            "confidence_score": self.confidence_score,
            "window_minutes": self.window_minutes,
            "sample_count": self.sample_count,
        }


@dataclass
class Regression:
    slope: float
    intercept: float
    r_squared: float


def linear_regression(x: Sequence[float], y: Sequence[float]) -> Regression:
    """Ordinary least squares of y on x.

    x is shifted by its minimum before fitting. Zero variance in x gives a
    flat line with R² 0; zero variance in y gives R² 0. R² is clamped to
    [0, 1].
    """
    if len(x) == 0:
        return Regression(slope=0.0, intercept=0.0, r_squared=0.0)

    xs = np.asarray(x, dtype=float)
    ys = np.asarray(y, dtype=float)
    xs = xs - xs.min()

    x_dev = xs - xs.mean()
    sxx = float(np.dot(x_dev, x_dev))
    if sxx == 0:
        return Regression(slope=0.0, intercept=float(ys[0]), r_squared=0.0)

    y_mean = float(ys.mean())
    slope = float(np.dot(x_dev, ys - y_mean) / sxx)
    intercept = y_mean - slope * float(xs.mean())

    ss_total = float(np.sum((ys - y_mean) ** 2))
    if ss_total == 0:
        return Regression(slope=slope, intercept=intercept, r_squared=0.0)

    ss_residual = float(np.sum((ys - (slope * xs + intercept)) ** 2))
    r_squared = 1 - ss_residual / ss_total
    return Regression(slope=slope, intercept=intercept, r_squared=min(1.0, max(0.0, r_squared)))


def _wall_clock_ms() -> float:
    return time.time() * 1000


class TrendAnalyzer:
    """Growth analysis over the sample ring buffers."""

    def __init__(
        self,
        samples: MemorySampleStore,
        window_minutes: float = 5.0,
        leak_threshold_mb_per_min: float = 1.0,
        clock: Callable[[], float] = _wall_clock_ms,
    ):
        self.samples = samples
        self.window_minutes = window_minutes
        self.leak_threshold_mb_per_min = leak_threshold_mb_per_min
        self.clock = clock

    def analyze_growth(
        self,
        process_kind: ProcessKind | str = ProcessKind.PRIMARY,
        process_id: int | None = None,
        now: float | None = None,
    ) -> GrowthAnalysis:
        """Analyze heap growth for one process.

        Args:
            process_kind: primary or auxiliary
            process_id: Required for auxiliary processes
            now: Window end in epoch ms (defaults to the clock)

        Returns:
            GrowthAnalysis; a zero result when too few samples exist
        """
        buffered = self.samples.samples(process_kind, process_id)
        if len(buffered) < MIN_SAMPLES:
            return GrowthAnalysis(sample_count=len(buffered))

        now = self.clock() if now is None else now
        cutoff = now - self.window_minutes * MS_PER_MINUTE
        recent = [s for s in buffered if s.timestamp >= cutoff]

        if len(recent) < MIN_SAMPLES:
            return GrowthAnalysis(
                average_used_mb=buffered[-1].heap_used_mb,
                peak_used_mb=max(s.heap_used_mb for s in buffered),
                window_minutes=self.window_minutes,
                sample_count=len(recent),
            )

        heap_mb = [s.heap_used_mb for s in recent]
        fit = linear_regression([s.timestamp for s in recent], heap_mb)
        rate = fit.slope * MS_PER_MINUTE

        if abs(rate) < STABLE_RATE_MB_PER_MIN:
            direction = TrendDirection.STABLE
        elif rate > 0:
            direction = TrendDirection.INCREASING
        else:
            direction = TrendDirection.DECREASING

        is_leaking = (
            direction is TrendDirection.INCREASING
            and rate >= self.leak_threshold_mb_per_min
            and fit.r_squared > MIN_FIT_QUALITY
        )

        return GrowthAnalysis(
            is_leaking=is_leaking,
            growth_rate_mb_per_minute=rate,
            average_used_mb=float(np.mean(heap_mb)),
            peak_used_mb=max(heap_mb),
            trend_direction=direction,
            confidence_score=fit.r_squared,
            window_minutes=self.window_minutes,
            sample_count=len(recent),
        )
