"""Shared test fixtures for the perf-telemetry test suite.

Provides:
- A controllable wall clock
- A scripted resource probe for the primary process
- Fake auxiliary surfaces
- A fully wired engine using the fakes
"""
from __future__ import annotations

import asyncio
from typing import Any

import pytest

from perf_telemetry.config import TelemetryConfig
from perf_telemetry.engine import TelemetryEngine
from perf_telemetry.resources import ResourceUsage
from perf_telemetry.samples import BYTES_PER_MB

START_MS = 1_700_000_000_000.0


class FakeClock:
    """Manually advanced clock in epoch milliseconds."""

    def __init__(self, start: float = START_MS):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> float:
        self.now += ms
        return self.now


class FakeProbe:
    """Resource probe returning whatever the test last set."""

    def __init__(self, heap_used_mb: float = 100, heap_total_mb: float = 200, heap_limit_mb: float = 0):
        self.usage = ResourceUsage(
            process_id=4242,
            cpu_user_s=0.0,
            cpu_system_s=0.0,
            heap_used=int(heap_used_mb * BYTES_PER_MB),
            heap_total=int(heap_total_mb * BYTES_PER_MB),
            heap_limit=int(heap_limit_mb * BYTES_PER_MB),
            rss=int(300 * BYTES_PER_MB),
            external=int(5 * BYTES_PER_MB),
            memory_percent=2.5,
            cores=4,
        )
        self.error: Exception | None = None
        self.reads = 0

    def set_heap(self, used_mb: float, total_mb: float | None = None, limit_mb: float | None = None) -> None:
        self.usage.heap_used = int(used_mb * BYTES_PER_MB)
        if total_mb is not None:
            self.usage.heap_total = int(total_mb * BYTES_PER_MB)
        if limit_mb is not None:
            self.usage.heap_limit = int(limit_mb * BYTES_PER_MB)

    def add_cpu(self, user_s: float, system_s: float = 0.0) -> None:
        self.usage.cpu_user_s += user_s
        self.usage.cpu_system_s += system_s

    def read(self) -> ResourceUsage:
        self.reads += 1
        if self.error is not None:
            raise self.error
        return ResourceUsage(**vars(self.usage))


class FakeSurface:
    """Auxiliary surface with a scripted heap report."""

    def __init__(
        self,
        surface_id: str,
        process_id: int,
        report: Any = None,
        delay_s: float = 0.0,
        destroyed: bool = False,
    ):
        self.surface_id = surface_id
        self.process_id = process_id
        self.report = report
        self.delay_s = delay_s
        self.destroyed = destroyed
        self.calls = 0
        self.completed = 0

    def is_destroyed(self) -> bool:
        return self.destroyed

    async def evaluate_heap(self):
        self.calls += 1
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        self.completed += 1
        if isinstance(self.report, Exception):
            raise self.report
        return self.report


def heap_report(used_mb: float, total_mb: float = 0, limit_mb: float = 0) -> dict[str, int]:
    """Browser-style heap figures, as a renderer would report them."""
    return {
        "usedJSHeapSize": int(used_mb * BYTES_PER_MB),
        "totalJSHeapSize": int(total_mb * BYTES_PER_MB),
        "jsHeapSizeLimit": int(limit_mb * BYTES_PER_MB),
    }


@pytest.fixture
def clock():
    """Provide a controllable clock."""
    return FakeClock()


@pytest.fixture
def probe():
    """Provide a scripted resource probe."""
    return FakeProbe()


@pytest.fixture
def surfaces():
    """Mutable list the engine's surface provider reads from."""
    return []


@pytest.fixture
def config(tmp_path):
    """Config writing reports under tmp_path, with alert cooldown off."""
    return TelemetryConfig(
        metrics_dir=str(tmp_path / "reports"),
        alert_cooldown_s=0,
        sample_interval_s=0.01,
    )


@pytest.fixture
def engine(config, probe, surfaces, clock):
    """Provide an engine wired to the fakes."""
    return TelemetryEngine(config, probe=probe, surface_provider=lambda: surfaces, clock=clock)
