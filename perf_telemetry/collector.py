"""
Cross-Process Memory Collector

Asks every live auxiliary surface for its heap figures once per tick and
files the answers into per-process ring buffers. Each surface is bounded by
its own timeout and its failure never affects the others.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from .logging_config import get_logger
from .samples import MemorySampleStore, ProcessKind, ProcessMemorySample

logger = get_logger(__name__)

# Accepted spellings per field; browser-style performance.memory keys included
_USED_KEYS = ("used_heap", "usedJSHeapSize", "usedHeapSize")
_TOTAL_KEYS = ("total_heap", "totalJSHeapSize", "totalHeapSize")
_LIMIT_KEYS = ("heap_limit", "jsHeapSizeLimit", "heapSizeLimit")


def _wall_clock_ms() -> float:
    return time.time() * 1000


@dataclass
class HeapReport:
    """Heap figures reported by an auxiliary surface (bytes)."""
    used_heap: int
    total_heap: int = 0
    heap_limit: int = 0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "HeapReport":
        """Build from a mapping using snake_case or camelCase keys."""
        def pick(keys: tuple[str, ...]) -> int:
            for key in keys:
                value = data.get(key)
                if value is not None:
                    return int(value)
            return 0

        return cls(
            used_heap=pick(_USED_KEYS),
            total_heap=pick(_TOTAL_KEYS),
            heap_limit=pick(_LIMIT_KEYS),
        )


class RemoteSurface(Protocol):
    """An auxiliary process able to report its own heap usage."""

    surface_id: str
    process_id: int

    def is_destroyed(self) -> bool:
        ...

    async def evaluate_heap(self) -> HeapReport | Mapping[str, Any] | None:
        ...


SurfaceProvider = Callable[[], Iterable[RemoteSurface]]


class CrossProcessMemoryCollector:
    """Fans out one heap request per surface and joins them."""

    def __init__(
        self,
        surface_provider: SurfaceProvider,
        samples: MemorySampleStore,
        timeout_s: float = 1.0,
        clock: Callable[[], float] = _wall_clock_ms,
    ):
        """Initialize the collector.

        Args:
            surface_provider: Returns the current surfaces each tick
            samples: Ring buffers receiving auxiliary samples
            timeout_s: Per-surface evaluation bound
            clock: Wall clock in epoch milliseconds
        """
        self.surface_provider = surface_provider
        self.samples = samples
        self.timeout_s = timeout_s
        self.clock = clock
        self._generation = 0
        self._accepting = True

    @property
    def accepting(self) -> bool:
        return self._accepting

    def open(self) -> None:
        """Begin a new collection run; rounds from earlier runs are discarded."""
        self._generation += 1
        self._accepting = True

    def close(self) -> None:
        """End the current run; in-flight rounds drop their results."""
        self._generation += 1
        self._accepting = False

    async def collect(self) -> list[ProcessMemorySample]:
        """Collect one round of auxiliary samples.

        The round runs shielded: cancelling the caller leaves in-flight
        evaluations running, and their results are dropped if the run they
        started in has been closed by then.

        Returns:
            Samples appended during this round
        """
        try:
            candidates = list(self.surface_provider())
        except Exception as e:
            logger.warning("Surface provider failed", error=str(e))
            return []

        surfaces = []
        for surface in candidates:
            try:
                if surface.is_destroyed():
                    continue
                process_id = int(surface.process_id)
            except Exception as e:
                logger.debug("Skipping unreachable surface", surface_id=_surface_id(surface), error=str(e))
                continue
            surfaces.append((surface, process_id))

        if not surfaces or not self._accepting:
            return []
        return await asyncio.shield(self._collect_round(surfaces, self._generation))

    async def _collect_round(
        self,
        surfaces: list[tuple[RemoteSurface, int]],
        generation: int,
    ) -> list[ProcessMemorySample]:
        results = await asyncio.gather(
            *(self._evaluate(surface) for surface, _ in surfaces),
            return_exceptions=True,
        )

        if generation != self._generation or not self._accepting:
            logger.debug("Discarding late auxiliary results", surfaces=len(surfaces), generation=generation)
            return []

        collected = []
        for (surface, process_id), result in zip(surfaces, results):
            sample = self._to_sample(surface, process_id, result)
            if sample is not None:
                self.samples.append(sample)
                collected.append(sample)
        return collected

    async def _evaluate(self, surface: RemoteSurface) -> Any:
        return await asyncio.wait_for(surface.evaluate_heap(), timeout=self.timeout_s)

    def _to_sample(self, surface: RemoteSurface, process_id: int, result: Any) -> ProcessMemorySample | None:
        surface_id = _surface_id(surface)
        if isinstance(result, asyncio.TimeoutError):
            logger.debug("Heap evaluation timed out", surface_id=surface_id, timeout_s=self.timeout_s)
            return None
        if isinstance(result, BaseException):
            logger.debug("Heap evaluation failed", surface_id=surface_id, error=str(result))
            return None
        if result is None:
            logger.debug("Surface reported no heap figures", surface_id=surface_id)
            return None

        try:
            report = result if isinstance(result, HeapReport) else HeapReport.from_mapping(result)
        except (TypeError, ValueError, AttributeError) as e:
            logger.debug("Malformed heap report", surface_id=surface_id, error=str(e))
            return None

        return ProcessMemorySample(
            timestamp=self.clock(),
            process_id=process_id,
            process_kind=ProcessKind.AUXILIARY,
            heap_used=report.used_heap,
            heap_total=report.total_heap,
            heap_limit=report.heap_limit,
        )


def _surface_id(surface: Any) -> str:
    return str(getattr(surface, "surface_id", "?"))
