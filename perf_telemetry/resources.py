"""
Primary Process Resource Probe

Reads cumulative CPU time and memory figures for the monitored process.
The engine depends only on the `ResourceProbe` protocol; `PsutilResourceProbe`
is the default implementation.
"""

from __future__ import annotations

import os
import resource
import tracemalloc
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import psutil


@dataclass
class ResourceUsage:
    """Point-in-time resource figures for one process (bytes / seconds)."""
    process_id: int
    cpu_user_s: float  # cumulative
    cpu_system_s: float  # cumulative
    heap_used: int
    heap_total: int
    heap_limit: int  # 0 when unavailable
    rss: int
    external: int
    memory_percent: float  # RSS as percent of physical memory
    cores: int = 1


class ResourceProbe(Protocol):
    """Anything that can report resource usage for the primary process."""

    def read(self) -> ResourceUsage:
        ...


class PsutilResourceProbe:
    """psutil-backed probe for the current (or a given) process.

    Heap figures come from tracemalloc when it is tracing; otherwise RSS and
    VMS stand in for used and total heap. The heap limit is the RLIMIT_AS
    soft limit when one is set.
    """

    def __init__(self, pid: int | None = None):
        self.pid = pid or os.getpid()
        self._proc = psutil.Process(self.pid)
        self._cores = psutil.cpu_count() or 1

    def read(self) -> ResourceUsage:
        """Take a reading. psutil errors propagate to the sampler."""
        with self._proc.oneshot():
            cpu = self._proc.cpu_times()
            mem = self._proc.memory_info()
            memory_percent = self._proc.memory_percent()

        if tracemalloc.is_tracing():
            heap_used, heap_peak = tracemalloc.get_traced_memory()
            heap_total = max(heap_peak, heap_used)
        else:
            heap_used = mem.rss
            heap_total = max(mem.vms, mem.rss)

        return ResourceUsage(
            process_id=self.pid,
            cpu_user_s=cpu.user,
            cpu_system_s=cpu.system,
            heap_used=heap_used,
            heap_total=heap_total,
            heap_limit=self._heap_limit(),
            rss=mem.rss,
            external=getattr(mem, "shared", 0),
            memory_percent=memory_percent,
            cores=self._cores,
        )

    def _heap_limit(self) -> int:
        if self.pid != os.getpid():
            return 0
        try:
            soft, _ = resource.getrlimit(resource.RLIMIT_AS)
        except (ValueError, OSError):
            return 0
        if soft == resource.RLIM_INFINITY or soft < 0:
            return 0
        return soft


@dataclass
class GarbageCollection:
    """Outcome of a forced collection with heap readings around it (MB)."""
    collected: int
    heap_before_mb: float | None
    heap_after_mb: float | None

    @property
    def freed_mb(self) -> float | None:
        if self.heap_before_mb is None or self.heap_after_mb is None:
            return None
        return self.heap_before_mb - self.heap_after_mb

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "collected": self.collected,
            "heap_before_mb": self.heap_before_mb,
            "heap_after_mb": self.heap_after_mb,
            "freed_mb": self.freed_mb,
        }


def write_heap_snapshot(path: str | Path) -> Path:
    """Dump the current tracemalloc snapshot to `path`.

    The file can be reloaded with `tracemalloc.Snapshot.load` and compared
    against a later dump to find growing allocation sites.

    Raises:
        RuntimeError: If tracemalloc is not tracing
        OSError: If the file cannot be written
    """
    if not tracemalloc.is_tracing():
        raise RuntimeError("tracemalloc is not tracing; call tracemalloc.start() or set PYTHONTRACEMALLOC")
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    tracemalloc.take_snapshot().dump(str(target))
    return target
