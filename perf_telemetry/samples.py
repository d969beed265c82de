"""Per-process heap sample ring buffers."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any

BYTES_PER_MB = 1024 * 1024


class ProcessKind(str, Enum):
    """Which side of the host a sample came from."""
    PRIMARY = "primary"
    AUXILIARY = "auxiliary"


@dataclass
class ProcessMemorySample:
    """Heap figures for one process at one instant (bytes)."""
    timestamp: float  # epoch ms
    process_id: int
    process_kind: ProcessKind
    heap_used: int
    heap_total: int
    heap_limit: int = 0
    resident_set_size: int = 0
    external_memory: int = 0

    @property
    def heap_used_mb(self) -> float:
        return self.heap_used / BYTES_PER_MB

    @property
    def heap_total_mb(self) -> float:
        return self.heap_total / BYTES_PER_MB

    @property
    def rss_mb(self) -> float:
        return self.resident_set_size / BYTES_PER_MB

    @property
    def external_mb(self) -> float:
        return self.external_memory / BYTES_PER_MB

    def heap_limit_percent(self) -> float | None:
        """Heap used as a percent of the limit; None when no limit is known."""
        if self.heap_limit <= 0:
            return None
        return self.heap_used / self.heap_limit * 100

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "timestamp": self.timestamp,
            "process_id": self.process_id,
            "process_kind": self.process_kind.value,
            "heap_used": self.heap_used,
            "heap_total": self.heap_total,
            "heap_limit": self.heap_limit,
            "resident_set_size": self.resident_set_size,
            "external_memory": self.external_memory,
            "heap_used_mb": round(self.heap_used_mb, 2),
        }


class MemorySampleStore:
    """One FIFO ring buffer for the primary process, one per auxiliary process."""

    def __init__(self, capacity: int = 300):
        self.capacity = capacity
        self._primary: deque[ProcessMemorySample] = deque(maxlen=capacity)
        self._auxiliary: dict[int, deque[ProcessMemorySample]] = {}

    def append(self, sample: ProcessMemorySample) -> None:
        """Append a sample to its process's buffer (oldest evicted)."""
        if sample.process_kind is ProcessKind.PRIMARY:
            self._primary.append(sample)
            return
        buffer = self._auxiliary.get(sample.process_id)
        if buffer is None:
            buffer = deque(maxlen=self.capacity)
            self._auxiliary[sample.process_id] = buffer
        buffer.append(sample)

    def samples(
        self,
        process_kind: ProcessKind | str,
        process_id: int | None = None,
    ) -> list[ProcessMemorySample]:
        """Copy of a buffer. Auxiliary lookups without an id return []."""
        if ProcessKind(process_kind) is ProcessKind.PRIMARY:
            return list(self._primary)
        if process_id is None:
            return []
        return list(self._auxiliary.get(process_id, ()))

    def latest(self, process_kind: ProcessKind | str, process_id: int | None = None) -> ProcessMemorySample | None:
        """Newest sample in a buffer, if any."""
        buffered = self.samples(process_kind, process_id)
        return buffered[-1] if buffered else None

    def auxiliary_ids(self) -> list[int]:
        """Process ids with an auxiliary buffer."""
        return list(self._auxiliary)

    def primary_count(self) -> int:
        return len(self._primary)

    def resize(self, capacity: int) -> None:
        """Change capacity, keeping the newest samples."""
        self.capacity = capacity
        self._primary = deque(self._primary, maxlen=capacity)
        self._auxiliary = {
            pid: deque(buffer, maxlen=capacity)
            for pid, buffer in self._auxiliary.items()
        }

    def clear(self) -> None:
        self._primary.clear()
        self._auxiliary.clear()
