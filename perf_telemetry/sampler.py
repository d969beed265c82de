"""
Snapshot Sampler

One tick reads the primary process, records memory and CPU metrics, runs
bottleneck detection and stores a Snapshot. The latest voice-pipeline
timings and render metrics pushed by the host ride along in each snapshot.
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .bottlenecks import Bottleneck, detect_bottlenecks
from .config import PerformanceThresholds
from .events import EventBus, EventType
from .logging_config import get_logger
from .resources import ResourceProbe, ResourceUsage
from .samples import BYTES_PER_MB
from .store import MetricStore

logger = get_logger(__name__)

# Voice stage -> metric it feeds (stages without a metric are kept in snapshots only)
VOICE_STAGE_METRICS: dict[str, str] = {
    "wake_word_detection": "wakeWordLatency",
    "stt_latency": "sttLatency",
    "llm_first_token": "llmLatency",
    "tts_first_audio": "ttsLatency",
    "total_response_time": "totalResponseTime",
}

VOICE_STAGES = (
    "wake_word_detection",
    "vad_processing",
    "stt_latency",
    "llm_first_token",
    "llm_total_time",
    "tts_first_audio",
    "tts_total_time",
    "total_response_time",
)

# Render field -> metric
RENDER_METRICS: dict[str, str] = {
    "fps": "fps",
    "avg_fps": "avgFps",
    "frame_time": "frameTime",
    "particle_count": "particleCount",
    "draw_calls": "drawCalls",
    "triangles": "triangles",
}


def _wall_clock_ms() -> float:
    return time.time() * 1000


@dataclass
class MemoryMetrics:
    """Primary process memory in MB."""
    heap_used: float
    heap_total: float
    heap_limit: float
    rss: float
    external: float
    percent_used: float  # heap used / heap total
    rss_percent: float  # RSS / physical memory

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "heap_used": self.heap_used,
            "heap_total": self.heap_total,
            "heap_limit": self.heap_limit,
            "rss": self.rss,
            "external": self.external,
            "percent_used": self.percent_used,
            "rss_percent": self.rss_percent,
        }


@dataclass
class CpuMetrics:
    usage: float  # percent, clamped to [0, 100]
    user_time: float  # ms since the previous tick
    system_time: float  # ms since the previous tick
    cores: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "usage": self.usage,
            "user_time": self.user_time,
            "system_time": self.system_time,
            "cores": self.cores,
        }


@dataclass
class IpcSummary:
    avg_latency: float = 0.0
    max_latency: float = 0.0
    message_count: int = 0
    error_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "avg_latency": self.avg_latency,
            "max_latency": self.max_latency,
            "message_count": self.message_count,
            "error_count": self.error_count,
        }


@dataclass
class Snapshot:
    """Everything sampled in one tick."""
    timestamp: float  # epoch ms
    memory: MemoryMetrics
    cpu: CpuMetrics
    ipc_summary: IpcSummary
    bottlenecks: list[Bottleneck] = field(default_factory=list)
    voice_timings: dict[str, float] | None = None
    render_metrics: dict[str, float] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "timestamp": self.timestamp,
            "memory": self.memory.to_dict(),
            "cpu": self.cpu.to_dict(),
            "ipc_summary": self.ipc_summary.to_dict(),
            "voice_timings": dict(self.voice_timings) if self.voice_timings else None,
            "render_metrics": dict(self.render_metrics) if self.render_metrics else None,
            "bottlenecks": [b.to_dict() for b in self.bottlenecks],
        }


class SnapshotSampler:
    """Turns probe readings into metrics and snapshots."""

    def __init__(
        self,
        store: MetricStore,
        probe: ResourceProbe,
        thresholds: PerformanceThresholds | None = None,
        history_size: int = 300,
        events: EventBus | None = None,
        clock: Callable[[], float] = _wall_clock_ms,
    ):
        self.store = store
        self.probe = probe
        self.thresholds = thresholds or PerformanceThresholds()
        self.events = events
        self.clock = clock
        self._snapshots: deque[Snapshot] = deque(maxlen=history_size)
        self._voice_timings: dict[str, float] = {}
        self._render_metrics: dict[str, float] | None = None
        self._last_cpu_s: float | None = None  # None until a baseline exists
        self._last_user_s = 0.0
        self._last_system_s = 0.0
        self._last_wall_ms: float = 0.0
        self.last_usage: ResourceUsage | None = None

    def set_baseline(self) -> None:
        """Anchor CPU deltas at now. Called when sampling starts."""
        try:
            usage = self.probe.read()
        except Exception as e:
            logger.warning("Resource probe failed", error=str(e))
            return
        self._last_cpu_s = usage.cpu_user_s + usage.cpu_system_s
        self._last_user_s = usage.cpu_user_s
        self._last_system_s = usage.cpu_system_s
        self._last_wall_ms = self.clock()

    def sample(self) -> Snapshot | None:
        """Take one snapshot. Probe failures are logged and yield None."""
        try:
            usage = self.probe.read()
        except Exception as e:
            logger.warning("Resource probe failed", error=str(e))
            return None
        self.last_usage = usage

        now = self.clock()
        memory = self._memory_metrics(usage)
        cpu = self._cpu_metrics(usage, now)

        self.store.record("heapUsed", memory.heap_used)
        self.store.record("heapTotal", memory.heap_total)
        self.store.record("rss", memory.rss)
        self.store.record("memoryPercent", memory.percent_used)
        self.store.record("cpuUsage", cpu.usage)
        self.store.record("cpuUser", cpu.user_time)
        self.store.record("cpuSystem", cpu.system_time)

        snapshot = Snapshot(
            timestamp=now,
            memory=memory,
            cpu=cpu,
            ipc_summary=self._ipc_summary(),
            bottlenecks=detect_bottlenecks(self.store.all(), self.thresholds),
            voice_timings=dict(self._voice_timings) or None,
            render_metrics=dict(self._render_metrics) if self._render_metrics else None,
        )
        self._snapshots.append(snapshot)

        if self.events is not None:
            self.events.emit(EventType.SNAPSHOT, snapshot.to_dict())
        return snapshot

    def _memory_metrics(self, usage: ResourceUsage) -> MemoryMetrics:
        percent = usage.heap_used / usage.heap_total * 100 if usage.heap_total > 0 else 0.0
        return MemoryMetrics(
            heap_used=round(usage.heap_used / BYTES_PER_MB, 2),
            heap_total=round(usage.heap_total / BYTES_PER_MB, 2),
            heap_limit=round(usage.heap_limit / BYTES_PER_MB, 2),
            rss=round(usage.rss / BYTES_PER_MB, 2),
            external=round(usage.external / BYTES_PER_MB, 2),
            percent_used=round(percent, 2),
            rss_percent=round(usage.memory_percent, 2),
        )

    def _cpu_metrics(self, usage: ResourceUsage, now: float) -> CpuMetrics:
        if self._last_cpu_s is None:
            # No baseline yet: this reading becomes one
            user_ms = system_ms = 0.0
            percent = 0.0
        else:
            user_ms = max(0.0, usage.cpu_user_s - self._last_user_s) * 1000
            system_ms = max(0.0, usage.cpu_system_s - self._last_system_s) * 1000
            elapsed_ms = now - self._last_wall_ms
            if elapsed_ms <= 0:
                elapsed_ms = 1000.0
            percent = min(100.0, max(0.0, (user_ms + system_ms) / elapsed_ms * 100))

        self._last_cpu_s = usage.cpu_user_s + usage.cpu_system_s
        self._last_user_s = usage.cpu_user_s
        self._last_system_s = usage.cpu_system_s
        self._last_wall_ms = now

        return CpuMetrics(
            usage=round(percent, 2),
            user_time=user_ms,
            system_time=system_ms,
            cores=usage.cores,
        )

    def _ipc_summary(self) -> IpcSummary:
        latency = self.store.get("ipcLatency")
        messages = self.store.get("ipcMessages")
        errors = self.store.get("ipcErrors")
        return IpcSummary(
            avg_latency=latency.avg if latency else 0.0,
            max_latency=latency.max if latency else 0.0,
            message_count=int(messages.current) if messages else 0,
            error_count=int(errors.current) if errors else 0,
        )

    def record_voice_timing(self, stage: str, duration_ms: float) -> None:
        """Remember a voice-pipeline stage duration and feed its metric."""
        if not self.store.enabled:
            return
        if stage not in VOICE_STAGES:
            logger.warning("Unknown voice stage", stage=stage)
            return
        self._voice_timings[stage] = float(duration_ms)
        metric = VOICE_STAGE_METRICS.get(stage)
        if metric:
            self.store.record(metric, duration_ms)
        if self.events is not None:
            self.events.emit(EventType.VOICE_TIMING, {"stage": stage, "duration_ms": float(duration_ms)})

    def update_render_metrics(self, metrics: Mapping[str, float]) -> None:
        """Store the renderer's latest frame figures and record each one."""
        if not self.store.enabled:
            return
        render = {key: float(value) for key, value in metrics.items() if value is not None}
        self._render_metrics = render
        for key, metric in RENDER_METRICS.items():
            if key in render:
                self.store.record(metric, render[key])
        if self.events is not None:
            self.events.emit(EventType.RENDER_METRICS, dict(render))

    @property
    def voice_timings(self) -> dict[str, float]:
        return dict(self._voice_timings)

    @property
    def render_metrics(self) -> dict[str, float] | None:
        return dict(self._render_metrics) if self._render_metrics else None

    def get_snapshots(self, limit: int | None = None) -> list[Snapshot]:
        """Newest `limit` snapshots (all when limit is None or <= 0)."""
        snapshots = list(self._snapshots)
        if limit and limit > 0:
            return snapshots[-limit:]
        return snapshots

    @property
    def snapshot_count(self) -> int:
        return len(self._snapshots)

    def resize(self, history_size: int) -> None:
        self._snapshots = deque(self._snapshots, maxlen=history_size)

    def reset(self) -> None:
        """Forget snapshots, voice/render state and the CPU baseline."""
        self._snapshots.clear()
        self._voice_timings.clear()
        self._render_metrics = None
        self._last_cpu_s = None
        self.last_usage = None
        self._last_wall_ms = 0.0
