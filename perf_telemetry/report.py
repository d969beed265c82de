"""
Performance Report Generation

Assembles a JSON-ready report from the metric store, snapshots, memory
analysis and alert log, and writes it to disk.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .alerts import AlertManager
from .events import EventBus, EventType
from .exceptions import ReportExportError
from .leaks import ResourceTracker, classify_leak_pattern
from .logging_config import get_logger
from .samples import MemorySampleStore, ProcessKind
from .sampler import SnapshotSampler
from .store import MetricStore
from .trends import MIN_SAMPLES, TrendAnalyzer

logger = get_logger(__name__)

LOW_FPS = 55
HIGH_PEAK_HEAP_MB = 400
HIGH_AVG_CPU = 50
HIGH_IPC_LATENCY_MS = 20
LISTENER_REVIEW = 50
INTERVAL_REVIEW = 20

PerformanceReport = dict[str, Any]


def _wall_clock_ms() -> float:
    return time.time() * 1000


class ReportGenerator:
    """Builds and exports performance reports."""

    def __init__(
        self,
        store: MetricStore,
        sampler: SnapshotSampler,
        samples: MemorySampleStore,
        analyzer: TrendAnalyzer,
        tracker: ResourceTracker,
        alerts: AlertManager,
        metrics_dir: str | Path,
        memory_warning_mb: float = 400.0,
        events: EventBus | None = None,
        clock: Callable[[], float] = _wall_clock_ms,
    ):
        self.store = store
        self.sampler = sampler
        self.samples = samples
        self.analyzer = analyzer
        self.tracker = tracker
        self.alerts = alerts
        self.metrics_dir = Path(metrics_dir)
        self.memory_warning_mb = memory_warning_mb
        self.events = events
        self.clock = clock
        self.started_at = clock()
        self.running = False

    def memory_status(self) -> dict[str, Any]:
        """Sampling state and heap figures for the primary process."""
        primary = self.samples.samples(ProcessKind.PRIMARY)
        return {
            "is_running": self.running,
            "primary_sample_count": len(primary),
            "auxiliary_processes": len(self.samples.auxiliary_ids()),
            "current_heap_mb": round(primary[-1].heap_used_mb, 2) if primary else 0.0,
            "peak_heap_mb": round(max((s.heap_used_mb for s in primary), default=0.0), 2),
            "alert_count": len(self.alerts),
        }

    def generate(self) -> PerformanceReport:
        """Build a report from current state. Reads only."""
        fps = self.store.get("avgFps")
        heap = self.store.get("heapUsed")
        cpu = self.store.get("cpuUsage")
        ipc = self.store.get("ipcLatency")

        snapshots = self.sampler.get_snapshots()
        bottleneck_count = sum(len(s.bottlenecks) for s in snapshots)

        analysis = None
        pattern = None
        if self.samples.primary_count() >= MIN_SAMPLES:
            analysis = self.analyzer.analyze_growth(ProcessKind.PRIMARY)
            if analysis.is_leaking:
                pattern = classify_leak_pattern(
                    analysis.growth_rate_mb_per_minute,
                    self.tracker.listener_total,
                    self.tracker.timer_count,
                )

        status = self.memory_status()
        recommendations: list[str] = []

        if fps and fps.avg < LOW_FPS:
            recommendations.append(
                f"Average FPS ({fps.avg:.1f}) is below target. Consider reducing particle count or disabling effects."
            )
        if heap and heap.max > HIGH_PEAK_HEAP_MB:
            recommendations.append(f"Peak memory usage ({heap.max:.1f}MB) is high. Monitor for memory leaks.")
        if cpu and cpu.avg > HIGH_AVG_CPU:
            recommendations.append(f"Average CPU usage ({cpu.avg:.1f}%) is elevated. Review active processes.")
        if ipc and ipc.avg > HIGH_IPC_LATENCY_MS:
            recommendations.append(
                f"IPC latency ({ipc.avg:.1f}ms avg) could be optimized. Consider batching operations."
            )
        if status["current_heap_mb"] > self.memory_warning_mb:
            recommendations.append(
                f"Memory usage ({status['current_heap_mb']:.2f}MB) is above warning threshold. Consider investigating."
            )
        if analysis is not None and analysis.is_leaking:
            recommendations.append(
                f"Memory leak detected with {analysis.growth_rate_mb_per_minute:.2f} MB/min growth rate."
            )
            if pattern is not None:
                recommendations.append(pattern.suggested_fix)

        listeners = self.tracker.listener_stats()
        if listeners["total"] > LISTENER_REVIEW:
            recommendations.append(f"High event listener count ({listeners['total']}). Review listener cleanup.")
        timers = self.tracker.timer_stats()
        if timers["intervals"] > INTERVAL_REVIEW:
            recommendations.append(f"Many active intervals ({timers['intervals']}). Ensure proper cleanup.")

        return {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "duration_since_start_ms": self.clock() - self.started_at,
            "summary": {
                "avg_fps": fps.avg if fps else 60.0,
                "avg_memory": heap.avg if heap else 0.0,
                "avg_cpu": cpu.avg if cpu else 0.0,
                "avg_ipc_latency": ipc.avg if ipc else 0.0,
                "bottleneck_count": bottleneck_count,
            },
            "snapshots": [s.to_dict() for s in snapshots],
            "metrics": {name: metric.to_dict() for name, metric in self.store.all().items()},
            "recommendations": recommendations,
            "memory": {
                "status": status,
                "analysis": analysis.to_dict() if analysis else None,
                "leak_pattern": pattern.to_dict() if pattern else None,
                "event_listeners": listeners,
                "timers": timers,
            },
            "alerts": [a.to_dict() for a in self.alerts.get_alerts(self.alerts.capacity)],
        }

    def default_path(self) -> Path:
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        return self.metrics_dir / f"perf-report-{stamp}.json"

    def export(self, path: str | Path | None = None) -> Path:
        """Write a fresh report as indented JSON.

        Args:
            path: Destination file (defaults to a timestamped file in metrics_dir)

        Returns:
            The path written

        Raises:
            ReportExportError: If the report cannot be serialized or written
        """
        target = Path(path) if path is not None else self.default_path()
        self.write(self.generate(), target)
        return self._exported(target)

    async def export_async(self, path: str | Path | None = None) -> Path:
        """Like `export`, with serialization and file I/O in a worker thread.

        The report is built on the calling loop so that buffers are never
        read while a tick is appending to them.
        """
        target = Path(path) if path is not None else self.default_path()
        report = self.generate()
        await asyncio.to_thread(self.write, report, target)
        return self._exported(target)

    def write(self, report: PerformanceReport, target: Path) -> None:
        """Serialize `report` to `target`.

        Raises:
            ReportExportError: If the report cannot be serialized or written
        """
        with logger.measure_time("export_report"):
            try:
                content = json.dumps(report, indent=2, allow_nan=False)
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(content, encoding="utf-8")
            except (OSError, TypeError, ValueError) as e:
                raise ReportExportError(str(target), str(e)) from e

    def _exported(self, target: Path) -> Path:
        logger.info("Performance report exported", path=str(target))
        if self.events is not None:
            self.events.emit(EventType.REPORT_EXPORTED, {"path": str(target)})
        return target


def summary_text(report: PerformanceReport) -> str:
    """Plain-text rendering of a report's headline figures."""
    summary = report["summary"]
    memory = report.get("memory") or {}
    status = memory.get("status") or {}
    lines = [
        f"Performance report ({report['generated_at']})",
        f"  Uptime:            {report['duration_since_start_ms'] / 1000:.1f}s",
        f"  Avg FPS:           {summary['avg_fps']:.1f}",
        f"  Avg heap used:     {summary['avg_memory']:.1f} MB",
        f"  Avg CPU:           {summary['avg_cpu']:.1f}%",
        f"  Avg IPC latency:   {summary['avg_ipc_latency']:.1f} ms",
        f"  Bottlenecks:       {summary['bottleneck_count']}",
        f"  Snapshots:         {len(report['snapshots'])}",
        f"  Alerts:            {len(report['alerts'])}",
    ]
    if status:
        lines.append(f"  Peak heap:         {status.get('peak_heap_mb', 0.0):.1f} MB")
    analysis = memory.get("analysis")
    if analysis:
        lines.append(
            f"  Heap trend:        {analysis['trend_direction']} "
            f"({analysis['growth_rate_mb_per_minute']:.2f} MB/min, confidence {analysis['confidence_score']:.2f})"
        )
    if report["recommendations"]:
        lines.append("Recommendations:")
        lines.extend(f"  - {rec}" for rec in report["recommendations"])
    return "\n".join(lines)
