"""
Telemetry Engine

Owns every telemetry component and drives the sampling loop. Each tick
samples the primary process, collects auxiliary heap figures, turns threshold
breaches into alerts and runs leak detection over the sample buffers.

Usage:
    engine = TelemetryEngine(load_config())
    await engine.start()
    ...
    engine.record_metric("fps", 58)
    with engine.track("settings:get"):
        ...
    report = engine.generate_report()
    await engine.stop()
"""

from __future__ import annotations

import asyncio
import gc
import time
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

from .alerts import Alert, AlertKind, AlertManager, AlertSeverity
from .bottlenecks import Bottleneck
from .collector import CrossProcessMemoryCollector, SurfaceProvider
from .config import TelemetryConfig
from .events import EventBus, EventType
from .exceptions import ReportExportError
from .leaks import LeakPattern, ResourceTracker, TimerKind, TrackedTimer, classify_leak_pattern
from .logging_config import get_logger
from .report import PerformanceReport, ReportGenerator
from .resources import GarbageCollection, PsutilResourceProbe, ResourceProbe, write_heap_snapshot
from .samples import BYTES_PER_MB, MemorySampleStore, ProcessKind, ProcessMemorySample
from .sampler import Snapshot, SnapshotSampler
from .store import DataPoint, Metric, MetricCategory, MetricStore
from .timing import TimingTracker
from .trends import MIN_SAMPLES, GrowthAnalysis, TrendAnalyzer

logger = get_logger(__name__)

LEAK_CHECK_MIN_SAMPLES = 10
LEAK_CONFIDENCE = 0.7
CRITICAL_LEAK_RATE_MB_PER_MIN = 5


def _wall_clock_ms() -> float:
    return time.time() * 1000


def _no_surfaces() -> list:
    return []


class TelemetryEngine:
    """Runtime performance and memory telemetry for one host process."""

    def __init__(
        self,
        config: TelemetryConfig | None = None,
        probe: ResourceProbe | None = None,
        surface_provider: SurfaceProvider | None = None,
        clock: Callable[[], float] = _wall_clock_ms,
    ):
        """Initialize the engine and its components.

        Args:
            config: Engine configuration (defaults to TelemetryConfig())
            probe: Primary process reader (defaults to psutil)
            surface_provider: Returns auxiliary surfaces each tick
            clock: Wall clock in epoch milliseconds
        """
        self.config = config or TelemetryConfig()
        self.clock = clock
        self.events = EventBus()

        self.store = MetricStore(self.config.history_size, events=self.events, clock=clock)
        self.store.enabled = self.config.enabled
        self.timing = TimingTracker(self.store, events=self.events)
        self.sampler = SnapshotSampler(
            self.store,
            probe or PsutilResourceProbe(),
            thresholds=self.config.thresholds,
            history_size=self.config.history_size,
            events=self.events,
            clock=clock,
        )
        self.samples = MemorySampleStore(self.config.history_size)
        self.collector = CrossProcessMemoryCollector(
            surface_provider or _no_surfaces,
            self.samples,
            timeout_s=self.config.effective_collection_timeout_s,
            clock=clock,
        )
        self.analyzer = TrendAnalyzer(
            self.samples,
            window_minutes=self.config.analysis_window_minutes,
            leak_threshold_mb_per_min=self.config.leak_growth_rate_mb_per_min,
            clock=clock,
        )
        self.tracker = ResourceTracker()
        self.alerts = AlertManager(
            capacity=self.config.alert_capacity,
            cooldown_seconds=self.config.alert_cooldown_s,
            events=self.events,
            clock=clock,
        )
        self.reports = ReportGenerator(
            self.store,
            self.sampler,
            self.samples,
            self.analyzer,
            self.tracker,
            self.alerts,
            metrics_dir=self.config.metrics_dir,
            memory_warning_mb=self.config.memory_warning_mb,
            events=self.events,
            clock=clock,
        )

        self._task: asyncio.Task | None = None
        self._export_task: asyncio.Task | None = None
        self._ticks = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the sampling loop (and auto-export when configured)."""
        if self._task is not None:
            logger.warning("Telemetry engine already running")
            return
        if not self.config.enabled:
            logger.info("Telemetry disabled, not starting")
            return

        self.collector.open()
        self.sampler.set_baseline()
        self.reports.running = True
        self._task = asyncio.create_task(self._run_loop())
        if self.config.auto_export:
            self._start_export_task()

        logger.info(
            "Telemetry engine started",
            interval_s=self.config.sample_interval_s,
            history_size=self.config.history_size,
            auto_export=self.config.auto_export,
        )
        self.events.emit(EventType.STARTED, {"config": self.config.to_dict()})

    async def stop(self) -> None:
        """Cancel the sampling and export tasks.

        In-flight auxiliary evaluations finish on their own; their results
        are discarded.
        """
        if self._task is None:
            return
        self.collector.close()

        tasks = [t for t in (self._task, self._export_task) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._task = None
        self._export_task = None
        self.reports.running = False
        logger.info("Telemetry engine stopped", ticks=self._ticks)
        self.events.emit(EventType.STOPPED, {"ticks": self._ticks})

    async def _run_loop(self) -> None:
        """Sample every `sample_interval_s`, re-read on each iteration."""
        try:
            while True:
                await asyncio.sleep(self.config.sample_interval_s)
                if not self.config.enabled:
                    continue
                try:
                    await self.tick()
                except Exception as e:
                    logger.exception("Sampling tick failed", error=str(e))
        except asyncio.CancelledError:
            logger.debug("Sampling loop cancelled")
            raise

    async def _export_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.config.export_interval_s)
                try:
                    await self.reports.export_async()
                except ReportExportError as e:
                    logger.warning("Auto-export failed", error=str(e))
        except asyncio.CancelledError:
            logger.debug("Export loop cancelled")
            raise

    def _start_export_task(self) -> None:
        if self._export_task is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop, auto-export deferred to start()")
            return
        self._export_task = loop.create_task(self._export_loop())

    def _stop_export_task(self) -> None:
        if self._export_task is not None:
            self._export_task.cancel()
            self._export_task = None

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    async def tick(self) -> Snapshot | None:
        """Run one sampling round.

        Returns:
            The primary snapshot, or None if the probe failed
        """
        self._ticks += 1
        snapshot = self.take_snapshot()

        if self.config.collect_auxiliary:
            for sample in await self.collector.collect():
                self._on_sample(sample)

        if self.config.auto_detect_leaks:
            self._check_leaks(ProcessKind.PRIMARY)
            for process_id in self.samples.auxiliary_ids():
                self._check_leaks(ProcessKind.AUXILIARY, process_id)

        return snapshot

    def take_snapshot(self) -> Snapshot | None:
        """Sample the primary process now, outside the loop schedule."""
        snapshot = self.sampler.sample()
        if snapshot is None:
            return None

        for bottleneck in snapshot.bottlenecks:
            self._alert_bottleneck(bottleneck)

        usage = self.sampler.last_usage
        if usage is not None:
            self._on_sample(ProcessMemorySample(
                timestamp=snapshot.timestamp,
                process_id=usage.process_id,
                process_kind=ProcessKind.PRIMARY,
                heap_used=usage.heap_used,
                heap_total=usage.heap_total,
                heap_limit=usage.heap_limit,
                resident_set_size=usage.rss,
                external_memory=usage.external,
            ))
        return snapshot

    def _on_sample(self, sample: ProcessMemorySample) -> None:
        if sample.process_kind is ProcessKind.PRIMARY:
            self.samples.append(sample)
        self.events.emit(EventType.SAMPLE, sample.to_dict())
        self.check_memory_thresholds(sample)

    def _alert_bottleneck(self, bottleneck: Bottleneck) -> Alert | None:
        return self.alerts.emit(
            AlertKind.THRESHOLD_EXCEEDED,
            bottleneck.severity.value,
            f"{bottleneck.description}: {bottleneck.value:.1f} (threshold {bottleneck.threshold:g})",
            current_value=bottleneck.value,
            process_kind=ProcessKind.PRIMARY,
            threshold=bottleneck.threshold,
            dimension=bottleneck.type.value,
        )

    def check_memory_thresholds(self, sample: ProcessMemorySample) -> list[Alert]:
        """Raise heap-size and OOM-risk alerts for one sample."""
        raised = []
        used_mb = sample.heap_used_mb
        pid = sample.process_id if sample.process_kind is ProcessKind.AUXILIARY else None

        if used_mb >= self.config.memory_critical_mb:
            alert = self.alerts.emit(
                AlertKind.THRESHOLD_EXCEEDED,
                AlertSeverity.CRITICAL,
                f"Critical memory threshold exceeded: {used_mb:.2f}MB >= {self.config.memory_critical_mb:g}MB",
                current_value=used_mb,
                process_kind=sample.process_kind,
                threshold=self.config.memory_critical_mb,
                process_id=pid,
                dimension="heap",
            )
            raised.append(alert)
        elif used_mb >= self.config.memory_warning_mb:
            alert = self.alerts.emit(
                AlertKind.THRESHOLD_EXCEEDED,
                AlertSeverity.WARNING,
                f"Memory threshold warning: {used_mb:.2f}MB >= {self.config.memory_warning_mb:g}MB",
                current_value=used_mb,
                process_kind=sample.process_kind,
                threshold=self.config.memory_warning_mb,
                process_id=pid,
                dimension="heap",
            )
            raised.append(alert)

        limit_percent = sample.heap_limit_percent()
        if limit_percent is not None and limit_percent >= self.config.oom_risk_percent:
            alert = self.alerts.emit(
                AlertKind.OOM_RISK,
                AlertSeverity.CRITICAL,
                f"Out of memory risk: Heap usage at {limit_percent:.1f}% of limit",
                current_value=used_mb,
                process_kind=sample.process_kind,
                threshold=self.config.oom_risk_percent,
                process_id=pid,
                dimension="heap-limit",
            )
            raised.append(alert)

        return [a for a in raised if a is not None]

    def _check_leaks(self, process_kind: ProcessKind, process_id: int | None = None) -> Alert | None:
        if len(self.samples.samples(process_kind, process_id)) <= LEAK_CHECK_MIN_SAMPLES:
            return None

        analysis = self.analyzer.analyze_growth(process_kind, process_id)
        if not (analysis.is_leaking and analysis.confidence_score > LEAK_CONFIDENCE):
            return None

        rate = analysis.growth_rate_mb_per_minute
        pattern = classify_leak_pattern(rate, self.tracker.listener_total, self.tracker.timer_count)
        logger.warning(
            "Memory leak detected",
            process_kind=process_kind.value,
            process_id=process_id,
            growth_rate=round(rate, 3),
            confidence=round(analysis.confidence_score, 3),
            pattern=pattern.type.value,
        )
        return self.alerts.emit(
            AlertKind.LEAK_DETECTED,
            AlertSeverity.CRITICAL if rate > CRITICAL_LEAK_RATE_MB_PER_MIN else AlertSeverity.WARNING,
            f"Memory leak detected: Growing at {rate:.2f} MB/min",
            current_value=analysis.average_used_mb,
            process_kind=process_kind,
            process_id=process_id,
            leak_pattern=pattern,
            dimension="heap-growth",
        )

    # ------------------------------------------------------------------
    # Inbound instrumentation
    # ------------------------------------------------------------------

    def register_metric(
        self,
        name: str,
        category: MetricCategory | str = MetricCategory.CUSTOM,
        initial: float = 0,
        unit: str = "",
    ) -> Metric:
        return self.store.register(name, category, initial, unit)

    def record_metric(self, name: str, value: float, metadata: dict[str, Any] | None = None) -> Metric | None:
        return self.store.record(name, value, metadata)

    def start_timing(self, channel: str, request_id: str) -> None:
        self.timing.start_timing(channel, request_id)

    def end_timing(self, channel: str, request_id: str, success: bool = True, error: str | None = None) -> float:
        return self.timing.end_timing(channel, request_id, success=success, error=error)

    def track(self, channel: str, request_id: str | None = None):
        """Time a block as one operation on `channel`."""
        return self.timing.track(channel, request_id)

    def record_voice_stage_timing(self, stage: str, duration_ms: float) -> None:
        self.sampler.record_voice_timing(stage, duration_ms)

    def update_render_metrics(self, metrics: Mapping[str, float]) -> None:
        self.sampler.update_render_metrics(metrics)

    def track_listener(self, target: str, event: str, delta: int = 1) -> None:
        self.tracker.track_listener(target, event, delta)

    def track_timer(self, kind: TimerKind | str = TimerKind.INTERVAL) -> int:
        return self.tracker.track_timer(kind)

    def untrack_timer(self, timer_id: int) -> None:
        self.tracker.untrack_timer(timer_id)

    def create_tracked_interval(self, callback: Callable[[], Any], interval_s: float) -> TrackedTimer:
        return self.tracker.create_tracked_interval(callback, interval_s)

    def create_tracked_timeout(self, callback: Callable[[], Any], delay_s: float) -> TrackedTimer:
        return self.tracker.create_tracked_timeout(callback, delay_s)

    def clear_tracked_timer(self, timer: TrackedTimer) -> None:
        self.tracker.clear_tracked(timer)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def force_gc(self) -> GarbageCollection:
        """Run a full garbage collection and report the heap before and after."""
        logger.info("Forcing garbage collection")
        before = self._read_heap_mb()
        collected = gc.collect()
        after = self._read_heap_mb()
        result = GarbageCollection(collected=collected, heap_before_mb=before, heap_after_mb=after)
        logger.info("Garbage collection finished", **result.to_dict())
        return result

    def _read_heap_mb(self) -> float | None:
        try:
            return self.sampler.probe.read().heap_used / BYTES_PER_MB
        except Exception as e:
            logger.warning("Resource probe failed", error=str(e))
            return None

    def write_heap_snapshot(self, path: str | Path | None = None) -> Path | None:
        """Dump a tracemalloc snapshot for offline comparison.

        Args:
            path: Destination file (defaults to a timestamped file in metrics_dir)

        Returns:
            The path written, or None when tracing is off or writing failed
        """
        target = Path(path) if path is not None else (
            Path(self.config.metrics_dir) / f"heap-{int(self.clock())}.tracemalloc"
        )
        try:
            written = write_heap_snapshot(target)
        except (RuntimeError, OSError) as e:
            logger.error("Failed to write heap snapshot", path=str(target), error=str(e))
            return None
        logger.info("Heap snapshot written", path=str(written))
        return written

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def update_config(self, **changes: Any) -> TelemetryConfig:
        """Apply configuration changes to the live engine.

        Raises:
            ConfigurationError: If a field is unknown or a value is invalid
        """
        new = self.config.merged(**changes)
        old = self.config
        self.config = new

        self.store.enabled = new.enabled
        if new.history_size != old.history_size:
            self.store.resize(new.history_size)
            self.sampler.resize(new.history_size)
            self.samples.resize(new.history_size)
        self.sampler.thresholds = new.thresholds
        self.collector.timeout_s = new.effective_collection_timeout_s
        self.analyzer.window_minutes = new.analysis_window_minutes
        self.analyzer.leak_threshold_mb_per_min = new.leak_growth_rate_mb_per_min
        if new.alert_capacity != old.alert_capacity:
            self.alerts.resize(new.alert_capacity)
        self.alerts.set_cooldown(new.alert_cooldown_s)
        self.reports.metrics_dir = Path(new.metrics_dir)
        self.reports.memory_warning_mb = new.memory_warning_mb

        if self.is_running:
            if new.auto_export:
                self._start_export_task()
            else:
                self._stop_export_task()

        logger.info("Telemetry config updated", changed=sorted(changes))
        self.events.emit(EventType.CONFIG_UPDATED, {"changed": sorted(changes), "config": new.to_dict()})
        return new

    def reset(self) -> None:
        """Clear collected data and re-register the core metrics.

        Listener and timer tracking reflects live host state and is kept.
        """
        self.store.reset()
        self.timing.clear()
        self.sampler.reset()
        self.samples.clear()
        self.alerts.clear()
        self.reports.started_at = self.clock()
        if self.is_running:
            self.sampler.set_baseline()
        logger.info("Telemetry data reset")
        self.events.emit(EventType.RESET, {})

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_metrics_summary(self) -> dict[str, dict[str, Any]]:
        return self.store.summary()

    def get_metric_history(self, name: str, limit: int | None = None) -> list[DataPoint]:
        return self.store.get_history(name, limit)

    def get_snapshots(self, limit: int | None = None) -> list[Snapshot]:
        return self.sampler.get_snapshots(limit)

    def get_memory_samples(
        self,
        process_kind: ProcessKind | str = ProcessKind.PRIMARY,
        process_id: int | None = None,
    ) -> list[ProcessMemorySample]:
        return self.samples.samples(process_kind, process_id)

    def analyze_growth(
        self,
        process_kind: ProcessKind | str = ProcessKind.PRIMARY,
        process_id: int | None = None,
    ) -> GrowthAnalysis:
        return self.analyzer.analyze_growth(process_kind, process_id)

    def detect_leak_pattern(self) -> LeakPattern:
        """Classify the likely leak cause for the primary process."""
        analysis = self.analyzer.analyze_growth(ProcessKind.PRIMARY)
        return classify_leak_pattern(
            analysis.growth_rate_mb_per_minute,
            self.tracker.listener_total,
            self.tracker.timer_count,
        )

    def get_alerts(self, count: int = 20) -> list[Alert]:
        return self.alerts.get_alerts(count)

    def get_status(self) -> dict[str, Any]:
        """Running state, buffer sizes and the latest primary analysis."""
        analysis = None
        if self.samples.primary_count() >= MIN_SAMPLES:
            analysis = self.analyzer.analyze_growth(ProcessKind.PRIMARY).to_dict()
        return {
            "is_running": self.is_running,
            "enabled": self.config.enabled,
            "uptime_ms": self.clock() - self.reports.started_at,
            "ticks": self._ticks,
            "metric_count": len(self.store.names()),
            "snapshot_count": self.sampler.snapshot_count,
            "pending_timings": self.timing.pending_count,
            "memory": self.reports.memory_status(),
            "alerts_by_kind": self.alerts.counts_by_kind(),
            "suppressed_alerts": self.alerts.suppressed_count,
            "event_listeners": self.tracker.listener_stats(),
            "timers": self.tracker.timer_stats(),
            "last_analysis": analysis,
        }

    def generate_report(self) -> PerformanceReport:
        return self.reports.generate()

    def export_report(self, path: str | Path | None = None) -> Path:
        """Write a report to disk and return its path.

        Raises:
            ReportExportError: If writing fails
        """
        return self.reports.export(path)
