"""
perf-telemetry: runtime performance and memory telemetry.

Samples resource metrics for a host process and its auxiliary processes,
keeps bounded history, flags bottlenecks, detects heap leaks by linear
regression and exports JSON reports.

Usage:
    from perf_telemetry import TelemetryEngine, load_config

    engine = TelemetryEngine(load_config())
    await engine.start()
"""

from .alerts import (
    Alert,
    AlertCooldownManager,
    AlertKind,
    AlertManager,
    AlertSeverity,
    WebhookAlertForwarder,
)
from .bottlenecks import Bottleneck, BottleneckSeverity, BottleneckType, detect_bottlenecks
from .collector import CrossProcessMemoryCollector, HeapReport, RemoteSurface
from .config import (
    PerformanceThresholds,
    TelemetryConfig,
    TelemetrySettings,
    ThresholdPair,
    load_config,
)
from .engine import TelemetryEngine
from .events import EventBus, EventType, TelemetryEvent
from .exceptions import ConfigurationError, ReportExportError, TelemetryError
from .leaks import (
    LeakPattern,
    LeakPatternType,
    LeakSeverity,
    ResourceTracker,
    TimerKind,
    TrackedTimer,
    classify_leak_pattern,
)
from .logging_config import get_logger, setup_logging
from .report import ReportGenerator, summary_text
from .resources import GarbageCollection, PsutilResourceProbe, ResourceProbe, ResourceUsage, write_heap_snapshot
from .samples import MemorySampleStore, ProcessKind, ProcessMemorySample
from .sampler import Snapshot, SnapshotSampler
from .store import DataPoint, Metric, MetricCategory, MetricStore
from .timing import TimingTracker, measure_time
from .trends import GrowthAnalysis, TrendAnalyzer, TrendDirection, linear_regression

__version__ = "0.1.0"

__all__ = [
    "Alert",
    "AlertCooldownManager",
    "AlertKind",
    "AlertManager",
    "AlertSeverity",
    "Bottleneck",
    "BottleneckSeverity",
    "BottleneckType",
    "ConfigurationError",
    "CrossProcessMemoryCollector",
    "DataPoint",
    "EventBus",
    "EventType",
    "GarbageCollection",
    "GrowthAnalysis",
    "HeapReport",
    "LeakPattern",
    "LeakPatternType",
    "LeakSeverity",
    "MemorySampleStore",
    "Metric",
    "MetricCategory",
    "MetricStore",
    "PerformanceThresholds",
    "ProcessKind",
    "ProcessMemorySample",
    "PsutilResourceProbe",
    "RemoteSurface",
    "ReportExportError",
    "ReportGenerator",
    "ResourceProbe",
    "ResourceTracker",
    "ResourceUsage",
    "Snapshot",
    "SnapshotSampler",
    "TelemetryConfig",
    "TelemetryEngine",
    "TelemetryError",
    "TelemetryEvent",
    "TelemetrySettings",
    "ThresholdPair",
    "TimerKind",
    "TimingTracker",
    "TrackedTimer",
    "TrendAnalyzer",
    "TrendDirection",
    "WebhookAlertForwarder",
    "classify_leak_pattern",
    "detect_bottlenecks",
    "get_logger",
    "linear_regression",
    "load_config",
    "measure_time",
    "setup_logging",
    "summary_text",
    "write_heap_snapshot",
]
