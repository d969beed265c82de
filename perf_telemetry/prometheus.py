"""
Prometheus Exposition

Custom collector that reads the engine's state at scrape time.

Usage:
    registry = CollectorRegistry()
    registry.register(TelemetryCollector(engine))
    body = generate_metrics(registry)
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily

if TYPE_CHECKING:
    from .engine import TelemetryEngine

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")
_INVALID_CHARS = re.compile(r"[^a-zA-Z0-9_]")


def metric_label(name: str) -> str:
    """`heapUsed` -> `heap_used`, safe for a label value."""
    return _INVALID_CHARS.sub("_", _CAMEL_BOUNDARY.sub("_", name)).lower()


class TelemetryCollector:
    """Custom collector for telemetry engine metrics.

    Usage:
        collector = TelemetryCollector(engine)
        REGISTRY.register(collector)
    """

    def __init__(self, engine: "TelemetryEngine", namespace: str = "perf_telemetry"):
        self.engine = engine
        self.namespace = namespace

    def collect(self):
        """Collect engine metrics."""
        ns = self.namespace
        labels = ["metric", "category", "unit"]

        families = {
            stat: GaugeMetricFamily(f"{ns}_metric_{stat}", f"Metric {stat} value", labels=labels)
            for stat in ("current", "avg", "min", "max")
        }
        samples = CounterMetricFamily(
            f"{ns}_metric_samples",
            "Values recorded per metric",
            labels=labels,
        )
        for name, metric in self.engine.store.all().items():
            label_values = [metric_label(name), metric.category.value, metric.unit]
            families["current"].add_metric(label_values, metric.current)
            families["avg"].add_metric(label_values, metric.avg)
            families["min"].add_metric(label_values, metric.min)
            families["max"].add_metric(label_values, metric.max)
            samples.add_metric(label_values, metric.sample_count)
        yield from families.values()
        yield samples

        alerts = GaugeMetricFamily(f"{ns}_alerts", "Alerts in the alert log", labels=["kind"])
        for kind, count in self.engine.alerts.counts_by_kind().items():
            alerts.add_metric([kind], count)
        yield alerts

        yield CounterMetricFamily(
            f"{ns}_alerts_suppressed",
            "Alerts suppressed by cooldown",
            value=self.engine.alerts.suppressed_count,
        )
        yield GaugeMetricFamily(
            f"{ns}_snapshots",
            "Snapshots retained",
            value=self.engine.sampler.snapshot_count,
        )
        yield GaugeMetricFamily(
            f"{ns}_pending_timings",
            "Operations started but not ended",
            value=self.engine.timing.pending_count,
        )
        yield GaugeMetricFamily(
            f"{ns}_auxiliary_processes",
            "Auxiliary processes with buffered samples",
            value=len(self.engine.samples.auxiliary_ids()),
        )
        yield GaugeMetricFamily(
            f"{ns}_running",
            "1 while the sampling loop runs",
            value=1 if self.engine.is_running else 0,
        )

    def describe(self):
        """Describe metrics for registration."""
        return []


def generate_metrics(registry: CollectorRegistry) -> bytes:
    """Generate Prometheus metrics output.

    Returns:
        bytes: Metrics in Prometheus exposition format
    """
    return generate_latest(registry)


def get_content_type() -> str:
    """Get the content type for metrics response."""
    return CONTENT_TYPE_LATEST
