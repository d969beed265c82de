"""Metric store tests: bounded history, aggregates and events."""

import logging

import pytest

from perf_telemetry.events import EventBus, EventType
from perf_telemetry.store import CORE_METRICS, MetricCategory, MetricStore


class TestCoreMetrics:
    """Metrics registered at construction."""

    def test_core_metrics_registered(self):
        store = MetricStore()
        assert store.names() == list(CORE_METRICS)

    def test_initial_values_seeded(self):
        store = MetricStore()
        fps = store.get("fps")
        assert fps.current == 60
        assert fps.min == 60
        assert fps.max == 60
        assert fps.category is MetricCategory.FPS
        assert store.get("frameTime").unit == "ms"

    def test_register_custom_metric(self):
        store = MetricStore()
        metric = store.register("indexBuild", "custom", 0, "ms")
        assert "indexBuild" in store
        assert metric.category is MetricCategory.CUSTOM


class TestRecord:
    """Recording values into bounded history."""

    def test_history_bounded_to_capacity(self):
        store = MetricStore(history_size=3)
        for value in [1, 2, 3, 4]:
            store.record("cpuUsage", value)
        history = store.get_history("cpuUsage")
        assert [dp.value for dp in history] == [2, 3, 4]

    def test_min_max_are_all_time(self):
        store = MetricStore(history_size=2)
        for value in [50, 5, 20, 30, 25]:
            store.record("cpuUsage", value)
        metric = store.get("cpuUsage")
        assert metric.min == 5
        assert metric.max == 50

    def test_first_record_replaces_seeded_extremes(self):
        store = MetricStore()
        store.record("fps", 58)
        metric = store.get("fps")
        assert metric.min == 58
        assert metric.max == 58

    def test_avg_over_retained_window_only(self):
        store = MetricStore(history_size=3)
        for value in [100, 1, 2, 3]:
            store.record("ipcLatency", value)
        assert store.get("ipcLatency").avg == pytest.approx(2.0)

    def test_unknown_metric_logged_not_raised(self, caplog):
        store = MetricStore()
        with caplog.at_level(logging.WARNING):
            assert store.record("nope", 1) is None
        assert "Unknown metric" in caplog.text

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_values_rejected(self, value, caplog):
        store = MetricStore()
        store.record("cpuUsage", 40)
        with caplog.at_level(logging.WARNING):
            assert store.record("cpuUsage", value) is None
        metric = store.get("cpuUsage")
        assert (metric.min, metric.max, metric.current) == (40, 40, 40)
        assert metric.sample_count == 1
        assert len(store.get_history("cpuUsage")) == 1
        assert "Non-finite metric value" in caplog.text

    def test_disabled_store_ignores_records(self):
        store = MetricStore()
        store.enabled = False
        assert store.record("fps", 10) is None
        assert store.get("fps").current == 60

    def test_metadata_and_timestamp_kept(self):
        store = MetricStore(clock=lambda: 1234.0)
        store.record("ipcLatency", 12, {"channel": "a"})
        point = store.get_history("ipcLatency")[0]
        assert point.timestamp == 1234.0
        assert point.metadata == {"channel": "a"}
        assert point.to_dict()["metadata"] == {"channel": "a"}

    def test_sample_count_lifetime(self):
        store = MetricStore(history_size=2)
        for value in range(5):
            store.record("drawCalls", value)
        assert store.get("drawCalls").sample_count == 5

    def test_metric_event_emitted(self):
        events = EventBus()
        seen = []
        events.subscribe(EventType.METRIC, seen.append)
        store = MetricStore(events=events)
        store.record("fps", 42)
        assert len(seen) == 1
        assert seen[0].data["metric"] == "fps"
        assert seen[0].data["value"] == 42.0


class TestQueries:
    """History, summary, resize and reset."""

    def test_get_history_limit(self):
        store = MetricStore()
        for value in range(10):
            store.record("rss", value)
        assert [dp.value for dp in store.get_history("rss", 3)] == [7, 8, 9]
        assert len(store.get_history("rss", 0)) == 10
        assert len(store.get_history("rss", -1)) == 10

    def test_get_history_returns_copy(self):
        store = MetricStore()
        store.record("rss", 1)
        history = store.get_history("rss")
        history.clear()
        assert len(store.get_history("rss")) == 1

    def test_get_history_unknown(self):
        assert MetricStore().get_history("missing") == []

    def test_summary_rounded(self):
        store = MetricStore()
        for value in [1.114, 2.226]:
            store.record("cpuUsage", value)
        summary = store.summary()["cpuUsage"]
        assert summary["avg"] == 1.67
        assert summary["min"] == 1.11
        assert summary["max"] == 2.23
        assert summary["unit"] == "%"

    def test_resize_keeps_newest(self):
        store = MetricStore(history_size=5)
        for value in [1, 2, 3, 4, 5]:
            store.record("cpuUsage", value)
        store.resize(2)
        assert [dp.value for dp in store.get_history("cpuUsage")] == [4, 5]
        assert store.get("cpuUsage").avg == pytest.approx(4.5)
        store.record("cpuUsage", 6)
        assert [dp.value for dp in store.get_history("cpuUsage")] == [5, 6]

    def test_reset_restores_core_metrics(self):
        store = MetricStore()
        store.register("custom", "custom")
        store.record("fps", 10)
        store.reset()
        assert "custom" not in store
        assert store.get("fps").current == 60
        assert store.get_history("fps") == []
