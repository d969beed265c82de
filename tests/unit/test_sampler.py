"""Snapshot sampler tests: metric recording, CPU deltas, event order."""

import logging

import pytest

from conftest import FakeClock, FakeProbe
from perf_telemetry.events import EventBus, EventType
from perf_telemetry.sampler import SnapshotSampler
from perf_telemetry.store import MetricStore


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def sampler(probe, clock, events):
    store = MetricStore(events=events, clock=clock)
    return SnapshotSampler(store, probe, history_size=3, events=events, clock=clock)


class TestSample:
    """One sampling tick."""

    def test_memory_metrics_recorded(self, sampler):
        snapshot = sampler.sample()
        store = sampler.store
        assert snapshot.memory.heap_used == 100
        assert store.get("heapUsed").current == 100
        assert store.get("heapTotal").current == 200
        assert store.get("rss").current == 300
        assert store.get("memoryPercent").current == 50

    def test_cpu_percent_from_deltas(self, sampler, probe, clock):
        sampler.set_baseline()
        clock.advance(1000)
        probe.add_cpu(user_s=0.2, system_s=0.05)
        snapshot = sampler.sample()
        assert snapshot.cpu.usage == pytest.approx(25.0)
        assert snapshot.cpu.user_time == pytest.approx(200.0)
        assert snapshot.cpu.system_time == pytest.approx(50.0)
        assert sampler.store.get("cpuUsage").current == pytest.approx(25.0)

    def test_cpu_percent_clamped(self, sampler, probe, clock):
        sampler.set_baseline()
        clock.advance(1000)
        probe.add_cpu(user_s=3.0)
        assert sampler.sample().cpu.usage == 100.0

    def test_first_tick_without_baseline(self, sampler):
        assert sampler.sample().cpu.usage == 0.0

    def test_zero_heap_total(self, sampler, probe):
        probe.set_heap(10, total_mb=0)
        assert sampler.sample().memory.percent_used == 0.0

    def test_snapshot_ring_bounded(self, sampler, clock):
        for _ in range(5):
            clock.advance(1000)
            sampler.sample()
        assert sampler.snapshot_count == 3
        assert len(sampler.get_snapshots(2)) == 2

    def test_ipc_summary(self, sampler):
        sampler.store.record("ipcLatency", 30)
        sampler.store.record("ipcLatency", 10)
        sampler.store.record("ipcMessages", 2)
        summary = sampler.sample().ipc_summary
        assert summary.avg_latency == 20
        assert summary.max_latency == 30
        assert summary.message_count == 2
        assert summary.error_count == 0

    def test_bottlenecks_attached(self, sampler, probe):
        probe.set_heap(190, total_mb=200)
        snapshot = sampler.sample()
        assert [b.type.value for b in snapshot.bottlenecks] == ["memory"]

    def test_snapshot_event_after_metric_events(self, sampler, events):
        order = []
        events.subscribe(None, lambda e: order.append(e.type))
        sampler.sample()
        assert order[-1] is EventType.SNAPSHOT
        assert order.count(EventType.METRIC) == 7
        assert EventType.SNAPSHOT not in order[:-1]

    def test_probe_failure_yields_none(self, sampler, probe, caplog):
        probe.error = RuntimeError("gone")
        with caplog.at_level(logging.WARNING):
            assert sampler.sample() is None
        assert sampler.snapshot_count == 0
        assert "Resource probe failed" in caplog.text


class TestVoiceAndRender:
    """Host-pushed voice timings and render metrics."""

    def test_voice_timing_recorded(self, sampler, events):
        seen = []
        events.subscribe(EventType.VOICE_TIMING, seen.append)
        sampler.record_voice_timing("stt_latency", 120)
        sampler.record_voice_timing("vad_processing", 5)
        assert sampler.store.get("sttLatency").current == 120
        assert sampler.voice_timings == {"stt_latency": 120.0, "vad_processing": 5.0}
        assert len(seen) == 2

    def test_unknown_voice_stage_ignored(self, sampler):
        sampler.record_voice_timing("mystery", 1)
        assert sampler.voice_timings == {}

    def test_render_metrics_recorded(self, sampler, events):
        seen = []
        events.subscribe(EventType.RENDER_METRICS, seen.append)
        sampler.update_render_metrics({"fps": 58, "avg_fps": 57, "frame_time": 17.2, "draw_calls": 40})
        store = sampler.store
        assert store.get("fps").current == 58
        assert store.get("avgFps").current == 57
        assert store.get("frameTime").current == 17.2
        assert store.get("drawCalls").current == 40
        assert seen[0].data["avg_fps"] == 57

    def test_snapshot_carries_latest_values(self, sampler):
        sampler.record_voice_timing("total_response_time", 900)
        sampler.update_render_metrics({"fps": 60, "avg_fps": 60})
        snapshot = sampler.sample()
        assert snapshot.voice_timings == {"total_response_time": 900.0}
        assert snapshot.render_metrics["fps"] == 60
        data = snapshot.to_dict()
        assert data["voice_timings"]["total_response_time"] == 900.0

    def test_reset_clears_state(self, sampler):
        sampler.record_voice_timing("stt_latency", 1)
        sampler.sample()
        sampler.reset()
        assert sampler.snapshot_count == 0
        assert sampler.voice_timings == {}
        assert sampler.render_metrics is None


def test_sampler_uses_default_thresholds():
    sampler = SnapshotSampler(MetricStore(), FakeProbe(), clock=FakeClock())
    assert sampler.thresholds.fps.critical == 30
