"""Alert manager, cooldown and webhook forwarding tests."""

import json
import logging

import httpx
import pytest

from perf_telemetry.alerts import (
    AlertCooldownManager,
    AlertKind,
    AlertManager,
    AlertSeverity,
    WebhookAlertForwarder,
)
from perf_telemetry.events import EventBus, EventType
from perf_telemetry.leaks import classify_leak_pattern
from perf_telemetry.samples import ProcessKind


class FakeMonotonic:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestAlertCooldownManager:
    """Fingerprint cooldowns."""

    def test_first_alert_allowed(self):
        assert AlertCooldownManager(60).can_alert("x")

    def test_repeat_blocked_until_expired(self):
        clock = FakeMonotonic()
        manager = AlertCooldownManager(60, clock=clock)
        manager.record_alert("x")
        assert not manager.can_alert("x")
        assert manager.get_cooldown_remaining("x") == pytest.approx(60)
        clock.now = 60
        assert manager.can_alert("x")

    def test_zero_disables(self):
        manager = AlertCooldownManager(0)
        manager.record_alert("x")
        assert manager.can_alert("x")
        assert manager.get_cooldown_remaining("x") == 0


class TestAlertManager:
    """Bounded log with event fan-out."""

    def test_emit_stores_and_publishes(self):
        events = EventBus()
        seen = []
        events.subscribe(EventType.ALERT, seen.append)
        manager = AlertManager(events=events, clock=lambda: 99.0)

        alert = manager.emit("threshold-exceeded", "warning", "High memory", 410, "primary", threshold=400)

        assert alert.kind is AlertKind.THRESHOLD_EXCEEDED
        assert alert.severity is AlertSeverity.WARNING
        assert alert.timestamp == 99.0
        assert len(alert.id) == 12
        assert manager.get_alerts() == [alert]
        assert seen[0].data["message"] == "High memory"
        assert seen[0].data["threshold"] == 400

    def test_logged_at_warning(self, caplog):
        with caplog.at_level(logging.WARNING):
            AlertManager().emit(AlertKind.OOM_RISK, AlertSeverity.CRITICAL, "OOM soon", 900)
        assert "OOM soon" in caplog.text

    def test_capacity_evicts_oldest(self):
        manager = AlertManager(capacity=3, cooldown_seconds=0)
        for i in range(5):
            manager.emit(AlertKind.THRESHOLD_EXCEEDED, AlertSeverity.WARNING, f"a{i}", i)
        assert [a.message for a in manager.get_alerts(10)] == ["a2", "a3", "a4"]

    def test_get_alerts_newest_count(self):
        manager = AlertManager(cooldown_seconds=0)
        for i in range(30):
            manager.emit(AlertKind.THRESHOLD_EXCEEDED, AlertSeverity.WARNING, f"a{i}", i)
        recent = manager.get_alerts()
        assert len(recent) == 20
        assert recent[-1].message == "a29"
        assert manager.get_alerts(0) == []

    def test_default_records_every_emit(self):
        manager = AlertManager()
        first = manager.emit(AlertKind.OOM_RISK, AlertSeverity.CRITICAL, "OOM soon", 950)
        second = manager.emit(AlertKind.OOM_RISK, AlertSeverity.CRITICAL, "OOM soon", 960)
        assert first is not None and second is not None
        assert first.id != second.id
        assert len(manager) == 2
        assert manager.suppressed_count == 0

    def test_cooldown_suppresses_same_fingerprint(self):
        clock = FakeMonotonic()
        manager = AlertManager(cooldown_seconds=60, cooldown_clock=clock)
        assert manager.emit(AlertKind.THRESHOLD_EXCEEDED, AlertSeverity.WARNING, "a", 1, dimension="cpu")
        assert manager.emit(AlertKind.THRESHOLD_EXCEEDED, AlertSeverity.WARNING, "b", 1, dimension="cpu") is None
        assert manager.suppressed_count == 1
        clock.now = 61
        assert manager.emit(AlertKind.THRESHOLD_EXCEEDED, AlertSeverity.WARNING, "c", 1, dimension="cpu")

    def test_cooldown_distinguishes_fingerprints(self):
        manager = AlertManager(cooldown_seconds=60)
        assert manager.emit(AlertKind.THRESHOLD_EXCEEDED, AlertSeverity.WARNING, "a", 1, dimension="cpu")
        assert manager.emit(AlertKind.THRESHOLD_EXCEEDED, AlertSeverity.CRITICAL, "b", 1, dimension="cpu")
        assert manager.emit(AlertKind.THRESHOLD_EXCEEDED, AlertSeverity.WARNING, "c", 1, dimension="fps")
        assert manager.emit(
            AlertKind.THRESHOLD_EXCEEDED, AlertSeverity.WARNING, "d", 1,
            process_kind=ProcessKind.AUXILIARY, process_id=7, dimension="cpu",
        )
        assert len(manager) == 4

    def test_counts_and_clear(self):
        manager = AlertManager(cooldown_seconds=0)
        manager.emit(AlertKind.LEAK_DETECTED, AlertSeverity.WARNING, "leak", 1)
        manager.emit(AlertKind.OOM_RISK, AlertSeverity.CRITICAL, "oom", 1)
        assert manager.counts_by_kind() == {"threshold-exceeded": 0, "leak-detected": 1, "oom-risk": 1}
        manager.clear()
        assert manager.get_alerts() == []

    def test_leak_pattern_serialized(self):
        manager = AlertManager()
        pattern = classify_leak_pattern(3, 0, 0)
        alert = manager.emit(AlertKind.LEAK_DETECTED, AlertSeverity.WARNING, "leak", 120, leak_pattern=pattern)
        data = alert.to_dict()
        assert data["leak_pattern"]["type"] == "closure-retention"
        assert data["process_kind"] == "primary"
        json.dumps(data)

    def test_resize(self):
        manager = AlertManager(capacity=5, cooldown_seconds=0)
        for i in range(5):
            manager.emit(AlertKind.THRESHOLD_EXCEEDED, AlertSeverity.WARNING, f"a{i}", i)
        manager.resize(2)
        assert [a.message for a in manager.get_alerts()] == ["a3", "a4"]


class TestWebhookAlertForwarder:
    """HTTP forwarding of alert events."""

    @pytest.mark.asyncio
    async def test_forwards_alert_events(self):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(json.loads(request.content))
            return httpx.Response(202)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            events = EventBus()
            forwarder = WebhookAlertForwarder("https://hooks.test/alerts", client=client)
            forwarder.attach(events)
            manager = AlertManager(events=events)

            manager.emit(AlertKind.OOM_RISK, AlertSeverity.CRITICAL, "OOM soon", 950)
            await forwarder.flush()

        assert len(received) == 1
        assert received[0]["alerts"][0]["kind"] == "oom-risk"
        assert received[0]["source"] == "perf-telemetry"

    @pytest.mark.asyncio
    async def test_failure_reported_not_raised(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            forwarder = WebhookAlertForwarder("https://hooks.test/alerts", client=client)
            result = await forwarder.send([{"id": "x"}])

        assert result["status"] == "error"

    @pytest.mark.asyncio
    async def test_success_status(self):
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200))) as client:
            forwarder = WebhookAlertForwarder("https://hooks.test/alerts", client=client)
            result = await forwarder.send([])
        assert result == {"status": "success", "response_code": 200}

    def test_no_loop_skips(self):
        events = EventBus()
        forwarder = WebhookAlertForwarder("https://hooks.test/alerts")
        forwarder.attach(events)
        AlertManager(events=events).emit(AlertKind.OOM_RISK, AlertSeverity.CRITICAL, "x", 1)
        assert not forwarder._pending
        forwarder.detach()
        assert events.subscriber_count(EventType.ALERT) == 0
