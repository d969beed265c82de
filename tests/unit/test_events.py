"""Event channel tests."""

import json
import logging

from perf_telemetry.events import EventBus, EventType, TelemetryEvent


def test_subscribers_called_in_order():
    bus = EventBus()
    calls = []
    bus.subscribe(EventType.METRIC, lambda e: calls.append("first"))
    bus.subscribe("metric", lambda e: calls.append("second"))
    bus.emit(EventType.METRIC, {"metric": "fps"})
    assert calls == ["first", "second"]


def test_only_matching_type_delivered():
    bus = EventBus()
    seen = []
    bus.subscribe(EventType.ALERT, seen.append)
    bus.emit(EventType.METRIC, {})
    assert seen == []


def test_wildcard_receives_everything():
    bus = EventBus()
    seen = []
    bus.subscribe(None, lambda e: seen.append(e.type))
    bus.emit(EventType.STARTED)
    bus.emit(EventType.STOPPED)
    assert seen == [EventType.STARTED, EventType.STOPPED]


def test_failing_subscriber_isolated(caplog):
    bus = EventBus()
    seen = []

    def broken(event):
        raise RuntimeError("subscriber bug")

    bus.subscribe(EventType.SNAPSHOT, broken)
    bus.subscribe(EventType.SNAPSHOT, seen.append)
    with caplog.at_level(logging.WARNING):
        bus.emit(EventType.SNAPSHOT, {})
    assert len(seen) == 1
    assert "Event subscriber failed" in caplog.text


def test_unsubscribe():
    bus = EventBus()
    seen = []
    unsubscribe = bus.subscribe(EventType.RESET, seen.append)
    unsubscribe()
    unsubscribe()
    bus.emit(EventType.RESET)
    assert seen == []
    assert bus.subscriber_count(EventType.RESET) == 0


def test_clear():
    bus = EventBus()
    bus.subscribe(EventType.RESET, print)
    bus.subscribe(None, print)
    bus.clear()
    assert bus.subscriber_count(EventType.RESET) == 0
    assert bus.subscriber_count() == 0


def test_event_to_json():
    event = TelemetryEvent(type=EventType.ALERT, data={"severity": "critical"})
    data = json.loads(event.to_json())
    assert data["type"] == "alert"
    assert data["data"] == {"severity": "critical"}
    assert "timestamp" in data
