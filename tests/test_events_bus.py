import json
import logging

from stockledger.events.bus import EventBus
from stockledger.events.schema import SettingsChanged, TransactionDeleted, TransactionRecorded


def _recorded(**kw):
    fields = dict(symbol="ACME", transaction_id="t1", kind="buy", quantity=10, price=10.0)
    fields.update(kw)
    return TransactionRecorded(**fields)


def test_emit_wraps_event_in_envelope_with_sequence():
    bus = EventBus()
    seen = []
    bus.subscribe(seen.append)
    first = bus.emit(_recorded(), correlation_id="t1")
    second = bus.emit(TransactionDeleted(symbol="ACME", transaction_id="t1"))
    assert [env.sequence for env in seen] == [1, 2]
    assert first.correlation_id == "t1"
    assert second.correlation_id == "ACME"
    assert seen[0].event.event_type == "transaction_recorded"
    assert seen[1].event.transaction_id == "t1"


def test_failing_subscriber_does_not_block_others(caplog):
    bus = EventBus()
    calls = []

    def boom(env):
        raise RuntimeError("listener crashed")

    bus.subscribe(lambda env: calls.append("first"))
    bus.subscribe(boom)
    bus.subscribe(lambda env: calls.append("last"))
    with caplog.at_level(logging.ERROR, logger="stockledger.events"):
        bus.emit(SettingsChanged(changes={"initial_funds": 100.0}))
    assert calls == ["first", "last"]
    assert "listener crashed" in caplog.text


def test_unsubscribe_stops_delivery():
    bus = EventBus()
    seen = []
    unsubscribe = bus.subscribe(seen.append)
    assert len(bus) == 1
    bus.emit(_recorded())
    unsubscribe()
    unsubscribe()
    bus.emit(_recorded())
    assert len(seen) == 1
    assert len(bus) == 0


def test_subscriber_may_unsubscribe_during_delivery():
    bus = EventBus()
    seen = []

    def once(env):
        seen.append("once")
        bus.unsubscribe(once)

    bus.subscribe(once)
    bus.subscribe(lambda env: seen.append("always"))
    bus.emit(_recorded())
    bus.emit(_recorded())
    assert seen == ["once", "always", "always"]


def test_publish_logs_single_json_line(caplog):
    bus = EventBus()
    with caplog.at_level(logging.INFO, logger="stockledger.events"):
        bus.emit(_recorded(), correlation_id="c1")
    line = [r.getMessage() for r in caplog.records if r.name == "stockledger.events"][0]
    payload = json.loads(line)
    assert payload["correlation_id"] == "c1"
    assert payload["event"]["event_type"] == "transaction_recorded"
    assert payload["event"]["quantity"] == 10
