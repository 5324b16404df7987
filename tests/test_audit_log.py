import json
import logging

from stockledger.logs.audit_log import append_jsonl, log_ledger_event, read_jsonl, validate_record


def _record(**kw):
    rec = {
        "ts": 1700000000000,
        "action": "recorded",
        "transaction_id": "t1",
        "symbol": "ACME",
        "kind": "buy",
        "quantity": 10,
        "price": 10.0,
    }
    rec.update(kw)
    return rec


def test_append_and_read_back(tmp_path):
    path = str(tmp_path / "audit" / "ledger.jsonl")
    assert append_jsonl(path, _record())
    assert append_jsonl(path, _record(action="deleted"))
    rows = read_jsonl(path)
    assert [r["action"] for r in rows] == ["recorded", "deleted"]


def test_missing_keys_are_not_written(tmp_path):
    path = str(tmp_path / "ledger.jsonl")
    rec = _record()
    del rec["price"]
    assert validate_record(rec) == ["price"]
    assert append_jsonl(path, rec) is False
    assert read_jsonl(path) == []


def test_io_error_returns_false(tmp_path):
    # a directory cannot be opened for append
    assert append_jsonl(str(tmp_path), _record()) is False


def test_log_ledger_event_json(caplog):
    with caplog.at_level(logging.INFO, logger="stockledger.ledger"):
        log_ledger_event("transaction_recorded", "ACME", ts=123, extra={"transaction_id": "t1"})
        log_ledger_event("transaction_rejected", None, severity="WARNING")
    first, second = caplog.records[-2:]
    payload = json.loads(first.getMessage())
    assert payload == {
        "event": "transaction_recorded",
        "symbol": "ACME",
        "ts": 123,
        "severity": "INFO",
        "component": "ledger",
        "schema_version": "v1",
        "extra": {"transaction_id": "t1"},
    }
    assert second.levelno == logging.WARNING
