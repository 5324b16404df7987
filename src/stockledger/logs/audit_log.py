from __future__ import annotations

import json
import os
from typing import Any, Dict, List, Optional
import logging
import time

from ..metrics.ledger import get_audit_counters


REQUIRED_KEYS = {
    "ts", "action", "transaction_id", "symbol", "kind", "quantity", "price",
}


def validate_record(rec: Dict[str, Any]) -> List[str]:
    missing = [k for k in REQUIRED_KEYS if k not in rec]
    return missing


def append_jsonl(path: str, rec: Dict[str, Any]) -> bool:
    """Append one audit record as a JSON line; return False if it was not written."""
    app, err = get_audit_counters()
    missing = validate_record(rec)
    if missing:
        err.labels("missing_fields").inc()
        return False
    parent = os.path.dirname(path)
    try:
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(rec, ensure_ascii=False, default=str) + "\n")
        app.inc()
        return True
    except OSError:
        err.labels("io_error").inc()
        return False


def read_jsonl(path: str) -> List[Dict[str, Any]]:
    if not os.path.exists(path):
        return []
    out = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                out.append(json.loads(line))
    return out


def log_ledger_event(
    event_type: str,
    symbol: Optional[str] = None,
    severity: str = "INFO",
    ts: Optional[int] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> None:
    """Emit a structured JSON log line for a ledger business event.

    Keys: event, symbol, ts, severity, component, schema_version
    """
    try:
        logger = logging.getLogger("stockledger.ledger")
        payload: Dict[str, Any] = {
            "event": str(event_type),
            "symbol": str(symbol) if symbol is not None else None,
            "ts": int(ts if ts is not None else int(time.time() * 1000)),
            "severity": severity,
            "component": "ledger",
            "schema_version": "v1",
        }
        if extra:
            payload["extra"] = extra
        level = logging.WARNING if severity == "WARNING" else logging.INFO
        logger.log(level, json.dumps(payload, separators=(",", ":"), default=str))
    except Exception:
        # Logging must never throw
        pass
