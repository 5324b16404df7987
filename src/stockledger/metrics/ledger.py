from __future__ import annotations

from typing import Optional
import os
from prometheus_client import Counter, Gauge, REGISTRY

_transactions_recorded: Optional[Counter] = None
_transactions_rejected: Optional[Counter] = None
_oversell_total: Optional[Counter] = None
_storage_errors: Optional[Counter] = None
_listener_errors: Optional[Counter] = None
_events_total: Optional[Counter] = None
_audit_appends: Optional[Counter] = None
_audit_errors: Optional[Counter] = None
_account_balance: Optional[Gauge] = None


class _NoOp:
    def labels(self, *args, **kwargs):
        return self
    def inc(self, *args, **kwargs):
        return None
    def set(self, *args, **kwargs):
        return None


def _existing(name: str):
    # Counters register as "<name>" but are looked up without the _total suffix
    try:
        names = getattr(REGISTRY, "_names_to_collectors", {})
        coll = names.get(name) or names.get(name.removesuffix("_total"))
        if coll is not None:
            return coll
        for coll in list(getattr(REGISTRY, "_collector_to_names", {}).keys()):  # type: ignore[attr-defined]
            if getattr(coll, "_name", None) in (name, name.removesuffix("_total")):
                return coll
    except Exception:
        pass
    return None


def _safe_counter(name: str, doc: str, labelnames):
    if os.getenv("DISABLE_PROMETHEUS", "0") == "1":
        return _NoOp()
    try:
        return Counter(name, doc, labelnames)
    except ValueError:
        return _existing(name) or _NoOp()


def _safe_gauge_labels(name: str, doc: str, labelnames):
    if os.getenv("DISABLE_PROMETHEUS", "0") == "1":
        return _NoOp()
    try:
        return Gauge(name, doc, labelnames)
    except ValueError:
        coll = _existing(name)
        return coll if isinstance(coll, Gauge) else _NoOp()


def get_transactions_recorded_total():
    global _transactions_recorded
    if _transactions_recorded is None:
        _transactions_recorded = _safe_counter(
            "ledger_transactions_recorded_total", "Transactions written to the ledger", ["kind"]
        )
    return _transactions_recorded


def get_transactions_rejected_total():
    """Counter: ledger_transactions_rejected_total{reason}"""
    global _transactions_rejected
    if _transactions_rejected is None:
        _transactions_rejected = _safe_counter(
            "ledger_transactions_rejected_total", "Transactions rejected before write", ["reason"]
        )
    return _transactions_rejected


def get_oversell_total():
    """Counter: sells exceeding held quantity seen during recomputation, by policy."""
    global _oversell_total
    if _oversell_total is None:
        _oversell_total = _safe_counter("ledger_oversell_total", "Oversold sells encountered", ["policy"])
    return _oversell_total


def get_storage_errors_total():
    global _storage_errors
    if _storage_errors is None:
        _storage_errors = _safe_counter("ledger_storage_errors_total", "Key-value store failures", ["op"])
    return _storage_errors


def get_listener_errors_total():
    global _listener_errors
    if _listener_errors is None:
        _listener_errors = _safe_counter("ledger_listener_errors_total", "Subscriber callbacks that raised", [])
    return _listener_errors


def get_events_total():
    global _events_total
    if _events_total is None:
        _events_total = _safe_counter("ledger_events_total", "Ledger change events published", ["type"])
    return _events_total


def get_audit_counters():
    global _audit_appends, _audit_errors
    if _audit_appends is None:
        _audit_appends = _safe_counter("ledger_audit_appends_total", "Audit records appended", [])
    if _audit_errors is None:
        _audit_errors = _safe_counter("ledger_audit_errors_total", "Audit log errors", ["reason"])
    return _audit_appends, _audit_errors


def get_account_balance_gauge():
    """Gauge: ledger_account_balance{currency}, set on every balance computation."""
    global _account_balance
    if _account_balance is None:
        _account_balance = _safe_gauge_labels("ledger_account_balance", "Account cash balance", ["currency"])
    return _account_balance


def set_account_balance(balance: float, currency: str = "USD") -> None:
    try:
        get_account_balance_gauge().labels(currency=currency).set(float(balance))  # type: ignore[attr-defined]
    except Exception:
        # Metrics are optional in constrained environments
        pass


def inc_rejected(reason: str) -> None:
    try:
        get_transactions_rejected_total().labels(reason).inc()
    except Exception:
        pass


def inc_storage_error(op: str) -> None:
    try:
        get_storage_errors_total().labels(op).inc()
    except Exception:
        pass
