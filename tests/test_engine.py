import datetime as dt
import json

import pytest

from stockledger.config.loader import Settings
from stockledger.ledger.engine import LedgerEngine, parse_transaction
from stockledger.ledger.errors import (
    ImportFormatError,
    InsufficientFundsError,
    OversoldError,
    StorageFailure,
    TransactionNotFound,
    ValidationError,
)
from stockledger.ledger.model import CommissionSchedule
from stockledger.logs.audit_log import read_jsonl
from stockledger.storage.kv import MemoryStore
from stockledger.storage.repository import LEGACY_KEYS, LedgerStorage

TODAY = dt.date(2024, 6, 30)


def make_engine(store=None, **overrides):
    overrides.setdefault("migrate_legacy", False)
    storage = LedgerStorage(store if store is not None else MemoryStore())
    return LedgerEngine(storage, Settings(**overrides), today=lambda: TODAY)


def buy(qty, price, date="2024-01-02", symbol="ACME", **kw):
    return dict(symbol=symbol, kind="buy", quantity=qty, price=price, date=date, **kw)


def sell(qty, price, date="2024-01-03", symbol="ACME", **kw):
    return dict(symbol=symbol, kind="sell", quantity=qty, price=price, date=date, **kw)


class BrokenWrites(MemoryStore):
    def set(self, key, value):
        raise OSError("read-only")


def test_record_trades_and_derive_state():
    eng = make_engine()
    eng.set_initial_funds(10_000)
    seen = []
    eng.subscribe(seen.append)

    first = eng.add_transaction({"code": "acme", "type": "BUY", "price": 10, "quantity": 100, "date": "2024-01-02"})
    eng.add_transaction(sell(40, 15))

    assert first.symbol == "ACME"
    h = eng.holdings()["ACME"]
    assert (h.quantity, h.total_cost) == (60, 600.0)
    assert eng.account_balance() == 9590.0
    assert eng.available_quantity("acme") == 60
    assert eng.realized_trades()[0].profit == 200.0
    assert [env.event.event_type for env in seen] == ["transaction_recorded", "transaction_recorded"]
    assert seen[0].correlation_id == first.id


def test_oversold_sell_is_rejected_before_write():
    eng = make_engine()
    eng.add_transaction(buy(10, 5, symbol="X"))
    seen = []
    eng.subscribe(seen.append)
    with pytest.raises(OversoldError) as exc:
        eng.add_transaction(sell(15, 6, symbol="X"))
    assert exc.value.available == 10
    assert len(eng.transactions()) == 1
    assert eng.holdings()["X"].quantity == 10
    rejected = seen[-1].event
    assert rejected.event_type == "transaction_rejected"
    assert rejected.reason == "oversold"


def test_backdated_sell_checked_against_its_own_position_in_time():
    eng = make_engine()
    eng.add_transaction(buy(10, 5, date="2024-02-01"))
    with pytest.raises(OversoldError):
        eng.add_transaction(sell(5, 6, date="2024-01-15"))


def test_future_date_rejected():
    eng = make_engine()
    with pytest.raises(ValidationError, match="future"):
        eng.add_transaction(buy(1, 1, date=(TODAY + dt.timedelta(days=1)).isoformat()))
    eng.add_transaction(buy(1, 1, date=TODAY.isoformat()))
    assert len(eng.transactions()) == 1


def test_malformed_input_reports_field_errors():
    eng = make_engine()
    with pytest.raises(ValidationError) as exc:
        eng.add_transaction(buy(0, 0))
    assert any(e.startswith("price") for e in exc.value.errors)
    assert any(e.startswith("quantity") for e in exc.value.errors)
    with pytest.raises(ValidationError):
        eng.add_transaction({"kind": "buy", "price": 1, "quantity": 1, "date": "2024-01-01"})
    with pytest.raises(ValidationError):
        eng.add_transaction(buy(1, 0.004))
    assert eng.transactions() == []


def test_parse_transaction_accepts_models_and_mappings():
    tx = parse_transaction(buy(1, 2.345, note=None))
    assert tx.price == 2.35
    assert tx.note == ""
    assert parse_transaction(tx) is tx


def test_duplicate_id_rejected():
    eng = make_engine()
    tx = eng.add_transaction(buy(1, 1, id="fixed"))
    assert tx.id == "fixed"
    with pytest.raises(ValidationError):
        eng.add_transaction(buy(2, 1, id="fixed"))


def test_delete_that_would_oversell_is_rejected():
    eng = make_engine()
    b = eng.add_transaction(buy(10, 5))
    s = eng.add_transaction(sell(10, 6))
    with pytest.raises(OversoldError):
        eng.delete_transaction(b.id)
    assert len(eng.transactions()) == 2
    assert eng.delete_transaction(s.id).id == s.id
    eng.delete_transaction(b.id)
    assert eng.transactions() == []
    with pytest.raises(TransactionNotFound):
        eng.delete_transaction("missing")


def test_update_revalidates_the_timeline():
    eng = make_engine()
    b = eng.add_transaction(buy(100, 10))
    s = eng.add_transaction(sell(40, 15))
    updated = eng.update_transaction(b.id, {"quantity": 50})
    assert updated.id == b.id
    assert eng.holdings()["ACME"].quantity == 10
    assert [t.id for t in eng.transactions()] == [b.id, s.id]

    with pytest.raises(OversoldError):
        eng.update_transaction(b.id, {"quantity": 30})
    with pytest.raises(OversoldError):
        eng.update_transaction(s.id, {"code": "OTHER"})
    assert eng.get_transaction(b.id).quantity == 50
    with pytest.raises(TransactionNotFound):
        eng.update_transaction("missing", {"quantity": 1})


def test_clamp_policy_accepts_oversell():
    eng = make_engine(oversell_policy="clamp")
    eng.add_transaction(buy(10, 5, symbol="X"))
    eng.add_transaction(sell(15, 6, symbol="X"))
    assert eng.holdings() == {}
    assert eng.realized_trades()[0].quantity == 10


def test_buying_power_enforced_when_configured():
    eng = make_engine(enforce_buying_power=True)
    eng.set_initial_funds(1000)
    assert eng.max_buy_quantity(10) == 99
    with pytest.raises(InsufficientFundsError) as exc:
        eng.add_transaction(buy(100, 10))
    assert exc.value.max_quantity == 99
    assert exc.value.required == 1005.0
    eng.add_transaction(buy(99, 10))
    assert eng.account_balance() == 5.0


def test_buying_power_not_enforced_by_default():
    eng = make_engine()
    eng.add_transaction(buy(100, 10))
    assert eng.account_balance() == -1005.0


def test_declared_fee_source():
    eng = make_engine(fee_source="declared")
    eng.set_initial_funds(10_000)
    eng.add_transaction(buy(100, 10, fee=1.25))
    assert eng.account_balance() == 8998.75


def test_stored_commission_schedule_overrides_settings():
    eng = make_engine()
    eng.set_initial_funds(10_000)
    eng.set_commission_schedule(CommissionSchedule(minimum_fee=1.0, per_unit_rate=0.0))
    eng.add_transaction(buy(100, 10))
    assert eng.commission(100) == 1.0
    assert eng.account_balance() == 8999.0


def test_summary_and_price_overrides():
    eng = make_engine()
    eng.set_initial_funds(10_000)
    eng.add_transaction(buy(100, 10))
    eng.set_price_override("acme", 12)
    s = eng.summary()
    assert s["cash_balance"] == 8995.0
    assert s["market_value"] == 1200.0
    assert s["unrealized_profit"] == 200.0
    assert s["total_assets"] == 10_195.0
    assert s["local_total_assets"] == 73_404.0
    assert s["holdings_count"] == 1

    eng.set_exchange_rate(7)
    assert eng.summary()["local_cash_balance"] == 62_965.0
    eng.clear_price_override("ACME")
    assert eng.profit_report().total_profit == 0.0
    with pytest.raises(ValidationError):
        eng.set_price_override("ACME", 0)
    with pytest.raises(ValidationError):
        eng.set_initial_funds(-1)
    with pytest.raises(ValidationError):
        eng.set_exchange_rate(float("nan"))


def test_search_transactions_newest_first():
    eng = make_engine()
    a = eng.add_transaction(buy(10, 5, date="2024-01-01"))
    b = eng.add_transaction(buy(10, 5, date="2024-03-01", symbol="ZZZ"))
    c = eng.add_transaction(sell(5, 6, date="2024-02-01"))
    assert [t.id for t in eng.search_transactions()] == [b.id, c.id, a.id]
    assert [t.id for t in eng.search_transactions(symbol="ac")] == [c.id, a.id]
    assert [t.id for t in eng.search_transactions(kind="sell")] == [c.id]
    window = eng.search_transactions(date_from=dt.date(2024, 1, 15), date_to=dt.date(2024, 2, 15))
    assert [t.id for t in window] == [c.id]


def test_export_then_import_into_fresh_ledger():
    src = make_engine()
    src.set_initial_funds(5000)
    src.add_transaction(buy(10, 5))
    src.add_transaction(sell(4, 7))
    src.set_price_override("ACME", 6)

    dst = make_engine()
    seen = []
    dst.subscribe(seen.append)
    result = dst.import_data(src.export_data())
    assert result["transactions"] == 2
    assert dst.transactions() == src.transactions()
    assert dst.summary()["total_assets"] == src.summary()["total_assets"]
    assert seen[-1].event.event_type == "ledger_imported"


def test_import_with_oversold_timeline_writes_nothing():
    eng = make_engine()
    eng.add_transaction(buy(1, 1))
    bad = parse_transaction(sell(5, 1)).to_record()
    with pytest.raises(ImportFormatError):
        eng.import_data(json.dumps({"transactions": [bad], "initialFunds": 50}))
    assert len(eng.transactions()) == 1
    assert eng.storage.get_initial_funds() == 0.0


def test_import_with_future_dated_transaction_writes_nothing():
    eng = make_engine()
    eng.add_transaction(buy(1, 1))
    future = parse_transaction(buy(2, 3, date="2099-01-01")).to_record()
    with pytest.raises(ImportFormatError, match="2099-01-01"):
        eng.import_data(json.dumps({"transactions": [future], "initialFunds": 50}))
    assert [t.quantity for t in eng.transactions()] == [1]
    assert eng.storage.get_initial_funds() == 0.0

    today = parse_transaction(buy(2, 3, date=TODAY.isoformat())).to_record()
    assert eng.import_data(json.dumps({"transactions": [today]}))["transactions"] == 1


def test_write_failure_propagates_without_event():
    eng = make_engine(store=BrokenWrites())
    seen = []
    eng.subscribe(seen.append)
    with pytest.raises(StorageFailure):
        eng.add_transaction(buy(1, 1))
    assert seen == []
    assert eng.transactions() == []


def test_audit_log_records_mutations(tmp_path):
    path = tmp_path / "audit.jsonl"
    eng = make_engine(audit_log_path=str(path))
    tx = eng.add_transaction(buy(3, 4))
    eng.update_transaction(tx.id, {"price": 5})
    eng.delete_transaction(tx.id)
    rows = read_jsonl(str(path))
    assert [r["action"] for r in rows] == ["recorded", "updated", "deleted"]
    assert rows[1]["price"] == 5.0


def test_legacy_data_migrated_on_start():
    store = MemoryStore({
        LEGACY_KEYS["transactions"]: json.dumps([
            {"code": "acme", "type": "buy", "price": 10, "quantity": 5, "date": "2024-01-02"},
        ]),
    })
    eng = make_engine(store=store, migrate_legacy=True)
    assert eng.holdings()["ACME"].quantity == 5


def test_inconsistent_legacy_data_is_not_migrated():
    store = MemoryStore({
        LEGACY_KEYS["transactions"]: json.dumps([
            {"code": "X", "type": "buy", "price": 10, "quantity": 10, "date": "2024-01-01"},
            {"code": "X", "type": "sell", "price": 12, "quantity": 15, "date": "2024-01-02"},
        ]),
    })
    eng = make_engine(store=store, migrate_legacy=True)
    assert eng.transactions() == []
    assert eng.holdings() == {}
    assert eng.summary()["holdings_count"] == 0


def test_clamp_policy_migrates_legacy_oversell():
    store = MemoryStore({
        LEGACY_KEYS["transactions"]: json.dumps([
            {"code": "X", "type": "buy", "price": 10, "quantity": 10, "date": "2024-01-01"},
            {"code": "X", "type": "sell", "price": 12, "quantity": 15, "date": "2024-01-02"},
        ]),
    })
    eng = make_engine(store=store, migrate_legacy=True, oversell_policy="clamp")
    assert len(eng.transactions()) == 2
    assert eng.holdings() == {}


def test_statistics_bundle():
    eng = make_engine()
    eng.add_transaction(buy(10, 10))
    eng.add_transaction(sell(5, 12))
    stats = eng.statistics()
    assert stats["trades"]["total_trades"] == 1
    assert stats["monthly"][0]["month"] == "2024-01"
    assert stats["allocation"][0]["symbol"] == "ACME"
    assert stats["distribution"]["break_even_count"] == 1
