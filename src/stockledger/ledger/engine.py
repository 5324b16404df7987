"""LedgerEngine: the stored ledger plus the pure calculators.

The engine holds no derived state. Every read loads the full transaction
list from storage and recomputes; every mutation validates against the full
chronological timeline, writes the full list back, then notifies
subscribers.

Oversell handling uses one policy (``settings.oversell_policy``) on both
paths. With ``reject`` (default) an add, update, delete or import that would
leave any sell exceeding its available quantity is refused before anything
is written. With ``clamp``/``skip`` mutations are accepted and the replay
applies the policy.
"""

from __future__ import annotations

import datetime as dt
import logging
import math
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from .analysis import allocation, monthly_cash_flow, profit_distribution, trade_statistics
from .balance import FeeFunction, compute_account_balance, fee_function, total_fees
from .commission import commission, max_affordable_quantity
from .errors import (
    ImportFormatError,
    InsufficientFundsError,
    TransactionNotFound,
    ValidationError,
)
from .holdings import available_quantity, find_oversold, replay
from .model import BUY, CommissionSchedule, CostBasisMethod, Holding, ProfitReport, RealizedTrade, Transaction
from .precision import add, multiply, round2, subtract
from .profit import SortKey, compute_profit_report
from ..config.loader import Settings
from ..events.bus import EventBus, Subscriber
from ..events.schema import (
    LedgerImported,
    SettingsChanged,
    TransactionDeleted,
    TransactionRecorded,
    TransactionRejected,
    TransactionUpdated,
)
from ..logs.audit_log import append_jsonl, log_ledger_event
from ..metrics.ledger import get_transactions_recorded_total, inc_rejected, set_account_balance
from ..storage.kv import SQLiteStore
from ..storage.repository import LedgerStorage

logger = logging.getLogger(__name__)

TransactionInput = Union[Transaction, Mapping[str, Any]]


def parse_transaction(data: TransactionInput) -> Transaction:
    """Validate raw input into a Transaction, raising the ledger ValidationError."""
    if isinstance(data, Transaction):
        return data
    try:
        return Transaction.model_validate(dict(data))
    except PydanticValidationError as e:
        errors = [f"{'.'.join(str(p) for p in err['loc']) or 'record'}: {err['msg']}" for err in e.errors()]
        raise ValidationError("invalid transaction: " + "; ".join(errors), errors) from e


class LedgerEngine:
    def __init__(
        self,
        storage: LedgerStorage,
        settings: Optional[Settings] = None,
        bus: Optional[EventBus] = None,
        today: Callable[[], dt.date] = dt.date.today,
    ):
        self.storage = storage
        self.settings = settings or Settings()
        self.bus = bus or EventBus()
        self.today = today
        if self.settings.migrate_legacy:
            self.storage.migrate_legacy_if_needed(
                today=self.today(), reject_oversold=self.settings.oversell_policy == "reject"
            )

    @classmethod
    def from_settings(cls, settings: Settings, bus: Optional[EventBus] = None) -> "LedgerEngine":
        store = SQLiteStore(settings.store_path)
        logger.info(f"Ledger store: {settings.store_path}")
        return cls(LedgerStorage(store, settings.default_exchange_rate), settings, bus)

    # ---- policy ----

    @property
    def method(self) -> CostBasisMethod:
        return self.settings.cost_basis_method

    @property
    def commission_schedule(self) -> CommissionSchedule:
        return self.storage.get_commission_config(default=self.settings.commission)

    def fee_of(self) -> FeeFunction:
        return fee_function(self.settings.fee_source, self.commission_schedule)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        return self.bus.subscribe(callback)

    # ---- reads ----

    def transactions(self) -> List[Transaction]:
        return self.storage.get_transactions()

    def get_transaction(self, transaction_id: str) -> Transaction:
        for tx in self.transactions():
            if tx.id == transaction_id:
                return tx
        raise TransactionNotFound(transaction_id)

    def search_transactions(
        self,
        symbol: Optional[str] = None,
        kind: Optional[str] = None,
        date_from: Optional[dt.date] = None,
        date_to: Optional[dt.date] = None,
    ) -> List[Transaction]:
        """Filtered transactions, newest first (stable for same-day records)."""
        needle = symbol.strip().upper() if symbol else None
        out = []
        for tx in self.transactions():
            if needle and needle not in tx.symbol:
                continue
            if kind and tx.kind != kind.lower():
                continue
            if date_from and tx.date < date_from:
                continue
            if date_to and tx.date > date_to:
                continue
            out.append(tx)
        out.sort(key=lambda t: t.date, reverse=True)
        return out

    def holdings(self, method: Optional[CostBasisMethod] = None) -> Dict[str, Holding]:
        return replay(self.transactions(), method or self.method, self.settings.oversell_policy).holdings

    def realized_trades(self, method: Optional[CostBasisMethod] = None) -> List[RealizedTrade]:
        return replay(self.transactions(), method or self.method, self.settings.oversell_policy).trades

    def account_balance(self) -> float:
        balance = compute_account_balance(self.transactions(), self.storage.get_initial_funds(), self.fee_of())
        set_account_balance(balance, self.settings.currency)
        return balance

    def profit_report(self, sort_by: SortKey = "abs_profit") -> ProfitReport:
        return compute_profit_report(self.holdings(), self.storage.get_user_prices(), sort_by)

    def commission(self, quantity: int) -> float:
        return commission(quantity, self.commission_schedule)

    def available_quantity(self, symbol: str, exclude_id: Optional[str] = None) -> int:
        txs = [t for t in self.transactions() if t.id != exclude_id]
        return available_quantity(txs, symbol)

    def max_buy_quantity(self, price: float, exclude_id: Optional[str] = None) -> int:
        txs = [t for t in self.transactions() if t.id != exclude_id]
        balance = compute_account_balance(txs, self.storage.get_initial_funds(), self.fee_of())
        return max_affordable_quantity(balance, price, self.commission_schedule)

    def summary(self) -> Dict[str, Any]:
        """Dashboard figures, also converted with the stored exchange rate."""
        txs = self.transactions()
        result = replay(txs, self.method, self.settings.oversell_policy)
        holdings = result.holdings
        report = compute_profit_report(holdings, self.storage.get_user_prices())
        fee_of = self.fee_of()
        balance = compute_account_balance(txs, self.storage.get_initial_funds(), fee_of)
        set_account_balance(balance, self.settings.currency)
        rate = self.storage.get_exchange_rate()
        realized = 0.0
        for trade in result.trades:
            realized = add(realized, trade.profit)
        total_assets = add(balance, report.total_value)
        return {
            "currency": self.settings.currency,
            "cost_basis_method": self.method,
            "holdings_count": len(holdings),
            "transactions_count": len(txs),
            "cash_balance": balance,
            "market_value": report.total_value,
            "total_cost": report.total_cost,
            "unrealized_profit": report.total_profit,
            "unrealized_profit_percent": report.total_profit_percent,
            "realized_profit": realized,
            "fees_paid": total_fees(txs, fee_of),
            "total_assets": total_assets,
            "exchange_rate": rate,
            "local_cash_balance": multiply(balance, rate),
            "local_market_value": multiply(report.total_value, rate),
            "local_total_assets": multiply(total_assets, rate),
        }

    def statistics(self) -> Dict[str, Any]:
        txs = self.transactions()
        result = replay(txs, self.method, self.settings.oversell_policy)
        holdings = result.holdings
        report = compute_profit_report(holdings, self.storage.get_user_prices())
        return {
            "trades": trade_statistics(result.trades),
            "monthly": monthly_cash_flow(txs, self.fee_of()),
            "allocation": allocation(report),
            "distribution": profit_distribution(report),
        }

    # ---- validation ----

    def _reject(self, reason: str, exc: ValidationError, symbol: Optional[str] = None) -> None:
        inc_rejected(reason)
        log_ledger_event(
            "transaction_rejected",
            symbol,
            severity="WARNING",
            extra={"reason": reason, "message": str(exc)},
        )
        self.bus.emit(TransactionRejected(symbol=symbol, reason=reason, errors=exc.errors))
        raise exc

    def _validate(self, data: TransactionInput) -> Transaction:
        symbol = None
        if isinstance(data, Mapping):
            raw_symbol = data.get("symbol") or data.get("code")
            symbol = str(raw_symbol).strip().upper() if raw_symbol else None
        try:
            tx = parse_transaction(data)
        except ValidationError as e:
            self._reject("invalid", e, symbol)
        if tx.date > self.today():
            self._reject(
                "future_date",
                ValidationError(f"date {tx.date} is in the future", ["date: must not be after today"]),
                tx.symbol,
            )
        return tx

    def _check_timeline(self, timeline: List[Transaction], symbol: Optional[str]) -> None:
        if self.settings.oversell_policy != "reject":
            return
        err = find_oversold(timeline)
        if err is not None:
            self._reject("oversold", err, err.symbol or symbol)

    def _check_funds(self, tx: Transaction, others: List[Transaction]) -> None:
        if not self.settings.enforce_buying_power or tx.kind != BUY:
            return
        fee_of = self.fee_of()
        balance = compute_account_balance(others, self.storage.get_initial_funds(), fee_of)
        required = add(tx.amount, fee_of(tx))
        if required <= balance:
            return
        if self.settings.fee_source == "declared":
            max_qty = max(0, int(subtract(balance, tx.fee) // tx.price))
        else:
            max_qty = max_affordable_quantity(balance, tx.price, self.commission_schedule)
        self._reject("insufficient_funds", InsufficientFundsError(required, balance, max_qty), tx.symbol)

    # ---- mutations ----

    def _after_write(self, action: str, tx: Transaction) -> None:
        path = self.settings.audit_log_path
        if path:
            append_jsonl(path, {
                "ts": int(dt.datetime.now().timestamp() * 1000),
                "action": action,
                "transaction_id": tx.id,
                "symbol": tx.symbol,
                "kind": tx.kind,
                "quantity": tx.quantity,
                "price": tx.price,
                "date": tx.date.isoformat(),
            })
        log_ledger_event(f"transaction_{action}", tx.symbol, extra={"transaction_id": tx.id})

    def add_transaction(self, data: TransactionInput) -> Transaction:
        tx = self._validate(data)
        current = self.transactions()
        if any(t.id == tx.id for t in current):
            self._reject(
                "duplicate_id",
                ValidationError(f"transaction id {tx.id} already exists", ["id: already used"]),
                tx.symbol,
            )
        self._check_funds(tx, current)
        timeline = current + [tx]
        self._check_timeline(timeline, tx.symbol)
        self.storage.save_transactions(timeline)
        get_transactions_recorded_total().labels(tx.kind).inc()
        self._after_write("recorded", tx)
        self.bus.emit(
            TransactionRecorded(
                symbol=tx.symbol, transaction_id=tx.id, kind=tx.kind, quantity=tx.quantity, price=tx.price
            ),
            correlation_id=tx.id,
        )
        return tx

    def update_transaction(self, transaction_id: str, changes: Mapping[str, Any]) -> Transaction:
        current = self.transactions()
        index = next((i for i, t in enumerate(current) if t.id == transaction_id), None)
        if index is None:
            raise TransactionNotFound(transaction_id)
        merged = current[index].to_record()
        for key, value in changes.items():
            merged[{"code": "symbol", "type": "kind"}.get(key, key)] = value
        merged["id"] = transaction_id
        tx = self._validate(merged)
        others = current[:index] + current[index + 1:]
        self._check_funds(tx, others)
        timeline = current[:index] + [tx] + current[index + 1:]
        self._check_timeline(timeline, tx.symbol)
        self.storage.save_transactions(timeline)
        self._after_write("updated", tx)
        self.bus.emit(
            TransactionUpdated(
                symbol=tx.symbol, transaction_id=tx.id, kind=tx.kind, quantity=tx.quantity, price=tx.price
            ),
            correlation_id=tx.id,
        )
        return tx

    def delete_transaction(self, transaction_id: str) -> Transaction:
        current = self.transactions()
        target = next((t for t in current if t.id == transaction_id), None)
        if target is None:
            raise TransactionNotFound(transaction_id)
        timeline = [t for t in current if t.id != transaction_id]
        self._check_timeline(timeline, target.symbol)
        self.storage.save_transactions(timeline)
        self._after_write("deleted", target)
        self.bus.emit(
            TransactionDeleted(symbol=target.symbol, transaction_id=target.id),
            correlation_id=target.id,
        )
        return target

    def set_price_override(self, symbol: str, price: float) -> None:
        symbol = (symbol or "").strip().upper()
        if not symbol:
            raise ValidationError("symbol required", ["symbol: required"])
        if round2(price) <= 0:
            raise ValidationError("price must be positive", ["price: must be at least 0.01"])
        prices = self.storage.get_user_prices()
        prices[symbol] = round2(price)
        self.storage.save_user_prices(prices)
        self.bus.emit(SettingsChanged(symbol=symbol, changes={"price": round2(price)}))

    def clear_price_override(self, symbol: str) -> None:
        symbol = (symbol or "").strip().upper()
        prices = self.storage.get_user_prices()
        if prices.pop(symbol, None) is None:
            return
        self.storage.save_user_prices(prices)
        self.bus.emit(SettingsChanged(symbol=symbol, changes={"price": None}))

    def set_initial_funds(self, value: float) -> None:
        if value is None or not math.isfinite(float(value)) or float(value) < 0:
            raise ValidationError("initial funds must be a non-negative number", ["initial_funds: invalid"])
        self.storage.set_initial_funds(value)
        self.bus.emit(SettingsChanged(changes={"initial_funds": round2(value)}))

    def set_exchange_rate(self, value: float) -> None:
        if value is None or not math.isfinite(float(value)) or round2(value) <= 0:
            raise ValidationError("exchange rate must be positive", ["exchange_rate: invalid"])
        self.storage.set_exchange_rate(value)
        self.bus.emit(SettingsChanged(changes={"exchange_rate": round2(value)}))

    def set_commission_schedule(self, schedule: CommissionSchedule) -> None:
        self.storage.save_commission_config(schedule)
        self.bus.emit(SettingsChanged(changes=schedule.model_dump()))

    # ---- export / import ----

    def export_data(self) -> str:
        return self.storage.export_data()

    def import_data(self, text: str) -> Dict[str, Any]:
        """Replace stored collections with an export document, all or nothing."""
        payload = self.storage.parse_import(text)
        today = self.today()
        future = [t for t in payload.transactions or [] if t.date > today]
        if future:
            inc_rejected("import_future_date")
            raise ImportFormatError(f"imported transaction {future[0].id} is dated {future[0].date}, after {today}")
        if payload.transactions is not None and self.settings.oversell_policy == "reject":
            err = find_oversold(payload.transactions)
            if err is not None:
                inc_rejected("import_oversold")
                raise ImportFormatError(f"imported ledger is inconsistent: {err}")
        self.storage.apply_import(payload)
        count = len(payload.transactions or [])
        log_ledger_event("ledger_imported", extra={"keys": payload.keys, "transactions": count})
        self.bus.emit(LedgerImported(transactions=count, keys=payload.keys))
        return {"keys": payload.keys, "transactions": count}
