"""Typed access to the ledger's logical collections in a key-value store.

Layout (JSON strings under fixed keys, compatible with the browser apps'
localStorage layout):

- ``stockTransactions``: array of transaction records
- ``userStockPrices``: ``{symbol: price}`` overrides
- ``initialFunds`` / ``exchangeRate``: scalar numbers
- ``commissionConfig``: ``{minimum_fee, per_unit_rate}``

Reads never raise: a backend failure or corrupt JSON is logged, counted in
``ledger_storage_errors_total`` and answered with the default value. Writes
raise StorageFailure so the mutating caller can report it.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..ledger.errors import ImportFormatError, StorageFailure
from ..ledger.holdings import find_oversold
from ..ledger.model import CommissionSchedule, Transaction
from ..ledger.precision import round2
from ..metrics.ledger import inc_storage_error
from .kv import KeyValueStore

logger = logging.getLogger(__name__)

STORAGE_KEYS = {
    "transactions": "stockTransactions",
    "user_prices": "userStockPrices",
    "initial_funds": "initialFunds",
    "exchange_rate": "exchangeRate",
    "commission": "commissionConfig",
}

# Layout written by the first release of the app
LEGACY_KEYS = {
    "transactions": "stock_transactions",
    "settings": "stock_settings",
}

EXPORT_VERSION = "1.0"
DEFAULT_EXCHANGE_RATE = 7.2

# export key -> accepted spellings on import
IMPORT_KEYS = {
    "transactions": ("transactions",),
    "userPrices": ("userPrices", "user_prices"),
    "initialFunds": ("initialFunds", "initial_funds"),
    "exchangeRate": ("exchangeRate", "exchange_rate"),
}


@dataclass
class ImportPayload:
    transactions: Optional[List[Transaction]] = None
    user_prices: Optional[Dict[str, float]] = None
    initial_funds: Optional[float] = None
    exchange_rate: Optional[float] = None

    @property
    def keys(self) -> List[str]:
        present = []
        if self.transactions is not None:
            present.append("transactions")
        if self.user_prices is not None:
            present.append("userPrices")
        if self.initial_funds is not None:
            present.append("initialFunds")
        if self.exchange_rate is not None:
            present.append("exchangeRate")
        return present


def _finite_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    return num if math.isfinite(num) else None


def _clean_prices(raw: Dict[Any, Any]) -> Dict[str, float]:
    out: Dict[str, float] = {}
    for symbol, price in raw.items():
        num = _finite_number(price)
        if num is None or round2(num) <= 0:
            continue
        out[str(symbol).strip().upper()] = round2(num)
    return out


class LedgerStorage:
    def __init__(self, store: KeyValueStore, default_exchange_rate: float = DEFAULT_EXCHANGE_RATE):
        self.store = store
        self.default_exchange_rate = float(default_exchange_rate)

    # ---- raw access ----

    def _read(self, key: str) -> Optional[str]:
        try:
            return self.store.get(key)
        except Exception as e:
            inc_storage_error("read")
            logger.warning(f"storage read failed for {key}: {e}")
            return None

    def _read_json(self, key: str, default: Any) -> Any:
        raw = self._read(key)
        if raw is None or raw == "":
            return default
        try:
            return json.loads(raw)
        except ValueError as e:
            inc_storage_error("decode")
            logger.warning(f"corrupt JSON under {key}, using default: {e}")
            return default

    def _read_number(self, key: str, default: float) -> float:
        raw = self._read(key)
        if raw is None or raw == "":
            return default
        num = _finite_number(raw)
        if num is None:
            inc_storage_error("decode")
            logger.warning(f"non-numeric value under {key}: {raw!r}")
            return default
        return round2(num)

    def _write(self, key: str, value: str) -> None:
        try:
            self.store.set(key, value)
        except Exception as e:
            inc_storage_error("write")
            logger.error(f"storage write failed for {key}: {e}")
            raise StorageFailure(f"could not write {key}: {e}") from e

    # ---- transactions ----

    def get_transactions(self) -> List[Transaction]:
        data = self._read_json(STORAGE_KEYS["transactions"], [])
        if not isinstance(data, list):
            inc_storage_error("decode")
            logger.warning("stored transactions are not a list, ignoring")
            return []
        out = []
        for rec in data:
            try:
                out.append(Transaction.model_validate(rec))
            except PydanticValidationError as e:
                inc_storage_error("decode")
                logger.warning(f"skipping malformed stored transaction {rec!r}: {e.error_count()} errors")
        return out

    def save_transactions(self, transactions: List[Transaction]) -> None:
        payload = [t.to_record() for t in transactions]
        self._write(STORAGE_KEYS["transactions"], json.dumps(payload, ensure_ascii=False))

    # ---- price overrides ----

    def get_user_prices(self) -> Dict[str, float]:
        data = self._read_json(STORAGE_KEYS["user_prices"], {})
        if not isinstance(data, dict):
            inc_storage_error("decode")
            return {}
        return _clean_prices(data)

    def save_user_prices(self, prices: Dict[str, float]) -> None:
        self._write(STORAGE_KEYS["user_prices"], json.dumps(_clean_prices(prices)))

    # ---- scalars ----

    def get_initial_funds(self) -> float:
        return self._read_number(STORAGE_KEYS["initial_funds"], 0.0)

    def set_initial_funds(self, value: float) -> None:
        self._write(STORAGE_KEYS["initial_funds"], str(round2(value or 0.0)))

    def get_exchange_rate(self) -> float:
        rate = self._read_number(STORAGE_KEYS["exchange_rate"], self.default_exchange_rate)
        return rate if rate > 0 else self.default_exchange_rate

    def set_exchange_rate(self, value: float) -> None:
        rate = round2(value) if value else self.default_exchange_rate
        self._write(STORAGE_KEYS["exchange_rate"], str(rate))

    def get_commission_config(self, default: Optional[CommissionSchedule] = None) -> CommissionSchedule:
        default = default or CommissionSchedule()
        data = self._read_json(STORAGE_KEYS["commission"], None)
        if data is None:
            return default
        try:
            return CommissionSchedule.model_validate(data)
        except PydanticValidationError as e:
            inc_storage_error("decode")
            logger.warning(f"invalid commission config, using default: {e.error_count()} errors")
            return default

    def save_commission_config(self, schedule: CommissionSchedule) -> None:
        self._write(STORAGE_KEYS["commission"], json.dumps(schedule.model_dump()))

    def clear(self) -> None:
        for key in STORAGE_KEYS.values():
            try:
                self.store.delete(key)
            except Exception as e:
                inc_storage_error("delete")
                logger.warning(f"could not delete {key}: {e}")

    # ---- export / import ----

    def export_data(self) -> str:
        data = {
            "version": EXPORT_VERSION,
            "exportTime": dt.datetime.now(dt.timezone.utc).isoformat(),
            "transactions": [t.to_record() for t in self.get_transactions()],
            "userPrices": self.get_user_prices(),
            "initialFunds": self.get_initial_funds(),
            "exchangeRate": self.get_exchange_rate(),
        }
        return json.dumps(data, indent=2, ensure_ascii=False)

    def parse_import(self, text: str) -> ImportPayload:
        """Parse and fully validate an export document without writing anything."""
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as e:
            raise ImportFormatError(f"import is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ImportFormatError("import document must be a JSON object")

        found = {}
        for canonical, spellings in IMPORT_KEYS.items():
            for key in spellings:
                if key in data:
                    found[canonical] = data[key]
                    break
        if not found:
            raise ImportFormatError(
                "import document has none of the keys: " + ", ".join(IMPORT_KEYS)
            )

        payload = ImportPayload()
        if "transactions" in found:
            raw = found["transactions"]
            if not isinstance(raw, list):
                raise ImportFormatError("transactions must be a list")
            txs = []
            for idx, rec in enumerate(raw):
                try:
                    txs.append(Transaction.model_validate(rec))
                except PydanticValidationError as e:
                    raise ImportFormatError(f"transaction #{idx} is invalid: {e.errors()[0]['msg']}") from e
            ids = [t.id for t in txs]
            if len(ids) != len(set(ids)):
                raise ImportFormatError("duplicate transaction ids in import")
            payload.transactions = txs
        if "userPrices" in found:
            raw = found["userPrices"]
            if not isinstance(raw, dict):
                raise ImportFormatError("userPrices must be an object")
            for symbol, price in raw.items():
                num = _finite_number(price)
                if num is None or num <= 0:
                    raise ImportFormatError(f"price override for {symbol} must be a positive number")
            payload.user_prices = _clean_prices(raw)
        if "initialFunds" in found:
            num = _finite_number(found["initialFunds"])
            if num is None or num < 0:
                raise ImportFormatError("initialFunds must be a non-negative number")
            payload.initial_funds = round2(num)
        if "exchangeRate" in found:
            num = _finite_number(found["exchangeRate"])
            if num is None or num <= 0:
                raise ImportFormatError("exchangeRate must be a positive number")
            payload.exchange_rate = round2(num)
        return payload

    def apply_import(self, payload: ImportPayload) -> None:
        if payload.transactions is not None:
            self.save_transactions(payload.transactions)
        if payload.user_prices is not None:
            self.save_user_prices(payload.user_prices)
        if payload.initial_funds is not None:
            self.set_initial_funds(payload.initial_funds)
        if payload.exchange_rate is not None:
            self.set_exchange_rate(payload.exchange_rate)

    def import_data(self, text: str) -> ImportPayload:
        payload = self.parse_import(text)
        self.apply_import(payload)
        return payload

    # ---- legacy layout ----

    def migrate_legacy_if_needed(self, today: Optional[dt.date] = None, reject_oversold: bool = True) -> int:
        """Copy data from the legacy keys when the current keys are empty.

        Best effort: failures are logged and the number of migrated
        transactions (possibly 0) is returned. Undated legacy records get
        ``today``. With ``reject_oversold`` a legacy timeline containing an
        oversold sell is not migrated.
        """
        migrated = 0
        try:
            migrated = self._migrate_legacy_transactions(today or dt.date.today(), reject_oversold)
            self._migrate_legacy_settings()
        except Exception as e:
            logger.warning(f"legacy storage migration failed: {e}")
        return migrated

    def _migrate_legacy_transactions(self, today: dt.date, reject_oversold: bool) -> int:
        if self._read(STORAGE_KEYS["transactions"]):
            return 0
        raw = self._read(LEGACY_KEYS["transactions"])
        if not raw:
            return 0
        try:
            legacy = json.loads(raw) or []
        except ValueError as e:
            logger.warning(f"could not parse legacy transactions, skipping migration: {e}")
            return 0
        if not isinstance(legacy, list):
            return 0

        txs = []
        for idx, rec in enumerate(legacy):
            if not isinstance(rec, dict):
                continue
            try:
                txs.append(Transaction.model_validate(legacy_record(rec, idx, today)))
            except PydanticValidationError:
                logger.warning(f"dropping unusable legacy transaction #{idx}")
        if not txs:
            return 0
        if reject_oversold:
            err = find_oversold(txs)
            if err is not None:
                inc_storage_error("migrate")
                logger.warning(f"legacy transactions not migrated, timeline is inconsistent: {err}")
                return 0
        self.save_transactions(txs)
        logger.info(f"migrated {len(txs)} transactions from legacy storage")
        return len(txs)

    def _migrate_legacy_settings(self) -> None:
        need_funds = not self._read(STORAGE_KEYS["initial_funds"])
        need_rate = not self._read(STORAGE_KEYS["exchange_rate"])
        if not (need_funds or need_rate):
            return
        settings = self._read_json(LEGACY_KEYS["settings"], {})
        if not isinstance(settings, dict):
            return
        funds = _finite_number(settings.get("initialFunds"))
        if need_funds and funds is not None:
            self.set_initial_funds(funds)
        rate = _finite_number(settings.get("exchangeRate"))
        if need_rate and rate is not None and rate > 0:
            self.set_exchange_rate(rate)


def _legacy_kind(value: Any) -> str:
    s = str(value or "").lower()
    if "sell" in s or s in ("s", "out"):
        return "sell"
    return "buy"


def _first(rec: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if rec.get(key) not in (None, ""):
            return rec[key]
    return None


def legacy_record(rec: Dict[str, Any], index: int, today: dt.date) -> Dict[str, Any]:
    """Map a record from the legacy layout onto the current transaction keys."""
    create_time = rec.get("createTime")
    date = rec.get("date") or (str(create_time)[:10] if create_time else "") or today.isoformat()
    return {
        "id": rec.get("id") or create_time or f"legacy_{index}",
        "symbol": str(_first(rec, "code", "symbol", "stockCode", "ticker") or ""),
        "name": _first(rec, "name", "stockName") or "",
        "kind": _legacy_kind(rec.get("type")),
        "price": _first(rec, "price", "unitPrice", "avgPrice") or 0,
        "quantity": _first(rec, "quantity", "shares", "amount") or 0,
        "date": date,
        "note": rec.get("note") or "",
        "fee": rec.get("fee") or 0,
    }
