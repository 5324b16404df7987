from __future__ import annotations

import time
from typing import Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field


def now_ms() -> int:
    return int(time.time() * 1000)


# ---- Base + envelope ----

class BaseEvent(BaseModel):
    event_type: str
    ts: int = Field(default_factory=now_ms)
    symbol: Optional[str] = None
    tags: List[str] = []


class EventEnvelope(BaseModel):
    schema_version: str = "v1"
    correlation_id: str
    sequence: int = 0
    event: BaseEvent


# ---- Event types ----

class TransactionRecorded(BaseEvent):
    event_type: Literal["transaction_recorded"] = "transaction_recorded"
    transaction_id: str
    kind: str
    quantity: int
    price: float


class TransactionUpdated(BaseEvent):
    event_type: Literal["transaction_updated"] = "transaction_updated"
    transaction_id: str
    kind: str
    quantity: int
    price: float


class TransactionDeleted(BaseEvent):
    event_type: Literal["transaction_deleted"] = "transaction_deleted"
    transaction_id: str


class TransactionRejected(BaseEvent):
    event_type: Literal["transaction_rejected"] = "transaction_rejected"
    reason: str
    errors: List[str] = []


class LedgerImported(BaseEvent):
    event_type: Literal["ledger_imported"] = "ledger_imported"
    transactions: int = 0
    keys: List[str] = []


class SettingsChanged(BaseEvent):
    event_type: Literal["settings_changed"] = "settings_changed"
    changes: Dict[str, Union[float, str, None]] = Field(default_factory=dict)


AnyEvent = Union[
    TransactionRecorded,
    TransactionUpdated,
    TransactionDeleted,
    TransactionRejected,
    LedgerImported,
    SettingsChanged,
]
