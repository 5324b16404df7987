from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .precision import multiply, percent, round2

Kind = Literal["buy", "sell"]
CostBasisMethod = Literal["weighted_average", "fifo"]
OversellPolicy = Literal["reject", "clamp", "skip"]
FeeSource = Literal["commission", "declared"]

BUY: Kind = "buy"
SELL: Kind = "sell"


def new_id() -> str:
    return uuid.uuid4().hex


class Transaction(BaseModel):
    """One immutable trade record as persisted in the store.

    Accepts the keys of exported files (``code`` for symbol, ``type`` for kind).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=new_id)
    symbol: str = Field(validation_alias=AliasChoices("symbol", "code"))
    name: str = ""
    kind: Kind = Field(validation_alias=AliasChoices("kind", "type"))
    price: float = Field(gt=0)
    quantity: int = Field(gt=0)
    date: dt.date
    note: str = ""
    fee: float = Field(default=0.0, ge=0)

    @field_validator("id", mode="before")
    @classmethod
    def id_or_new(cls, v):
        if v is None or str(v).strip() == "":
            return new_id()
        return str(v)

    @field_validator("symbol")
    @classmethod
    def upper_symbol(cls, v: str):
        v = v.strip().upper()
        if not v:
            raise ValueError("symbol required")
        return v

    @field_validator("name", "note", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return "" if v is None else str(v).strip()

    @field_validator("kind", mode="before")
    @classmethod
    def lower_kind(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("price")
    @classmethod
    def cents_price(cls, v: float):
        v = round2(v)
        if v <= 0:
            raise ValueError("price must be at least 0.01")
        return v

    @field_validator("fee")
    @classmethod
    def cents_fee(cls, v: float):
        return round2(v)

    @property
    def amount(self) -> float:
        return multiply(self.price, self.quantity)

    @property
    def is_buy(self) -> bool:
        return self.kind == BUY

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class CommissionSchedule(BaseModel):
    """Broker fee schedule: ``max(minimum_fee, per_unit_rate * quantity)``."""

    model_config = ConfigDict(frozen=True)

    minimum_fee: float = Field(default=5.0, ge=0)
    per_unit_rate: float = Field(default=0.02, ge=0)


@dataclass
class Lot:
    price: float
    quantity: int
    date: dt.date

    @property
    def cost(self) -> float:
        return multiply(self.price, self.quantity)


@dataclass
class Holding:
    symbol: str
    name: str
    quantity: int = 0
    total_cost: float = 0.0
    realized_profit: float = 0.0
    last_date: Optional[dt.date] = None
    lots: List[Lot] = field(default_factory=list)

    @property
    def avg_cost(self) -> float:
        # unrounded: avg_cost * quantity == total_cost
        if self.quantity <= 0:
            return 0.0
        return self.total_cost / self.quantity


@dataclass
class RealizedTrade:
    transaction_id: str
    symbol: str
    name: str
    date: dt.date
    quantity: int
    price: float
    proceeds: float
    cost_basis: float
    profit: float
    buy_dates: List[dt.date] = field(default_factory=list)

    @property
    def profit_percent(self) -> float:
        return percent(self.profit, self.cost_basis)


@dataclass
class ProfitRow:
    symbol: str
    name: str
    quantity: int
    avg_cost: float
    total_cost: float
    current_price: float
    current_value: float
    profit: float
    profit_percent: float
    priced: bool


@dataclass
class ProfitReport:
    total_cost: float
    total_value: float
    total_profit: float
    total_profit_percent: float
    rows: List[ProfitRow]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
