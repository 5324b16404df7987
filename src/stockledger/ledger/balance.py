"""Account cash balance from initial funds and the chronological trade stream.

The fee charged per trade comes from an explicit ``FeeFunction``:
``computed_fees(schedule)`` applies the commission formula to every trade,
``declared_fees`` trusts the ``fee`` recorded on the transaction. Settings
choose one (``fee_source``); the two are never mixed in one computation.
"""

from __future__ import annotations

from typing import Callable, Iterable, Optional

from .commission import commission
from .holdings import sort_chronologically
from .model import BUY, CommissionSchedule, FeeSource, Transaction
from .precision import add, round2, subtract

FeeFunction = Callable[[Transaction], float]


def computed_fees(schedule: Optional[CommissionSchedule] = None) -> FeeFunction:
    def _fee(tx: Transaction) -> float:
        return commission(tx.quantity, schedule)
    return _fee


def declared_fees(tx: Transaction) -> float:
    return round2(tx.fee)


def fee_function(source: FeeSource, schedule: Optional[CommissionSchedule] = None) -> FeeFunction:
    if source == "commission":
        return computed_fees(schedule)
    if source == "declared":
        return declared_fees
    raise ValueError(f"unknown fee source: {source}")


def compute_account_balance(
    transactions: Iterable[Transaction],
    initial_funds: float = 0.0,
    fee_of: Optional[FeeFunction] = None,
) -> float:
    """Cash after replaying every trade: buys pay amount + fee, sells receive amount - fee."""
    fee_of = fee_of or computed_fees()
    balance = round2(initial_funds or 0.0)
    for tx in sort_chronologically(transactions):
        fee = fee_of(tx)
        if tx.kind == BUY:
            balance = subtract(balance, add(tx.amount, fee))
        else:
            balance = add(balance, subtract(tx.amount, fee))
    return balance


def total_fees(transactions: Iterable[Transaction], fee_of: Optional[FeeFunction] = None) -> float:
    fee_of = fee_of or computed_fees()
    total = 0.0
    for tx in transactions:
        total = add(total, fee_of(tx))
    return total
