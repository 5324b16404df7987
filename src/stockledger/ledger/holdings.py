"""Holdings calculator: replay a transaction list into per-symbol positions.

Transactions are stably sorted by date first, so equal dates keep their
insertion order. That ordering decides which cost basis a sell releases and
which FIFO lots it consumes.

Two cost-basis methods:
- ``weighted_average``: all held units share one blended cost; a sell
  releases ``total_cost * sold / held`` of basis.
- ``fifo``: each buy becomes a Lot; sells consume lots from the head, a
  partially consumed lot keeps its price and shrinks.

A sell larger than the held quantity is handled by the explicit oversell
policy: ``reject`` raises OversoldError, ``clamp`` sells only what is held,
``skip`` ignores the sell. Clamp and skip log a warning and count the event.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Iterable, List, Optional, Tuple

from .errors import OversoldError
from .model import (
    BUY,
    CostBasisMethod,
    Holding,
    Lot,
    OversellPolicy,
    RealizedTrade,
    Transaction,
)
from .precision import add, multiply, prorate, subtract
from ..metrics.ledger import get_oversell_total

logger = logging.getLogger(__name__)

METHODS = ("weighted_average", "fifo")
POLICIES = ("reject", "clamp", "skip")


@dataclass
class ReplayResult:
    holdings: Dict[str, Holding] = field(default_factory=dict)
    trades: List[RealizedTrade] = field(default_factory=list)


def sort_chronologically(transactions: Iterable[Transaction]) -> List[Transaction]:
    # sorted() is stable: same-day transactions keep insertion order
    return sorted(transactions, key=lambda t: t.date)


def _report_oversell(tx: Transaction, available: int, policy: OversellPolicy) -> None:
    try:
        get_oversell_total().labels(policy).inc()
    except Exception:
        pass
    if policy == "reject":
        raise OversoldError(tx.symbol, tx.quantity, available, tx.id)
    payload = {
        "event": "oversell",
        "policy": policy,
        "transaction_id": tx.id,
        "symbol": tx.symbol,
        "requested": tx.quantity,
        "available": available,
        "date": tx.date.isoformat(),
    }
    logger.warning(json.dumps(payload, separators=(",", ":")))


def _sell_weighted(pos: Holding, qty: int) -> Tuple[float, List]:
    cost = prorate(pos.total_cost, qty, pos.quantity)
    pos.quantity -= qty
    pos.total_cost = subtract(pos.total_cost, cost) if pos.quantity > 0 else 0.0
    return cost, []


def _sell_fifo(pos: Holding, lots: Deque[Lot], qty: int) -> Tuple[float, List]:
    remaining = qty
    cost = 0.0
    buy_dates = []
    while remaining > 0 and lots:
        head = lots[0]
        buy_dates.append(head.date)
        if head.quantity <= remaining:
            cost = add(cost, head.cost)
            remaining -= head.quantity
            lots.popleft()
        else:
            cost = add(cost, multiply(head.price, remaining))
            head.quantity -= remaining
            remaining = 0
    pos.quantity -= qty - remaining
    pos.total_cost = sum_lot_cost(lots)
    return cost, buy_dates


def sum_lot_cost(lots: Iterable[Lot]) -> float:
    total = 0.0
    for lot in lots:
        total = add(total, lot.cost)
    return total


def replay(
    transactions: Iterable[Transaction],
    method: CostBasisMethod = "weighted_average",
    oversell_policy: OversellPolicy = "reject",
) -> ReplayResult:
    """Replay transactions and return open positions plus realized trades.

    Positions that reach zero are dropped; a later buy of the same symbol
    starts a fresh position.
    """
    if method not in METHODS:
        raise ValueError(f"unknown cost basis method: {method}")
    if oversell_policy not in POLICIES:
        raise ValueError(f"unknown oversell policy: {oversell_policy}")

    positions: Dict[str, Holding] = {}
    queues: Dict[str, Deque[Lot]] = {}
    result = ReplayResult()

    for tx in sort_chronologically(transactions):
        pos = positions.get(tx.symbol)
        if pos is None:
            pos = Holding(symbol=tx.symbol, name=tx.name)
            positions[tx.symbol] = pos
            queues[tx.symbol] = deque()
        lots = queues[tx.symbol]
        if tx.name:
            pos.name = tx.name
        pos.last_date = tx.date

        if tx.kind == BUY:
            pos.quantity += tx.quantity
            pos.total_cost = add(pos.total_cost, tx.amount)
            if method == "fifo":
                lots.append(Lot(price=tx.price, quantity=tx.quantity, date=tx.date))
            continue

        qty = tx.quantity
        if qty > pos.quantity:
            _report_oversell(tx, pos.quantity, oversell_policy)
            if oversell_policy == "skip":
                continue
            qty = pos.quantity
        if qty == 0:
            continue

        if method == "fifo":
            cost, buy_dates = _sell_fifo(pos, lots, qty)
        else:
            cost, buy_dates = _sell_weighted(pos, qty)
        proceeds = multiply(tx.price, qty)
        profit = subtract(proceeds, cost)
        pos.realized_profit = add(pos.realized_profit, profit)
        result.trades.append(
            RealizedTrade(
                transaction_id=tx.id,
                symbol=tx.symbol,
                name=pos.name,
                date=tx.date,
                quantity=qty,
                price=tx.price,
                proceeds=proceeds,
                cost_basis=cost,
                profit=profit,
                buy_dates=buy_dates,
            )
        )
        if pos.quantity <= 0:
            del positions[tx.symbol]
            del queues[tx.symbol]

    for symbol, pos in positions.items():
        if pos.quantity <= 0:
            continue
        if method == "fifo":
            pos.lots = [Lot(price=l.price, quantity=l.quantity, date=l.date) for l in queues[symbol]]
        result.holdings[symbol] = pos
    return result


def compute_holdings(
    transactions: Iterable[Transaction],
    method: CostBasisMethod = "weighted_average",
    oversell_policy: OversellPolicy = "reject",
) -> Dict[str, Holding]:
    """Return ``{symbol: Holding}`` for every symbol with quantity > 0."""
    return replay(transactions, method, oversell_policy).holdings


def compute_realized_trades(
    transactions: Iterable[Transaction],
    method: CostBasisMethod = "weighted_average",
    oversell_policy: OversellPolicy = "reject",
) -> List[RealizedTrade]:
    return replay(transactions, method, oversell_policy).trades


def available_quantity(transactions: Iterable[Transaction], symbol: str) -> int:
    """Units of ``symbol`` held after the whole timeline (0 if none)."""
    symbol = symbol.strip().upper()
    held = 0
    for tx in sort_chronologically(t for t in transactions if t.symbol == symbol):
        if tx.kind == BUY:
            held += tx.quantity
        else:
            held = max(0, held - tx.quantity)
    return held


def find_oversold(transactions: Iterable[Transaction]) -> Optional[OversoldError]:
    """Return an error for the first sell exceeding its available quantity, if any."""
    held: Dict[str, int] = {}
    for tx in sort_chronologically(transactions):
        have = held.get(tx.symbol, 0)
        if tx.kind == BUY:
            held[tx.symbol] = have + tx.quantity
        elif tx.quantity > have:
            return OversoldError(tx.symbol, tx.quantity, have, tx.id)
        else:
            held[tx.symbol] = have - tx.quantity
    return None
