from __future__ import annotations

from typing import Optional

from .model import CommissionSchedule
from .precision import add, multiply, round2, to_decimal

DEFAULT_SCHEDULE = CommissionSchedule()


def commission(quantity: float, schedule: Optional[CommissionSchedule] = None) -> float:
    """Fee for one trade: ``max(minimum_fee, per_unit_rate * quantity)``.

    Non-finite or negative quantities count as 0, so the minimum fee applies.
    """
    sched = schedule or DEFAULT_SCHEDULE
    qty = max(to_decimal(quantity), 0)
    return round2(max(round2(sched.minimum_fee), multiply(sched.per_unit_rate, qty)))


def trade_cost(price: float, quantity: int, schedule: Optional[CommissionSchedule] = None) -> float:
    """Cash needed to buy ``quantity`` at ``price`` including commission."""
    return add(multiply(price, quantity), commission(quantity, schedule))


def max_affordable_quantity(
    balance: float, price: float, schedule: Optional[CommissionSchedule] = None
) -> int:
    """Largest integer q with ``price*q + commission(q) <= balance`` (0 if none).

    Commission is non-decreasing in q, so total cost is monotonic and a
    binary search over [0, balance/price] finds the boundary.
    """
    balance = round2(balance)
    price = round2(price)
    if price <= 0 or balance <= 0:
        return 0
    lo, hi = 0, int(balance // price)
    while lo < hi:
        mid = (lo + hi + 1) // 2
        if trade_cost(price, mid, schedule) <= balance:
            lo = mid
        else:
            hi = mid - 1
    return lo
