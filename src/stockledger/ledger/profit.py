from __future__ import annotations

from typing import Dict, Literal, Mapping, Optional

from .model import Holding, ProfitReport, ProfitRow
from .precision import add, multiply, percent, round2, subtract, to_decimal

SortKey = Literal["abs_profit", "profit_percent"]


def _override(price_overrides: Mapping[str, float], symbol: str) -> Optional[float]:
    raw = price_overrides.get(symbol)
    if raw is None:
        return None
    price = round2(raw)
    return price if price > 0 else None


def compute_profit_report(
    holdings: Mapping[str, Holding],
    price_overrides: Optional[Mapping[str, float]] = None,
    sort_by: SortKey = "abs_profit",
) -> ProfitReport:
    """Unrealized profit per holding and in aggregate.

    A holding without a positive override is valued at its own average cost,
    so it reports as break-even rather than unknown.

    Rows are ordered by descending absolute profit; ``sort_by="profit_percent"``
    orders by descending profit percent instead.
    """
    overrides: Dict[str, float] = {str(k).upper(): v for k, v in (price_overrides or {}).items()}
    rows = []
    total_cost = 0.0
    total_value = 0.0
    for holding in holdings.values():
        price = _override(overrides, holding.symbol)
        priced = price is not None
        if price is None:
            current_value = holding.total_cost
            price = holding.avg_cost
        else:
            current_value = multiply(holding.quantity, price)
        profit = subtract(current_value, holding.total_cost)
        rows.append(
            ProfitRow(
                symbol=holding.symbol,
                name=holding.name,
                quantity=holding.quantity,
                avg_cost=holding.avg_cost,
                total_cost=holding.total_cost,
                current_price=price,
                current_value=current_value,
                profit=profit,
                profit_percent=percent(profit, holding.total_cost),
                priced=priced,
            )
        )
        total_cost = add(total_cost, holding.total_cost)
        total_value = add(total_value, current_value)

    if sort_by == "profit_percent":
        rows.sort(key=lambda r: r.profit_percent, reverse=True)
    elif sort_by == "abs_profit":
        rows.sort(key=lambda r: abs(to_decimal(r.profit)), reverse=True)
    else:
        raise ValueError(f"unknown sort key: {sort_by}")

    total_profit = subtract(total_value, total_cost)
    return ProfitReport(
        total_cost=total_cost,
        total_value=total_value,
        total_profit=total_profit,
        total_profit_percent=percent(total_profit, total_cost),
        rows=rows,
    )
