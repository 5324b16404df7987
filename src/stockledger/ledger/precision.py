"""Cent-accurate money arithmetic.

Every helper converts its inputs to ``Decimal`` (via ``str`` so a float like
0.1 stays 0.1), does the operation, and rounds the result half-up to two
decimals. Results come back as plain floats so they serialize straight into
the JSON store.

Non-finite or unparseable inputs, and division by zero, yield 0.0 instead of
raising: a displayed financial figure shows 0 rather than NaN/Infinity.
"""

from __future__ import annotations

import math
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Union

Number = Union[int, float, str, Decimal]

CENT = Decimal("0.01")

MONEY_FIELDS = frozenset({
    "price", "cost", "avg_cost", "total_cost", "current_price", "value",
    "total_value", "current_value", "balance", "funds", "amount", "fee",
    "profit", "proceeds", "cost_basis",
})


def to_decimal(x: Any) -> Decimal:
    """Return ``x`` as a finite Decimal, or Decimal(0) when that is impossible."""
    if isinstance(x, bool) or x is None:
        return Decimal(0)
    if isinstance(x, Decimal):
        return x if x.is_finite() else Decimal(0)
    if isinstance(x, float):
        if not math.isfinite(x):
            return Decimal(0)
        return Decimal(repr(float(x)))
    try:
        d = Decimal(str(x).strip()) if isinstance(x, str) else Decimal(x)
    except (InvalidOperation, TypeError, ValueError):
        return Decimal(0)
    return d if d.is_finite() else Decimal(0)


def _q(d: Decimal, decimals: int = 2) -> float:
    exp = CENT if decimals == 2 else Decimal(1).scaleb(-decimals)
    return float(d.quantize(exp, rounding=ROUND_HALF_UP))


def round2(x: Number) -> float:
    return _q(to_decimal(x))


def round_to(x: Number, decimals: int = 2) -> float:
    return _q(to_decimal(x), decimals)


def add(a: Number, b: Number) -> float:
    return _q(to_decimal(a).quantize(CENT, ROUND_HALF_UP) + to_decimal(b).quantize(CENT, ROUND_HALF_UP))


def subtract(a: Number, b: Number) -> float:
    return _q(to_decimal(a).quantize(CENT, ROUND_HALF_UP) - to_decimal(b).quantize(CENT, ROUND_HALF_UP))


def multiply(a: Number, b: Number) -> float:
    # operands keep full precision, only the product is rounded
    return _q(to_decimal(a) * to_decimal(b))


def divide(a: Number, b: Number) -> float:
    denom = to_decimal(b)
    if denom == 0:
        return 0.0
    return _q(to_decimal(a) / denom)


def prorate(total: Number, part: Number, whole: Number) -> float:
    """Share of ``total`` attributable to ``part`` out of ``whole``, rounded once.

    Used to release cost basis on a sell: ``prorate(total_cost, sold, held)``.
    """
    w = to_decimal(whole)
    if w == 0:
        return 0.0
    return _q(to_decimal(total) * to_decimal(part) / w)


def ratio(a: Number, b: Number) -> float:
    """Unrounded ``a / b`` (0.0 on zero or non-finite input); for per-unit prices."""
    denom = to_decimal(b)
    if denom == 0:
        return 0.0
    return float(to_decimal(a) / denom)


def percent(part: Number, whole: Number) -> float:
    w = to_decimal(whole)
    if w == 0:
        return 0.0
    return _q(to_decimal(part) / w * 100)


def format_money(amount: Number, currency: str = "$") -> str:
    return f"{currency}{to_decimal(amount).quantize(CENT, ROUND_HALF_UP):,}"


def format_percent(value: Number) -> str:
    return f"{to_decimal(value).quantize(CENT, ROUND_HALF_UP)}%"


def normalize_prices(data: Any) -> Any:
    """Recursively round known money fields of dicts (and lists of dicts)."""
    if isinstance(data, list):
        return [normalize_prices(item) for item in data]
    if isinstance(data, dict):
        out = {}
        for key, value in data.items():
            if key in MONEY_FIELDS and isinstance(value, (int, float)) and not isinstance(value, bool):
                out[key] = round2(value)
            elif isinstance(value, (dict, list)):
                out[key] = normalize_prices(value)
            else:
                out[key] = value
        return out
    return data
