import pytest

from stockledger.ledger.precision import (
    add,
    divide,
    format_money,
    format_percent,
    multiply,
    normalize_prices,
    percent,
    prorate,
    ratio,
    round2,
    round_to,
    subtract,
)


def test_round_half_up_on_decimal_representation():
    # binary float 1.005 is 1.00499..., the decimal literal must still round up
    assert round2(1.005) == 1.01
    assert round2(2.675) == 2.68
    assert round2(-1.005) == -1.01
    assert round_to(1.23456, 3) == 1.235


def test_add_subtract_without_float_drift():
    assert add(0.1, 0.2) == 0.3
    assert subtract(0.3, 0.1) == 0.2
    total = 0.0
    for _ in range(10):
        total = add(total, 0.1)
    assert total == 1.0


def test_multiply_and_divide():
    assert multiply(19.99, 3) == 59.97
    assert multiply(10.005, 1) == 10.01
    assert divide(10, 4) == 2.5
    assert divide(1, 3) == 0.33


def test_non_finite_and_zero_division_yield_zero():
    assert round2(float("nan")) == 0.0
    assert round2(float("inf")) == 0.0
    assert add(float("inf"), 1) == 1.0
    assert divide(5, 0) == 0.0
    assert ratio(5, 0) == 0.0
    assert percent(1, 0) == 0.0
    assert prorate(100, 1, 0) == 0.0
    assert round2("not a number") == 0.0
    assert round2(None) == 0.0


def test_prorate_rounds_once():
    assert prorate(1000, 40, 100) == 400.0
    assert prorate(100, 1, 3) == 33.33
    assert prorate(99.96, 4, 10) == 39.98


def test_ratio_is_unrounded():
    assert ratio(100, 3) == pytest.approx(33.333333, rel=1e-6)
    assert percent(200, 1000) == 20.0
    assert percent(1, 3) == 33.33


def test_formatting():
    assert format_money(1234.5) == "$1,234.50"
    assert format_money(0) == "$0.00"
    assert format_money(9.999, "¥") == "¥10.00"
    assert format_percent(12.345) == "12.35%"


def test_normalize_prices_rounds_money_fields_only():
    data = {
        "symbol": "ACME",
        "price": 10.005,
        "quantity": 3,
        "active": True,
        "rows": [{"profit": 1.234, "note": "x"}],
    }
    out = normalize_prices(data)
    assert out["price"] == 10.01
    assert out["quantity"] == 3
    assert out["active"] is True
    assert out["rows"][0] == {"profit": 1.23, "note": "x"}
    assert normalize_prices("plain") == "plain"
