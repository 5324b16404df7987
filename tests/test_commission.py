from stockledger.ledger.commission import commission, max_affordable_quantity, trade_cost
from stockledger.ledger.model import CommissionSchedule


def test_minimum_fee_applies_to_small_trades():
    assert commission(100) == 5.0
    assert commission(250) == 5.0
    assert commission(1) == 5.0


def test_per_unit_rate_above_floor():
    assert commission(1000) == 20.0
    assert commission(333) == 6.66


def test_invalid_quantities_pay_minimum():
    assert commission(0) == 5.0
    assert commission(-10) == 5.0
    assert commission(float("nan")) == 5.0


def test_custom_schedule():
    sched = CommissionSchedule(minimum_fee=1.0, per_unit_rate=0.005)
    assert commission(100, sched) == 1.0
    assert commission(1000, sched) == 5.0


def test_commission_floor_holds_for_any_quantity():
    for qty in (0, 1, 10, 249, 250, 251, 10_000):
        assert commission(qty) >= 5.0


def test_trade_cost_includes_commission():
    assert trade_cost(10, 100) == 1005.0
    assert trade_cost(10, 1000) == 10020.0


def test_max_affordable_quantity():
    assert max_affordable_quantity(1005, 10) == 100
    assert max_affordable_quantity(1004.99, 10) == 99
    assert max_affordable_quantity(4, 10) == 0
    assert max_affordable_quantity(0, 10) == 0
    assert max_affordable_quantity(100, 0) == 0
    q = max_affordable_quantity(50_000, 3.21)
    assert trade_cost(3.21, q) <= 50_000
    assert trade_cost(3.21, q + 1) > 50_000
