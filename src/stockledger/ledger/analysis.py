"""Portfolio statistics built on top of the replay and the profit report."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from .balance import FeeFunction, computed_fees
from .model import BUY, ProfitReport, RealizedTrade, Transaction
from .precision import add, divide, percent, round2, subtract


def trade_statistics(trades: Iterable[RealizedTrade]) -> Dict[str, Any]:
    """Win rate and profit factor over realized sells."""
    total = 0
    winners = 0
    gross_profit = 0.0
    gross_loss = 0.0
    for trade in trades:
        total += 1
        if trade.profit > 0:
            winners += 1
            gross_profit = add(gross_profit, trade.profit)
        else:
            gross_loss = add(gross_loss, abs(trade.profit))
    return {
        "total_trades": total,
        "profitable_trades": winners,
        "win_rate": percent(winners, total),
        "total_profit": gross_profit,
        "total_loss": gross_loss,
        "net_profit": subtract(gross_profit, gross_loss),
        "profit_factor": divide(gross_profit, gross_loss),
    }


def monthly_cash_flow(
    transactions: Iterable[Transaction], fee_of: Optional[FeeFunction] = None
) -> List[Dict[str, Any]]:
    """Per calendar month: cash spent on buys, received from sells, fees, and net."""
    fee_of = fee_of or computed_fees()
    rows = []
    for tx in transactions:
        fee = fee_of(tx)
        rows.append({
            "month": tx.date.strftime("%Y-%m"),
            "buy_amount": add(tx.amount, fee) if tx.kind == BUY else 0.0,
            "sell_amount": subtract(tx.amount, fee) if tx.kind != BUY else 0.0,
            "fee": fee,
        })
    if not rows:
        return []
    df = pd.DataFrame(rows)
    grouped = df.groupby("month", sort=True)[["buy_amount", "sell_amount", "fee"]].sum()
    out = []
    for month, rec in grouped.iterrows():
        buy = round2(rec["buy_amount"])
        sell = round2(rec["sell_amount"])
        out.append({
            "month": str(month),
            "buy_amount": buy,
            "sell_amount": sell,
            "fee": round2(rec["fee"]),
            "net": subtract(sell, buy),
        })
    return out


def allocation(report: ProfitReport) -> List[Dict[str, Any]]:
    """Share of total market value per holding, largest first."""
    out = [
        {
            "symbol": row.symbol,
            "name": row.name,
            "value": row.current_value,
            "weight_percent": percent(row.current_value, report.total_value),
            "profit": row.profit,
        }
        for row in report.rows
    ]
    out.sort(key=lambda r: r["value"], reverse=True)
    return out


def profit_distribution(report: ProfitReport) -> Dict[str, Any]:
    winners = [r.profit for r in report.rows if r.profit > 0]
    losers = [r.profit for r in report.rows if r.profit < 0]
    flat = len(report.rows) - len(winners) - len(losers)
    total_profit = 0.0
    for p in winners:
        total_profit = add(total_profit, p)
    total_loss = 0.0
    for p in losers:
        total_loss = add(total_loss, -p)
    return {
        "profitable_count": len(winners),
        "losing_count": len(losers),
        "break_even_count": flat,
        "total_profit": total_profit,
        "total_loss": total_loss,
        "max_profit": max(winners) if winners else 0.0,
        "max_loss": min(losers) if losers else 0.0,
    }
