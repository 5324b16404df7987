"""Ledger package.

Public API:
- LedgerEngine: stored transactions plus derived holdings, balance and profit.
- compute_holdings / compute_account_balance / compute_profit_report: pure calculators.
"""

from .balance import compute_account_balance
from .commission import commission
from .engine import LedgerEngine
from .holdings import compute_holdings, compute_realized_trades
from .profit import compute_profit_report
