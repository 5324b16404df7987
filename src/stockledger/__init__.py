"""Stock transaction ledger: holdings, cash balance and profit reporting."""

from .ledger.balance import compute_account_balance
from .ledger.commission import commission
from .ledger.engine import LedgerEngine
from .ledger.holdings import compute_holdings
from .ledger.profit import compute_profit_report

__version__ = "0.1.0"

__all__ = [
    "LedgerEngine",
    "commission",
    "compute_account_balance",
    "compute_holdings",
    "compute_profit_report",
    "__version__",
]
