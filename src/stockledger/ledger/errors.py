from __future__ import annotations

from typing import List, Optional


class LedgerError(Exception):
    """Base class for ledger failures."""
    pass


class ValidationError(LedgerError, ValueError):
    """Raised when a transaction is malformed; nothing is written."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = list(errors or [])


class OversoldError(ValidationError):
    """A sell exceeds the quantity held at that point in the timeline."""

    def __init__(self, symbol: str, requested: int, available: int, transaction_id: str = ""):
        super().__init__(
            f"cannot sell {requested} {symbol}: only {available} available",
            [f"quantity: exceeds available {available}"],
        )
        self.symbol = symbol
        self.requested = requested
        self.available = available
        self.transaction_id = transaction_id


class InsufficientFundsError(ValidationError):
    """A buy costs more than the cash balance (only with enforce_buying_power)."""

    def __init__(self, required: float, balance: float, max_quantity: int):
        super().__init__(
            f"insufficient funds: need {required:.2f}, balance {balance:.2f}, max quantity {max_quantity}",
            [f"quantity: at most {max_quantity} affordable"],
        )
        self.required = required
        self.balance = balance
        self.max_quantity = max_quantity


class TransactionNotFound(LedgerError, LookupError):
    pass


class StorageFailure(LedgerError):
    """The key-value backend failed to persist data."""
    pass


class ImportFormatError(LedgerError, ValueError):
    """An import document is unparseable or has invalid content."""
    pass
