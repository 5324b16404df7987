"""Key-value persistence for ledger collections."""

from .kv import MemoryStore, SQLiteStore
from .repository import LedgerStorage

__all__ = ["LedgerStorage", "MemoryStore", "SQLiteStore"]
