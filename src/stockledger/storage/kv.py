from __future__ import annotations

import os
import sqlite3
from typing import Dict, Iterator, Optional, Protocol


class KeyValueStore(Protocol):
    """String key/value capability the ledger persists through."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = str(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> Iterator[str]:
        return iter(list(self._data))


DDL = """
CREATE TABLE IF NOT EXISTS kv (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL
);
"""


class SQLiteStore:
    """Key-value table in a local SQLite file; each call opens its own connection."""

    def __init__(self, path: str = "data/ledger.sqlite"):
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        self.path = path
        with sqlite3.connect(self.path) as con:
            con.execute(DDL)

    def get(self, key: str) -> Optional[str]:
        with sqlite3.connect(self.path) as con:
            row = con.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        with sqlite3.connect(self.path) as con:
            con.execute(
                "INSERT INTO kv(key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, str(value)),
            )

    def delete(self, key: str) -> None:
        with sqlite3.connect(self.path) as con:
            con.execute("DELETE FROM kv WHERE key = ?", (key,))

    def keys(self) -> Iterator[str]:
        with sqlite3.connect(self.path) as con:
            rows = con.execute("SELECT key FROM kv ORDER BY key").fetchall()
        return iter([r[0] for r in rows])
