# ordercache/storage/kv_store.py

"""Durable key-value storage for cache persistence across sessions."""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Protocol

from ordercache.config.settings import Settings

logger = logging.getLogger("ordercache.kv")

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS kv (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class PersistentKV(Protocol):
    """Minimal durable string store used by the caches."""

    def read(self, key: str) -> str | None:
        """Return the stored value for *key*, or ``None``."""
        ...

    def write(self, key: str, value: str) -> None:
        """Store *value* under *key*, replacing any previous value."""
        ...

    def delete(self, key: str) -> None:
        """Remove *key*; no-op when absent."""
        ...


class SqliteKV:
    """SQLite-backed :class:`PersistentKV`."""

    def __init__(
        self, db_path: Path | None = None,
    ) -> None:
        path = db_path or Settings.KV_DB_PATH
        path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            str(path), check_same_thread=False,
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)
        logger.debug("SqliteKV opened at %s", path)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def read(self, key: str) -> str | None:
        """Return the stored value for *key*, or ``None``."""
        row = self._conn.execute(
            "SELECT value FROM kv WHERE key = ?", (key,),
        ).fetchone()
        return str(row[0]) if row else None

    def write(self, key: str, value: str) -> None:
        """Store *value* under *key*, replacing any previous value."""
        self._conn.execute(
            "INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET "
            "value=excluded.value, updated_at=excluded.updated_at",
            (key, value, datetime.now().isoformat()),
        )
        self._conn.commit()
        logger.debug("Wrote %d bytes under '%s'", len(value), key)

    def delete(self, key: str) -> None:
        """Remove *key*; no-op when absent."""
        self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        self._conn.commit()
