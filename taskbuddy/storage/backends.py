"""Key-value backends for the offline cache.

Backends raise on failure. LocalStore is the layer that turns failures into
results and decides on defaults.
"""

import logging
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger(__name__)

KV_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);
"""


class StorageBackendError(Exception):
    """The backing medium failed to read or write."""


class KeyValueBackend(ABC):
    """Abstract string key-value store."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored value, or None if the key is absent."""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key. Removing an absent key is not an error."""
        pass

    def close(self) -> None:
        """Release any resources held by the backend."""


class MemoryBackend(KeyValueBackend):
    """Dict-backed store, used for tests and the `memory` storage option."""

    def __init__(self, max_value_bytes: int | None = None):
        """Initialize the in-memory store.

        Args:
            max_value_bytes: Reject writes larger than this, mimicking a
                quota-limited medium. None means unlimited.
        """
        self._data: dict[str, str] = {}
        self.max_value_bytes = max_value_bytes
        self.fail_reads = False
        self.fail_writes = False

    def get(self, key: str) -> str | None:
        if self.fail_reads:
            raise StorageBackendError("read failed")
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self.fail_writes:
            raise StorageBackendError("write failed")
        if self.max_value_bytes is not None and len(value.encode()) > self.max_value_bytes:
            raise StorageBackendError(f"quota exceeded for {key}")
        self._data[key] = value

    def delete(self, key: str) -> None:
        if self.fail_writes:
            raise StorageBackendError("delete failed")
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class SQLiteBackend(KeyValueBackend):
    """SQLite-backed store that survives app restarts."""

    def __init__(self, db_path: str | Path):
        """Initialize the SQLite backend.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = Path(db_path).expanduser() if db_path != ":memory:" else None
        self._raw_path = str(db_path)
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if self.db_path is not None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            target = str(self.db_path)
        else:
            target = self._raw_path

        self._conn = sqlite3.connect(target)
        self._conn.executescript(KV_SCHEMA)
        self._conn.commit()

        logger.info(f"SQLiteBackend connected to {target}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure database connection exists."""
        if self._conn is None:
            self.connect()
        return self._conn

    def get(self, key: str) -> str | None:
        try:
            conn = self._ensure_connected()
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            raise StorageBackendError(str(e)) from e
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        try:
            conn = self._ensure_connected()
            conn.execute(
                """
                INSERT INTO kv (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise StorageBackendError(str(e)) from e

    def delete(self, key: str) -> None:
        try:
            conn = self._ensure_connected()
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            conn.commit()
        except sqlite3.Error as e:
            raise StorageBackendError(str(e)) from e
