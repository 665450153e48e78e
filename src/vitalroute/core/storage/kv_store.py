"""Key-value stores beneath the result cache and the rate limiter.

Both consumers only need ``get``/``set``/``delete`` on opaque bytes plus a
prefix listing for reloads, so the persistence mechanics stay swappable:
in-memory for tests, SQLite for durability across restarts, and an
encrypting wrapper around either.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Protocol, runtime_checkable

from vitalroute.core.storage.database import DatabaseError, StateDatabase
from vitalroute.core.storage.encryption import ValueEncryptor

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    """Minimal persistent key-value interface."""

    def get(self, key: str) -> bytes | None: ...

    def set(self, key: str, value: bytes) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self, prefix: str = "") -> list[str]: ...


class InMemoryKeyValueStore:
    """Dict-backed store. Contents are lost when the process exits."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class SQLiteKeyValueStore:
    """Store backed by the ``kv_store`` table of a :class:`StateDatabase`."""

    def __init__(self, db: StateDatabase) -> None:
        self._db = db

    def get(self, key: str) -> bytes | None:
        try:
            row = self._db.connection.execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to read key {key!r}: {exc}") from exc
        return bytes(row["value"]) if row is not None else None

    def set(self, key: str, value: bytes) -> None:
        conn = self._db.connection
        try:
            conn.execute(
                """INSERT INTO kv_store (key, value, updated_at)
                   VALUES (?, ?, datetime('now'))
                   ON CONFLICT(key) DO UPDATE SET
                       value = excluded.value,
                       updated_at = excluded.updated_at""",
                (key, sqlite3.Binary(value)),
            )
            conn.commit()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to write key {key!r}: {exc}") from exc

    def delete(self, key: str) -> None:
        conn = self._db.connection
        try:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            conn.commit()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to delete key {key!r}: {exc}") from exc

    def keys(self, prefix: str = "") -> list[str]:
        # Escape LIKE wildcards so prefixes are matched literally.
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        try:
            rows = self._db.connection.execute(
                "SELECT key FROM kv_store WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
                (escaped + "%",),
            ).fetchall()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to list keys with prefix {prefix!r}: {exc}") from exc
        return [row["key"] for row in rows]


class EncryptedKeyValueStore:
    """Wraps another store, encrypting values with Fernet on the way in."""

    def __init__(self, inner: KeyValueStore, encryptor: ValueEncryptor) -> None:
        self._inner = inner
        self._encryptor = encryptor

    def get(self, key: str) -> bytes | None:
        token = self._inner.get(key)
        if token is None:
            return None
        return self._encryptor.decrypt(token)

    def set(self, key: str, value: bytes) -> None:
        self._inner.set(key, self._encryptor.encrypt(value))

    def delete(self, key: str) -> None:
        self._inner.delete(key)

    def keys(self, prefix: str = "") -> list[str]:
        return self._inner.keys(prefix)
