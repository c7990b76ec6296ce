"""Durable key/value stores for the generation cache.

``SqliteStore`` is the on-disk backend; ``MemoryStore`` keeps everything in a
dict and is used in tests and when no durable store is configured. Both enforce
a per-value size quota by raising ``StoreFullError``.
"""

from __future__ import annotations

from datetime import UTC, datetime

import aiosqlite

from patchstream.errors import StoreFullError

_CREATE_KV_TABLE = """
CREATE TABLE IF NOT EXISTS kv_store (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""


def _check_quota(key: str, value: str, limit: int | None) -> None:
    if limit is None:
        return
    size = len(value.encode("utf-8"))
    if size > limit:
        raise StoreFullError(key, size, limit)


class SqliteStore:
    """SQLite-backed store implementing StorageProtocol.

    Errors (``aiosqlite.Error``, ``StoreFullError``) propagate; the cache
    decides how to degrade.
    """

    def __init__(self, db: aiosqlite.Connection, *, max_value_bytes: int | None = None) -> None:
        self._db = db
        self._max_value_bytes = max_value_bytes

    async def init_db(self) -> None:
        """Create the table and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_KV_TABLE)
        await self._db.commit()

    async def get(self, key: str) -> str | None:
        cursor = await self._db.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
        row = await cursor.fetchone()
        return None if row is None else row[0]

    async def set(self, key: str, value: str) -> None:
        _check_quota(key, value, self._max_value_bytes)
        await self._db.execute(
            "INSERT OR REPLACE INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)",
            (key, value, datetime.now(UTC).isoformat()),
        )
        await self._db.commit()

    async def remove(self, key: str) -> None:
        await self._db.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        await self._db.commit()


class MemoryStore:
    """In-process store implementing StorageProtocol."""

    def __init__(self, *, max_value_bytes: int | None = None) -> None:
        self._data: dict[str, str] = {}
        self._max_value_bytes = max_value_bytes

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        _check_quota(key, value, self._max_value_bytes)
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)
