"""Durable backends for cache partitions.

``SqliteStorage`` is the production backend; every row belongs to a named
partition. ``MemoryStorage`` keeps the same contract without persistence and
backs the ``memory`` cache backend.

Backend failures are re-raised as ``StorageError`` so the cache layer never
depends on a particular driver's exception types.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import aiosqlite
import structlog

from policylens.errors import StorageError
from policylens.models.cache import CacheEntry

if TYPE_CHECKING:
    from collections.abc import Iterable

log = structlog.get_logger()

_CREATE_CACHE_TABLE = """
CREATE TABLE IF NOT EXISTS analysis_cache (
    partition   TEXT NOT NULL,
    key         TEXT NOT NULL,
    value       TEXT NOT NULL,
    created_at  REAL NOT NULL,
    expires_at  REAL NOT NULL,
    PRIMARY KEY (partition, key)
)
"""

_CREATE_CACHE_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_cache_expires ON analysis_cache(partition, expires_at)"
)


class SqliteStorage:
    """aiosqlite-backed StorageProtocol."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        """Create tables and set WAL mode. Called once at startup."""
        try:
            await self._db.execute("PRAGMA journal_mode = WAL")
            await self._db.execute(_CREATE_CACHE_TABLE)
            await self._db.execute(_CREATE_CACHE_INDEX)
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(f"cache schema setup failed: {exc}") from exc

    async def load(self, partition: str) -> list[CacheEntry]:
        try:
            cursor = await self._db.execute(
                "SELECT key, value, created_at, expires_at FROM analysis_cache "
                "WHERE partition = ?",
                (partition,),
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StorageError(f"cache load failed: {exc}") from exc

        entries: list[CacheEntry] = []
        for key, value, created_at, expires_at in rows:
            try:
                entries.append(
                    CacheEntry(
                        key=key,
                        value=json.loads(value),
                        created_at=created_at,
                        expires_at=expires_at,
                    )
                )
            except ValueError:
                log.warning("cache_row_corrupt", partition=partition, key=key)
        return entries

    async def upsert(self, partition: str, entry: CacheEntry) -> None:
        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO analysis_cache "
                "(partition, key, value, created_at, expires_at) VALUES (?, ?, ?, ?, ?)",
                (
                    partition,
                    entry.key,
                    json.dumps(entry.value, ensure_ascii=False),
                    entry.created_at,
                    entry.expires_at,
                ),
            )
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(f"cache write failed: {exc}") from exc

    async def delete(self, partition: str, keys: Iterable[str]) -> None:
        params = [(partition, key) for key in keys]
        if not params:
            return
        try:
            await self._db.executemany(
                "DELETE FROM analysis_cache WHERE partition = ? AND key = ?", params
            )
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(f"cache delete failed: {exc}") from exc

    async def ping(self) -> None:
        try:
            await self._db.execute("SELECT 1")
        except aiosqlite.Error as exc:
            raise StorageError(f"cache database unreachable: {exc}") from exc

    async def close(self) -> None:
        await self._db.close()


class MemoryStorage:
    """Non-persistent StorageProtocol."""

    def __init__(self) -> None:
        self._partitions: dict[str, dict[str, CacheEntry]] = {}

    async def load(self, partition: str) -> list[CacheEntry]:
        return list(self._partitions.get(partition, {}).values())

    async def upsert(self, partition: str, entry: CacheEntry) -> None:
        self._partitions.setdefault(partition, {})[entry.key] = entry

    async def delete(self, partition: str, keys: Iterable[str]) -> None:
        rows = self._partitions.get(partition, {})
        for key in keys:
            rows.pop(key, None)

    async def ping(self) -> None:
        return None

    async def close(self) -> None:
        self._partitions.clear()
