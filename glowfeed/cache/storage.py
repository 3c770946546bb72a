"""Swappable persisted key-value storage for the local cache.

Toggle via CACHE_BACKEND env var:
  CACHE_BACKEND=memory   (default)
  CACHE_BACKEND=sqlite   (CACHE_DB_PATH, default glowfeed_cache.db)
  CACHE_BACKEND=redis    (REDIS_URL)
"""

from __future__ import annotations

import logging
import os
from typing import Any, Protocol, runtime_checkable

import aiosqlite
import redis.asyncio as aioredis

_log = logging.getLogger(__name__)


# ── Protocol ─────────────────────────────────────────────────────────────────

@runtime_checkable
class Storage(Protocol):
    """String key-value store. Methods may be plain or coroutine functions;
    the cache awaits whatever comes back awaitable."""

    def get_item(self, key: str) -> Any:
        ...

    def set_item(self, key: str, value: str) -> Any:
        ...

    def remove_item(self, key: str) -> Any:
        ...


# ── MemoryStorage ────────────────────────────────────────────────────────────

class MemoryStorage:
    """Process-local dict. Synchronous, nothing to open or close."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._items)


# ── SQLiteStorage ────────────────────────────────────────────────────────────

class SQLiteStorage:
    """One row per key in a local SQLite file."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    async def init(self) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS cache_items (
                    key   TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            await db.commit()

    async def get_item(self, key: str) -> str | None:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT value FROM cache_items WHERE key = ?", (key,)) as cursor:
                row = await cursor.fetchone()
        return row[0] if row else None

    async def set_item(self, key: str, value: str) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "INSERT OR REPLACE INTO cache_items (key, value) VALUES (?, ?)",
                (key, value),
            )
            await db.commit()

    async def remove_item(self, key: str) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM cache_items WHERE key = ?", (key,))
            await db.commit()


# ── RedisStorage ─────────────────────────────────────────────────────────────

class RedisStorage:
    """Shared Redis instance; the client is created lazily on first use."""

    def __init__(self, url: str) -> None:
        self.url = url
        self._client: aioredis.Redis | None = None

    def _get_client(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.from_url(self.url, decode_responses=True)
        return self._client

    async def get_item(self, key: str) -> str | None:
        return await self._get_client().get(key)

    async def set_item(self, key: str, value: str) -> None:
        await self._get_client().set(key, value)

    async def remove_item(self, key: str) -> None:
        await self._get_client().delete(key)

    async def dispose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# ── Factory ──────────────────────────────────────────────────────────────────

def make_storage(backend: str | None = None) -> Storage:
    """Return the storage backend named by ``backend`` or CACHE_BACKEND.

    Raises ValueError for an unknown backend name.
    """
    backend = (backend or os.getenv("CACHE_BACKEND", "memory")).lower()

    if backend == "memory":
        return MemoryStorage()

    if backend == "sqlite":
        db_path = os.getenv("CACHE_DB_PATH", "glowfeed_cache.db")
        _log.info("cache storage: sqlite db=%s", db_path)
        return SQLiteStorage(db_path)

    if backend == "redis":
        url = os.getenv("REDIS_URL", "redis://localhost:6379")
        _log.info("cache storage: redis url=%s", url)
        return RedisStorage(url)

    raise ValueError(f"Unknown CACHE_BACKEND={backend!r}. Use 'memory', 'sqlite' or 'redis'.")
