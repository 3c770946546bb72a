"""Tests for the cache storage backends and their factory."""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from glowfeed.cache import LocalTTLCache, MemoryStorage, RedisStorage, SQLiteStorage, make_storage


# ── MemoryStorage ────────────────────────────────────────────────────────────

def test_memory_set_get_remove():
    storage = MemoryStorage()
    assert storage.get_item("k") is None
    storage.set_item("k", "v")
    assert storage.get_item("k") == "v"
    storage.remove_item("k")
    assert storage.get_item("k") is None


def test_memory_remove_missing_key_is_noop():
    MemoryStorage().remove_item("missing")


# ── SQLiteStorage ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_sqlite_roundtrip(tmp_path):
    storage = SQLiteStorage(str(tmp_path / "cache.db"))
    await storage.init()

    assert await storage.get_item("k") is None
    await storage.set_item("k", "v1")
    await storage.set_item("k", "v2")
    assert await storage.get_item("k") == "v2"
    await storage.remove_item("k")
    assert await storage.get_item("k") is None


@pytest.mark.asyncio
async def test_sqlite_entries_survive_a_new_cache_instance(tmp_path):
    db_path = str(tmp_path / "cache.db")
    async with LocalTTLCache(SQLiteStorage(db_path)) as cache:
        await cache.update("posts", [{"id": "p1"}])

    async with LocalTTLCache(SQLiteStorage(db_path)) as cache:
        entry = await cache.peek("posts")
    assert entry.data == [{"id": "p1"}]


@pytest.mark.asyncio
async def test_sqlite_read_before_init_is_a_cache_miss(tmp_path):
    cache = LocalTTLCache(SQLiteStorage(str(tmp_path / "never_initialised.db")))
    assert await cache.peek("posts") is None


# ── RedisStorage ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_redis_delegates_to_client():
    mock_client = MagicMock()
    mock_client.get = AsyncMock(return_value="v")
    mock_client.set = AsyncMock()
    mock_client.delete = AsyncMock()
    mock_client.aclose = AsyncMock()

    with patch("glowfeed.cache.storage.aioredis.from_url", return_value=mock_client) as from_url:
        storage = RedisStorage("redis://cache:6379")
        await storage.set_item("k", "v")
        assert await storage.get_item("k") == "v"
        await storage.remove_item("k")
        await storage.dispose()

    from_url.assert_called_once_with("redis://cache:6379", decode_responses=True)
    mock_client.set.assert_awaited_once_with("k", "v")
    mock_client.delete.assert_awaited_once_with("k")
    mock_client.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_redis_outage_reads_as_miss():
    mock_client = MagicMock()
    mock_client.get = AsyncMock(side_effect=ConnectionError("redis down"))

    with patch("glowfeed.cache.storage.aioredis.from_url", return_value=mock_client):
        cache = LocalTTLCache(RedisStorage("redis://cache:6379"))
        assert await cache.peek("posts") is None


# ── Factory ──────────────────────────────────────────────────────────────────

def test_make_storage_defaults_to_memory(monkeypatch):
    monkeypatch.delenv("CACHE_BACKEND", raising=False)
    assert isinstance(make_storage(), MemoryStorage)


def test_make_storage_sqlite_uses_db_path(monkeypatch):
    monkeypatch.setenv("CACHE_BACKEND", "sqlite")
    monkeypatch.setenv("CACHE_DB_PATH", "/tmp/feed.db")
    storage = make_storage()
    assert isinstance(storage, SQLiteStorage)
    assert storage.db_path == "/tmp/feed.db"


def test_make_storage_redis(monkeypatch):
    monkeypatch.setenv("CACHE_BACKEND", "Redis")
    monkeypatch.setenv("REDIS_URL", "redis://cache:6379")
    storage = make_storage()
    assert isinstance(storage, RedisStorage)
    assert storage.url == "redis://cache:6379"


def test_make_storage_explicit_backend_wins(monkeypatch):
    monkeypatch.setenv("CACHE_BACKEND", "redis")
    assert isinstance(make_storage("memory"), MemoryStorage)


def test_make_storage_rejects_unknown_backend():
    with pytest.raises(ValueError, match="Unknown CACHE_BACKEND"):
        make_storage("memcached")
