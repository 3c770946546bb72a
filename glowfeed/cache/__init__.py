from glowfeed.cache.storage import MemoryStorage, RedisStorage, SQLiteStorage, Storage, make_storage
from glowfeed.cache.ttl_cache import CacheEntry, LocalTTLCache

__all__ = [
    "CacheEntry",
    "LocalTTLCache",
    "MemoryStorage",
    "RedisStorage",
    "SQLiteStorage",
    "Storage",
    "make_storage",
]
