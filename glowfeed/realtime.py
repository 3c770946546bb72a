"""Routes database change events to cache invalidations.

Transport-agnostic: whatever delivers change payloads (a webhook, a
websocket channel) hands them to ``route_change``.
"""
import logging
from typing import Any, Optional

from glowfeed.cache import LocalTTLCache

_log = logging.getLogger(__name__)

# table -> cache key holding rows derived from it
TABLE_KEYS = {
    "posts": "posts",
    "comments": "posts",
    "reactions": "posts",
    "connections": "connections",
    "analyses": "analyses",
    "profiles": "profiles",
    "notifications": "notifications",
}


async def route_change(cache: LocalTTLCache, payload: dict[str, Any]) -> Optional[str]:
    """Invalidate the cache key affected by a change payload; returns that key."""
    table = payload.get("table", "")
    key = TABLE_KEYS.get(table)
    if key is None:
        _log.debug("ignoring change on table %r", table)
        return None
    await cache.invalidate(key)
    return key
