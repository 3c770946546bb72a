"""Local TTL cache with stale-while-revalidate loading.

Entries are stored as JSON ``{"data": [...], "timestamp": <epoch seconds>}``
under ``<prefix><key>``. An entry is fresh while ``now - timestamp < ttl``;
there is no background expiry, freshness is decided at read time.

The cache is an optimisation: storage failures are logged and read as a
miss. Only errors raised by a caller's fetch function propagate.
"""
from __future__ import annotations

import inspect
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from glowfeed.cache.storage import Storage

_log = logging.getLogger(__name__)

FetchFn = Callable[[], Awaitable[list]]
DataCallback = Callable[[list], Any]
InvalidationListener = Callable[[str], Any]


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass
class CacheEntry:
    key: str
    data: list
    timestamp: float

    def age(self, now: float) -> float:
        return now - self.timestamp

    def is_fresh(self, ttl: float, now: float) -> bool:
        return self.age(now) < ttl


class LocalTTLCache:
    def __init__(
        self,
        storage: Storage,
        *,
        prefix: str = "prefetched_",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.storage = storage
        self.prefix = prefix
        self._clock = clock
        self._listeners: list[InvalidationListener] = []
        # key -> (fetch_fn, ttl) for refresh_if_stale()
        self._resources: dict[str, tuple[FetchFn, float]] = {}

    # ── lifecycle ────────────────────────────────────────────────────────────

    async def init(self) -> None:
        init = getattr(self.storage, "init", None)
        if init is not None:
            await _resolve(init())

    async def dispose(self) -> None:
        self._listeners.clear()
        dispose = getattr(self.storage, "dispose", None)
        if dispose is not None:
            await _resolve(dispose())

    async def __aenter__(self) -> "LocalTTLCache":
        await self.init()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.dispose()

    # ── storage access ───────────────────────────────────────────────────────

    def _storage_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def _write(self, key: str, data: list, timestamp: float) -> None:
        try:
            raw = json.dumps({"data": data, "timestamp": timestamp})
            await _resolve(self.storage.set_item(self._storage_key(key), raw))
        except Exception as exc:
            _log.warning("cache write failed (key=%s): %s", key, exc)

    async def _remove(self, key: str) -> None:
        try:
            await _resolve(self.storage.remove_item(self._storage_key(key)))
        except Exception as exc:
            _log.warning("cache remove failed (key=%s): %s", key, exc)

    # ── reads ────────────────────────────────────────────────────────────────

    async def peek(self, key: str) -> Optional[CacheEntry]:
        """Return the stored entry regardless of freshness, or None."""
        try:
            raw = await _resolve(self.storage.get_item(self._storage_key(key)))
        except Exception as exc:
            _log.warning("cache read failed (key=%s): %s", key, exc)
            return None
        if raw is None:
            return None

        try:
            parsed = json.loads(raw)
            data = parsed["data"]
            timestamp = float(parsed["timestamp"])
            if not isinstance(data, list):
                raise TypeError(f"expected list payload, got {type(data).__name__}")
        except (ValueError, KeyError, TypeError) as exc:
            _log.warning("discarding corrupt cache entry (key=%s): %s", key, exc)
            await self._remove(key)
            return None
        return CacheEntry(key=key, data=data, timestamp=timestamp)

    async def get(self, key: str, max_age: float) -> Optional[list]:
        """Cached payload if younger than ``max_age`` seconds. Never fetches."""
        entry = await self.peek(key)
        if entry is None or not entry.is_fresh(max_age, self._clock()):
            return None
        return entry.data

    async def load(
        self,
        key: str,
        fetch_fn: FetchFn,
        ttl: float,
        on_data: Optional[DataCallback] = None,
    ) -> list:
        """Serve from cache when fresh, otherwise fetch and store.

        Any stored entry, fresh or stale, is handed to ``on_data`` before the
        fetch is issued. A failing ``fetch_fn`` leaves the stored entry as it
        was and the error propagates.
        """
        entry = await self.peek(key)
        if entry is not None:
            if on_data is not None:
                on_data(entry.data)
            if entry.data and entry.is_fresh(ttl, self._clock()):
                _log.debug("cache hit (key=%s, age=%.1fs)", key, entry.age(self._clock()))
                return entry.data

        _log.debug("cache miss (key=%s), fetching", key)
        try:
            data = list(await fetch_fn())
        except Exception as exc:
            _log.error("fetch failed (key=%s): %s", key, exc)
            raise

        await self._write(key, data, self._clock())
        if on_data is not None:
            on_data(data)
        return data

    # ── writes ───────────────────────────────────────────────────────────────

    async def update(self, key: str, data: list) -> None:
        """Overwrite the payload immediately and stamp it as fresh."""
        await self._write(key, list(data), self._clock())

    async def clear(self, key: str) -> None:
        await self._remove(key)

    async def mutate(
        self,
        key: str,
        patch: Callable[[list], list],
        reconcile: FetchFn,
    ) -> list:
        """Apply an optimistic patch, then reconcile with the authoritative list.

        The patched list is stored at once. When ``reconcile`` resolves, its
        result replaces the patch if the two disagree. If ``reconcile`` raises,
        the patched data stays cached and the error propagates.
        """
        entry = await self.peek(key)
        current = list(entry.data) if entry is not None else []
        patched = list(patch(current))
        await self.update(key, patched)

        try:
            authoritative = list(await reconcile())
        except Exception as exc:
            _log.warning("reconcile failed (key=%s), keeping optimistic data: %s", key, exc)
            raise

        if authoritative != patched:
            _log.info("optimistic patch discarded (key=%s)", key)
        await self._write(key, authoritative, self._clock())
        return authoritative

    # ── invalidation ─────────────────────────────────────────────────────────

    def on_invalidate(self, listener: InvalidationListener) -> Callable[[], None]:
        """Register ``listener(key)``; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def invalidate(self, key: str) -> None:
        """Mark ``key`` stale, keeping its data for display, and notify listeners."""
        entry = await self.peek(key)
        if entry is not None:
            await self._write(key, entry.data, 0.0)

        for listener in list(self._listeners):
            try:
                await _resolve(listener(key))
            except Exception as exc:
                _log.warning("invalidation listener failed (key=%s): %s", key, exc)

    # ── host lifecycle ───────────────────────────────────────────────────────

    def register(self, key: str, fetch_fn: FetchFn, ttl: float) -> None:
        self._resources[key] = (fetch_fn, ttl)

    def registered(self, key: str) -> bool:
        return key in self._resources

    async def reload(self, key: str, on_data: Optional[DataCallback] = None) -> list:
        """Load a registered resource with its own fetch function and TTL."""
        fetch_fn, ttl = self._resources[key]
        return await self.load(key, fetch_fn, ttl, on_data)

    async def refresh_if_stale(self) -> list[str]:
        """Reload every registered resource that is absent, empty or stale.

        Called by the host on foreground events. Returns the refreshed keys;
        a failing resource is logged and skipped.
        """
        refreshed: list[str] = []
        for key, (fetch_fn, ttl) in list(self._resources.items()):
            entry = await self.peek(key)
            if entry is not None and entry.data and entry.is_fresh(ttl, self._clock()):
                continue
            try:
                await self.load(key, fetch_fn, ttl)
            except Exception as exc:
                _log.warning("refresh skipped (key=%s): %s", key, exc)
                continue
            refreshed.append(key)
        return refreshed
