"""Per-viewer feed service: the cache, the data source and the feed flows.

One instance per signed-in viewer, created by the host and driven through
``init()`` / ``dispose()`` and ``refresh_if_stale()`` on foreground events.
"""
from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from functools import partial
from typing import Any, Awaitable, Callable, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from glowfeed.cache import LocalTTLCache
from glowfeed.config import (
    ANALYSES_TTL_SECONDS,
    CONNECTIONS_TTL_SECONDS,
    NOTIFICATIONS_TTL_SECONDS,
    POSTS_TTL_SECONDS,
    PROFILES_TTL_SECONDS,
    SESSION_REFRESH_SECONDS,
)
from glowfeed.models import (
    Analysis,
    Connection,
    ConnectionStatus,
    ModerationResult,
    Notification,
    Post,
    Profile,
    RankedPost,
)
from glowfeed.moderation import ContentRejectedError, moderate_content
from glowfeed.ranking import DEFAULT_WEIGHTS, RankingWeights, connection_user_ids, rank_posts
from glowfeed.sources import RestSource

_log = logging.getLogger(__name__)

Moderator = Callable[[str], Awaitable[ModerationResult]]
RankedCallback = Callable[[list[RankedPost]], Any]
M = TypeVar("M", bound=BaseModel)


class FeedService:
    def __init__(
        self,
        cache: LocalTTLCache,
        source: RestSource,
        viewer_id: str,
        *,
        weights: RankingWeights = DEFAULT_WEIGHTS,
        moderator: Moderator = moderate_content,
        clock: Callable[[], float] = time.time,
        refresh_threshold: float = SESSION_REFRESH_SECONDS,
    ) -> None:
        self.cache = cache
        self.source = source
        self.viewer_id = viewer_id
        self.weights = weights
        self._moderator = moderator
        self._clock = clock
        self._refresh_threshold = refresh_threshold
        self._last_refresh: Optional[float] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    # ── lifecycle ────────────────────────────────────────────────────────────

    async def init(self) -> None:
        await self.cache.init()
        self.cache.register("posts", self.source.fetch_posts, POSTS_TTL_SECONDS)
        self.cache.register(
            "connections", partial(self.source.fetch_connections, self.viewer_id), CONNECTIONS_TTL_SECONDS
        )
        self.cache.register(
            "analyses", partial(self.source.fetch_analyses, self.viewer_id), ANALYSES_TTL_SECONDS
        )
        self.cache.register("profiles", self.source.fetch_profiles, PROFILES_TTL_SECONDS)
        self.cache.register(
            "notifications", partial(self.source.fetch_notifications, self.viewer_id), NOTIFICATIONS_TTL_SECONDS
        )
        self._unsubscribe = self.cache.on_invalidate(self._on_invalidate)
        self._last_refresh = self._clock()

    async def dispose(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self.cache.dispose()

    async def _on_invalidate(self, key: str) -> None:
        if self.cache.registered(key):
            await self.cache.reload(key)

    async def refresh_if_stale(self) -> list[str]:
        """Foreground hook. Skipped when the last refresh was under the threshold ago."""
        now = self._clock()
        if self._last_refresh is not None and now - self._last_refresh < self._refresh_threshold:
            _log.debug("refreshed %.0fs ago, skipping", now - self._last_refresh)
            return []
        self._last_refresh = now
        return await self.cache.refresh_if_stale()

    # ── reads ────────────────────────────────────────────────────────────────

    async def load_posts(self, on_data=None) -> list[Post]:
        rows = await self.cache.reload("posts", on_data)
        return [Post.model_validate(r) for r in rows]

    async def load_connections(self, on_data=None) -> list[Connection]:
        rows = await self.cache.reload("connections", on_data)
        return [Connection.model_validate(r) for r in rows]

    async def load_analyses(self) -> list[Analysis]:
        return [Analysis.model_validate(r) for r in await self.cache.reload("analyses")]

    async def load_profiles(self) -> list[Profile]:
        return [Profile.model_validate(r) for r in await self.cache.reload("profiles")]

    async def load_notifications(self) -> list[Notification]:
        return [Notification.model_validate(r) for r in await self.cache.reload("notifications")]

    @staticmethod
    def _valid_rows(model: type[M], rows: list) -> list[M]:
        """Validate rows one by one; a malformed row is logged and dropped."""
        records = []
        for row in rows:
            try:
                records.append(model.model_validate(row))
            except ValidationError as exc:
                row_id = row.get("id") if isinstance(row, dict) else None
                _log.warning("skipping malformed %s %s: %s", model.__name__, row_id, exc)
        return records

    def _rank(self, post_rows: list, connection_rows: list, now: datetime) -> list[RankedPost]:
        posts = self._valid_rows(Post, post_rows)
        connections = self._valid_rows(Connection, connection_rows)
        return rank_posts(posts, connection_user_ids(connections, self.viewer_id), now, self.weights)

    async def ranked_feed(
        self,
        now: Optional[datetime] = None,
        on_data: Optional[RankedCallback] = None,
    ) -> list[RankedPost]:
        """Rank the viewer's feed. Recomputed on every call, never cached.

        When ``on_data`` is given and posts are already cached, it receives
        the ranking of the cached data before anything is fetched.
        """
        now = now or datetime.now(timezone.utc)

        if on_data is not None:
            cached_posts = await self.cache.peek("posts")
            if cached_posts is not None:
                cached_connections = await self.cache.peek("connections")
                on_data(self._rank(
                    cached_posts.data,
                    cached_connections.data if cached_connections else [],
                    now,
                ))

        connection_rows = await self.cache.reload("connections")
        post_rows = await self.cache.reload("posts")
        return self._rank(post_rows, connection_rows, now)

    # ── writes ───────────────────────────────────────────────────────────────

    async def set_connection_status(self, connection_id: str, status: ConnectionStatus) -> list[Connection]:
        """Optimistically flip a connection's status, then commit and reconcile."""

        def patch(rows: list) -> list:
            return [{**r, "status": status} if r.get("id") == connection_id else r for r in rows]

        async def reconcile() -> list:
            await self.source.update_connection_status(connection_id, status)
            return await self.source.fetch_connections(self.viewer_id)

        try:
            rows = await self.cache.mutate("connections", patch, reconcile)
        except Exception:
            # Commit failed: the patched row is unconfirmed, refetch the real list.
            await self.cache.invalidate("connections")
            raise
        return [Connection.model_validate(r) for r in rows]

    async def create_post(
        self,
        content: Optional[str] = None,
        *,
        post_type: str = "analysis",
        analysis_id: Optional[str] = None,
        before_analysis_id: Optional[str] = None,
        after_analysis_id: Optional[str] = None,
    ) -> dict:
        """Moderate, insert and invalidate the cached posts.

        Raises ContentRejectedError when moderation refuses the text.
        """
        text = (content or "").strip()
        if text:
            verdict = await self._moderator(text)
            if not verdict.is_acceptable:
                _log.info("post by %s rejected: %s", self.viewer_id, verdict.reason)
                raise ContentRejectedError(verdict.reason)

        record: dict[str, Any] = {"user_id": self.viewer_id, "type": post_type, "content": text or None}
        for field, value in (
            ("analysis_id", analysis_id),
            ("before_analysis_id", before_analysis_id),
            ("after_analysis_id", after_analysis_id),
        ):
            if value is not None:
                record[field] = value

        row = await self.source.create_post(record)
        await self.cache.invalidate("posts")
        return row

    async def react(self, post_id: str, reaction_type: str) -> Optional[dict]:
        row = await self.source.toggle_reaction(post_id, self.viewer_id, reaction_type)
        await self.cache.invalidate("posts")
        return row

    async def comment(self, post_id: str, content: str) -> Optional[dict]:
        text = content.strip()
        if not text:
            return None
        row = await self.source.add_comment(post_id, self.viewer_id, text)
        await self.cache.invalidate("posts")
        return row

    async def request_connection(self, user_id: str) -> dict:
        """Send a pending connection request from the viewer to ``user_id``."""
        if user_id == self.viewer_id:
            raise ValueError("cannot connect to yourself")
        row = await self.source.create_connection(self.viewer_id, user_id)
        await self.cache.invalidate("connections")
        return row

    async def remove_connection(self, user_id: str) -> int:
        """Delete the connection with ``user_id`` in either direction. Returns rows removed."""
        rows = await self.source.delete_connection(self.viewer_id, user_id)
        await self.cache.invalidate("connections")
        return len(rows)

    # ── notifications ────────────────────────────────────────────────────────

    async def mark_notification_read(self, notification_id: str) -> None:
        await self.source.mark_notification_read(notification_id)
        await self.cache.invalidate("notifications")

    async def mark_all_notifications_read(self) -> int:
        rows = await self.source.mark_all_notifications_read(self.viewer_id)
        await self.cache.invalidate("notifications")
        return len(rows)
