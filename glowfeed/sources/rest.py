"""Async client for the managed database's REST endpoint (PostgREST dialect).

Every fetch returns the raw JSON list, which is what the local cache stores.
Reads are retried with backoff; writes are sent once.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from glowfeed.config import FEED_PAGE_SIZE, PROFILES_PAGE_SIZE
from glowfeed.utils import with_retry

_log = logging.getLogger(__name__)

_ANALYSIS_SUMMARY = "id,front_image_url,analysis_text,overall_rating"

POSTS_SELECT = ",".join([
    "*",
    "profiles(id,username,avatar_url)",
    "comments(id,content,created_at,profiles(id,username,avatar_url))",
    "reactions(id,type,user_id)",
    "analyses!posts_analysis_id_fkey(id,front_image_url,left_side_image_url,analysis_text)",
    f"before_analysis:analyses!posts_before_analysis_id_fkey({_ANALYSIS_SUMMARY})",
    f"after_analysis:analyses!posts_after_analysis_id_fkey({_ANALYSIS_SUMMARY})",
])

_RETURN_ROWS = {"Prefer": "return=representation"}


class RestSource:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        base_delay: float = 0.5,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/rest/v1",
            headers={"apikey": api_key, "Authorization": f"Bearer {api_key}"},
            timeout=15.0,
        )
        self._base_delay = base_delay

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, table: str, params: dict[str, Any]) -> list:
        async def _call() -> list:
            response = await self._client.get(f"/{table}", params=params)
            response.raise_for_status()
            return response.json()

        return await with_retry(_call, base_delay=self._base_delay)

    async def _send(
        self,
        method: str,
        table: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Any = None,
    ) -> list:
        response = await self._client.request(
            method, f"/{table}", params=params, json=json, headers=_RETURN_ROWS
        )
        response.raise_for_status()
        if not response.content:
            return []
        return response.json()

    # ── reads ────────────────────────────────────────────────────────────────

    async def fetch_posts(self, limit: int = FEED_PAGE_SIZE) -> list[dict]:
        return await self._get("posts", {
            "select": POSTS_SELECT,
            "order": "created_at.desc",
            "limit": limit,
        })

    async def fetch_connections(self, user_id: str) -> list[dict]:
        return await self._get("connections", {
            "select": "*",
            "or": f"(user1_id.eq.{user_id},user2_id.eq.{user_id})",
        })

    async def fetch_analyses(self, user_id: str) -> list[dict]:
        return await self._get("analyses", {
            "select": "*",
            "user_id": f"eq.{user_id}",
            "order": "created_at.desc",
        })

    async def fetch_profiles(self, limit: int = PROFILES_PAGE_SIZE) -> list[dict]:
        return await self._get("profiles", {"select": "*", "limit": limit})

    async def fetch_notifications(self, user_id: str) -> list[dict]:
        return await self._get("notifications", {
            "select": "*",
            "user_id": f"eq.{user_id}",
            "order": "created_at.desc",
        })

    # ── writes ───────────────────────────────────────────────────────────────

    async def update_connection_status(self, connection_id: str, status: str) -> list[dict]:
        _log.info("connection %s -> %s", connection_id, status)
        return await self._send(
            "PATCH", "connections",
            params={"id": f"eq.{connection_id}"},
            json={"status": status},
        )

    async def create_post(self, record: dict[str, Any]) -> dict:
        rows = await self._send("POST", "posts", json=record)
        return rows[0] if rows else record

    async def toggle_reaction(self, post_id: str, user_id: str, reaction_type: str) -> Optional[dict]:
        """Add a reaction, replace a different one, or remove the same one.

        Returns the inserted row, or None when the reaction was removed.
        """
        existing = await self._get("reactions", {
            "select": "*",
            "post_id": f"eq.{post_id}",
            "user_id": f"eq.{user_id}",
        })
        if existing:
            await self._send(
                "DELETE", "reactions",
                params={"post_id": f"eq.{post_id}", "user_id": f"eq.{user_id}"},
            )
            if existing[0].get("type") == reaction_type:
                return None

        rows = await self._send("POST", "reactions", json={
            "post_id": post_id,
            "user_id": user_id,
            "type": reaction_type,
        })
        return rows[0] if rows else None

    async def add_comment(self, post_id: str, user_id: str, content: str) -> dict:
        rows = await self._send("POST", "comments", json={
            "post_id": post_id,
            "user_id": user_id,
            "content": content,
        })
        return rows[0] if rows else {}

    async def create_connection(self, user_id: str, other_id: str) -> dict:
        record = {"user1_id": user_id, "user2_id": other_id, "status": "pending"}
        rows = await self._send("POST", "connections", json=record)
        return rows[0] if rows else record

    async def delete_connection(self, user_id: str, other_id: str) -> list[dict]:
        """Delete the connection between two users, whichever one requested it."""
        _log.info("removing connection %s <-> %s", user_id, other_id)
        return await self._send("DELETE", "connections", params={
            "or": (
                f"(and(user1_id.eq.{user_id},user2_id.eq.{other_id}),"
                f"and(user1_id.eq.{other_id},user2_id.eq.{user_id}))"
            ),
        })

    async def mark_notification_read(self, notification_id: str) -> list[dict]:
        return await self._send(
            "PATCH", "notifications",
            params={"id": f"eq.{notification_id}"},
            json={"read": True},
        )

    async def mark_all_notifications_read(self, user_id: str) -> list[dict]:
        return await self._send(
            "PATCH", "notifications",
            params={"user_id": f"eq.{user_id}", "read": "eq.false"},
            json={"read": True},
        )
