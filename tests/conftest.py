"""Shared fakes for the managed database and the clock."""
import copy
from collections import Counter

import httpx
import pytest


class FakeClock:
    def __init__(self, t: float = 1_000.0) -> None:
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


class FakeSource:
    """In-memory stand-in for RestSource with the same coroutine methods."""

    def __init__(self, posts=None, connections=None) -> None:
        self.posts = posts or []
        self.connections = connections or []
        self.analyses: list = []
        self.profiles: list = []
        self.notifications: list = []
        self.calls: Counter = Counter()
        self.fail_fetch = False
        self.fail_updates = False
        self.status_updates: list = []

    async def _fetch(self, name: str, rows: list) -> list:
        self.calls[name] += 1
        if self.fail_fetch:
            raise httpx.ConnectError("database unreachable")
        return copy.deepcopy(rows)

    async def fetch_posts(self, limit: int = 20) -> list:
        return await self._fetch("posts", self.posts[:limit])

    async def fetch_connections(self, user_id: str) -> list:
        return await self._fetch("connections", [
            c for c in self.connections if user_id in (c["user1_id"], c["user2_id"])
        ])

    async def fetch_analyses(self, user_id: str) -> list:
        return await self._fetch("analyses", self.analyses)

    async def fetch_profiles(self, limit: int = 50) -> list:
        return await self._fetch("profiles", self.profiles)

    async def fetch_notifications(self, user_id: str) -> list:
        return await self._fetch("notifications", self.notifications)

    async def update_connection_status(self, connection_id: str, status: str) -> list:
        if self.fail_updates:
            raise httpx.ConnectError("database unreachable")
        self.status_updates.append((connection_id, status))
        updated = []
        for c in self.connections:
            if c["id"] == connection_id:
                c["status"] = status
                updated.append(copy.deepcopy(c))
        return updated

    async def create_post(self, record: dict) -> dict:
        row = {"id": f"new-{len(self.posts)}", "created_at": "2024-06-01T12:00:00+00:00",
               "comments": [], "reactions": [], **record}
        self.posts.insert(0, row)
        return row

    async def toggle_reaction(self, post_id: str, user_id: str, reaction_type: str):
        row = {"id": f"r-{post_id}-{user_id}", "type": reaction_type, "user_id": user_id}
        for p in self.posts:
            if p["id"] == post_id:
                p["reactions"].append(row)
        return row

    async def add_comment(self, post_id: str, user_id: str, content: str) -> dict:
        row = {"id": f"c-{post_id}-{user_id}", "content": content, "user_id": user_id}
        for p in self.posts:
            if p["id"] == post_id:
                p["comments"].append(row)
        return row

    async def create_connection(self, user_id: str, other_id: str) -> dict:
        row = {"id": f"c{len(self.connections) + 1}", "user1_id": user_id,
               "user2_id": other_id, "status": "pending"}
        self.connections.append(row)
        return copy.deepcopy(row)

    async def delete_connection(self, user_id: str, other_id: str) -> list:
        pair = {user_id, other_id}
        removed = [c for c in self.connections if {c["user1_id"], c["user2_id"]} == pair]
        self.connections = [c for c in self.connections if c not in removed]
        return removed

    async def mark_notification_read(self, notification_id: str) -> list:
        updated = [n for n in self.notifications if n["id"] == notification_id]
        for n in updated:
            n["read"] = True
        return updated

    async def mark_all_notifications_read(self, user_id: str) -> list:
        updated = [n for n in self.notifications if not n.get("read")]
        for n in updated:
            n["read"] = True
        return updated


def post_row(post_id, created_at="2024-06-01T11:00:00+00:00", user_id="stranger",
             reactions=0, comments=0, content=None, **extra) -> dict:
    return {
        "id": post_id,
        "user_id": user_id,
        "created_at": created_at,
        "content": content,
        "reactions": [{"id": f"{post_id}-r{i}", "type": "like"} for i in range(reactions)],
        "comments": [{"id": f"{post_id}-c{i}", "content": "nice"} for i in range(comments)],
        **extra,
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def source():
    return FakeSource(
        posts=[
            post_row("p1", created_at="2024-06-01T11:00:00+00:00", reactions=2, comments=3, content="hi"),
            post_row("p2", created_at="2024-05-30T10:00:00+00:00", user_id="friend",
                     before_analysis={"id": "a1"}, after_analysis={"id": "a2"}),
            post_row("p3", created_at="2024-05-20T10:00:00+00:00"),
        ],
        connections=[
            {"id": "c1", "user1_id": "me", "user2_id": "friend", "status": "accepted"},
            {"id": "c2", "user1_id": "newbie", "user2_id": "me", "status": "pending"},
        ],
    )
