"""FastAPI server exposing the ranked feed, feed writes and cache controls."""
import asyncio
import json
import logging
import os

from dotenv import load_dotenv

load_dotenv()
from typing import Any, AsyncGenerator, Literal, Optional

import httpx
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from glowfeed import config
from glowfeed.cache import LocalTTLCache, Storage, make_storage
from glowfeed.feed import FeedService
from glowfeed.models import RankedPost
from glowfeed.moderation import ContentRejectedError
from glowfeed.realtime import TABLE_KEYS, route_change
from glowfeed.sources import RestSource

_log = logging.getLogger(__name__)

app = FastAPI(title="glowfeed API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173", "capacitor://localhost"],
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)

# ── Shared collaborators ─────────────────────────────────────────────────────
# Created lazily so a missing SUPABASE_URL fails at request time, not import.

_storage: Optional[Storage] = None
_source: Optional[RestSource] = None


def _get_storage() -> Storage:
    global _storage
    if _storage is None:
        _storage = make_storage()
    return _storage


def _get_source() -> RestSource:
    global _source
    if _source is None:
        if not config.SUPABASE_URL:
            raise HTTPException(status_code=503, detail="SUPABASE_URL not set")
        _source = RestSource(config.SUPABASE_URL, config.SUPABASE_KEY)
    return _source


# ── Per-viewer services ──────────────────────────────────────────────────────
# Keyed by user_id; each viewer's cache entries live under their own prefix.

_services: dict[str, FeedService] = {}
_service_locks: dict[str, asyncio.Lock] = {}


async def get_service(user_id: str) -> FeedService:
    # Concurrent first requests for a viewer share one init()
    async with _service_locks.setdefault(user_id, asyncio.Lock()):
        if user_id not in _services:
            cache = LocalTTLCache(_get_storage(), prefix=f"{user_id}:prefetched_")
            service = FeedService(cache, _get_source(), user_id)
            await service.init()
            _services[user_id] = service
    return _services[user_id]


@app.on_event("shutdown")
async def _dispose_services() -> None:
    global _source
    for service in list(_services.values()):
        await service.dispose()
    _services.clear()
    _service_locks.clear()
    if _source is not None:
        await _source.aclose()
        _source = None


def _dump_ranked(ranked: list[RankedPost]) -> list[dict]:
    return [r.model_dump(mode="json") for r in ranked]


def _upstream_error(exc: Exception) -> HTTPException:
    _log.error("upstream request failed: %s", exc)
    return HTTPException(status_code=502, detail=f"Upstream error: {exc}")


# ── Endpoints ────────────────────────────────────────────────────────────────

class ConnectionStatusRequest(BaseModel):
    status: Literal["pending", "accepted", "rejected"]


class ConnectionRequest(BaseModel):
    user_id: str


class CreatePostRequest(BaseModel):
    content: Optional[str] = Field(default=None, max_length=2000)
    type: Literal["analysis", "before_after"] = "analysis"
    analysis_id: Optional[str] = None
    before_analysis_id: Optional[str] = None
    after_analysis_id: Optional[str] = None


class ReactionRequest(BaseModel):
    type: Literal["like", "helpful", "insightful"]


class CommentRequest(BaseModel):
    content: str = Field(max_length=1000)


@app.get("/api/health")
def health():
    """Check that required env vars are set."""
    if not config.SUPABASE_URL:
        raise HTTPException(status_code=503, detail="SUPABASE_URL not set")
    return {"status": "ok", "cache_backend": os.getenv("CACHE_BACKEND", "memory")}


@app.get("/api/users/{user_id}/feed")
async def get_feed(user_id: str):
    """Return the viewer's feed, highest score first."""
    service = await get_service(user_id)
    try:
        ranked = await service.ranked_feed()
    except httpx.HTTPError as exc:
        raise _upstream_error(exc)
    return _dump_ranked(ranked)


@app.get("/api/users/{user_id}/feed/stream")
async def stream_feed(user_id: str):
    """Stream SSE events: the cached ranking (if any), then the fresh one."""
    service = await get_service(user_id)

    async def _generate() -> AsyncGenerator[dict, None]:
        queue: asyncio.Queue = asyncio.Queue()

        async def _run() -> None:
            try:
                ranked = await service.ranked_feed(
                    on_data=lambda stale: queue.put_nowait(("stale", stale))
                )
                queue.put_nowait(("result", ranked))
            except Exception as exc:
                queue.put_nowait(("error", exc))

        task = asyncio.create_task(_run())
        try:
            while True:
                event, payload = await queue.get()
                if event == "error":
                    yield {"event": "error", "data": json.dumps({"error": str(payload)})}
                    break
                yield {"event": event, "data": json.dumps(_dump_ranked(payload), ensure_ascii=False)}
                if event == "result":
                    break
        finally:
            await task

    return EventSourceResponse(_generate())


@app.post("/api/users/{user_id}/connections/{connection_id}")
async def set_connection_status(user_id: str, connection_id: str, req: ConnectionStatusRequest):
    """Accept or reject a connection; returns the reconciled connection list."""
    service = await get_service(user_id)
    try:
        connections = await service.set_connection_status(connection_id, req.status)
    except httpx.HTTPError as exc:
        raise _upstream_error(exc)
    return [c.model_dump(mode="json") for c in connections]


@app.post("/api/users/{user_id}/connections")
async def request_connection(user_id: str, req: ConnectionRequest):
    """Send a pending connection request to another user."""
    service = await get_service(user_id)
    try:
        return await service.request_connection(req.user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except httpx.HTTPError as exc:
        raise _upstream_error(exc)


@app.delete("/api/users/{user_id}/connections/with/{other_id}")
async def remove_connection(user_id: str, other_id: str):
    service = await get_service(user_id)
    try:
        removed = await service.remove_connection(other_id)
    except httpx.HTTPError as exc:
        raise _upstream_error(exc)
    if not removed:
        raise HTTPException(status_code=404, detail="Connection not found")
    return {"removed": removed}


@app.post("/api/users/{user_id}/notifications/read")
async def mark_all_notifications_read(user_id: str):
    service = await get_service(user_id)
    try:
        return {"updated": await service.mark_all_notifications_read()}
    except httpx.HTTPError as exc:
        raise _upstream_error(exc)


@app.post("/api/users/{user_id}/notifications/{notification_id}/read")
async def mark_notification_read(user_id: str, notification_id: str):
    service = await get_service(user_id)
    try:
        await service.mark_notification_read(notification_id)
    except httpx.HTTPError as exc:
        raise _upstream_error(exc)
    return {"read": notification_id}


@app.post("/api/users/{user_id}/posts")
async def create_post(user_id: str, req: CreatePostRequest):
    """Create a post after moderation. 422 when the content is rejected."""
    service = await get_service(user_id)
    try:
        return await service.create_post(
            req.content,
            post_type=req.type,
            analysis_id=req.analysis_id,
            before_analysis_id=req.before_analysis_id,
            after_analysis_id=req.after_analysis_id,
        )
    except ContentRejectedError as exc:
        raise HTTPException(status_code=422, detail=exc.reason)
    except httpx.HTTPError as exc:
        raise _upstream_error(exc)


@app.post("/api/users/{user_id}/posts/{post_id}/reactions")
async def react(user_id: str, post_id: str, req: ReactionRequest):
    """Toggle the viewer's reaction on a post."""
    service = await get_service(user_id)
    try:
        row = await service.react(post_id, req.type)
    except httpx.HTTPError as exc:
        raise _upstream_error(exc)
    return {"reaction": row}


@app.post("/api/users/{user_id}/posts/{post_id}/comments")
async def comment(user_id: str, post_id: str, req: CommentRequest):
    service = await get_service(user_id)
    try:
        row = await service.comment(post_id, req.content)
    except httpx.HTTPError as exc:
        raise _upstream_error(exc)
    if row is None:
        raise HTTPException(status_code=400, detail="Comment is empty")
    return row


@app.post("/api/users/{user_id}/refresh")
async def refresh(user_id: str):
    """Host foreground hook: reload whatever has gone stale."""
    service = await get_service(user_id)
    return {"refreshed": await service.refresh_if_stale()}


@app.delete("/api/users/{user_id}/cache/{key}")
async def clear_cache(user_id: str, key: str):
    service = await get_service(user_id)
    await service.cache.clear(key)
    return {"cleared": key}


@app.post("/api/realtime")
async def realtime(payload: dict[str, Any]):
    """Database change webhook: invalidate the affected key for every live viewer."""
    for service in list(_services.values()):
        await route_change(service.cache, payload)
    table = payload.get("table")
    return {"table": table, "key": TABLE_KEYS.get(table), "viewers": len(_services)}


@app.delete("/api/users/{user_id}/session")
async def end_session(user_id: str):
    """Sign-out hook: dispose the viewer's service and drop it from memory."""
    async with _service_locks.setdefault(user_id, asyncio.Lock()):
        service = _services.pop(user_id, None)
        if service is not None:
            await service.dispose()
    _service_locks.pop(user_id, None)
    return {"disposed": service is not None}
