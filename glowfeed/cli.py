import asyncio
import json
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from glowfeed.cache import CacheEntry, LocalTTLCache, make_storage
from glowfeed.models import Connection, Post
from glowfeed.ranking import connection_user_ids, rank_posts

load_dotenv()
app = typer.Typer()
cache_app = typer.Typer(help="Inspect or clear local cache entries")
app.add_typer(cache_app, name="cache")
console = Console()


def _read_rows(path: Path) -> list:
    data = json.loads(path.read_text())
    # Accept raw cache dumps ({"data": [...], "timestamp": ...}) as well as bare lists
    if isinstance(data, dict) and "data" in data:
        data = data["data"]
    if not isinstance(data, list):
        raise typer.BadParameter(f"{path} must contain a JSON list")
    return data


def _parse_now(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    at = datetime.fromisoformat(value)
    return at if at.tzinfo else at.replace(tzinfo=timezone.utc)


@app.command()
def rank(
    posts: Path = typer.Argument(help="JSON file with a list of post records"),
    connections: Optional[Path] = typer.Option(None, "--connections", "-c", help="JSON file with connection records"),
    viewer: str = typer.Option("", "--viewer", "-v", help="Viewer user id, for the connection bonus"),
    now: Optional[str] = typer.Option(None, "--now", help="ISO timestamp to rank at (default: now, UTC)"),
    limit: int = typer.Option(20, "--limit", "-n", help="Rows to show"),
):
    try:
        post_models = [Post.model_validate(r) for r in _read_rows(posts)]
        conn_models = [Connection.model_validate(r) for r in _read_rows(connections)] if connections else []
    except json.JSONDecodeError as exc:
        console.print(f"[bold red]Error:[/] invalid JSON: {escape(str(exc))}")
        raise typer.Exit(1)
    except ValidationError as exc:
        console.print(f"[bold red]Error:[/] malformed record\n{escape(str(exc))}")
        raise typer.Exit(1)

    try:
        at = _parse_now(now)
    except ValueError:
        console.print(f"[bold red]Error:[/] --now must be an ISO timestamp, got {escape(now or '')}")
        raise typer.Exit(1)

    ranked = rank_posts(post_models, connection_user_ids(conn_models, viewer), at)

    table = Table(title=f"Feed ranked at {at.isoformat(timespec='minutes')}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Score", justify="right", style="bold green", no_wrap=True)
    table.add_column("Post", no_wrap=True)
    table.add_column("Author")
    table.add_column("Reactions", justify="right")
    table.add_column("Comments", justify="right")
    table.add_column("Posted")
    for i, r in enumerate(ranked[:limit], start=1):
        author = r.post.profiles.username if r.post.profiles else r.post.user_id
        table.add_row(
            str(i),
            f"{r.score:.1f}",
            r.post.id,
            author,
            str(len(r.post.reactions)),
            str(len(r.post.comments)),
            r.post.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


def _cache_for(user: str) -> LocalTTLCache:
    if os.getenv("CACHE_BACKEND", "memory").lower() == "memory":
        console.print("[yellow]CACHE_BACKEND=memory keeps nothing between runs; set sqlite or redis.[/]")
    prefix = f"{user}:prefetched_" if user else "prefetched_"
    return LocalTTLCache(make_storage(), prefix=prefix)


async def _peek(key: str, user: str) -> Optional[CacheEntry]:
    async with _cache_for(user) as cache:
        return await cache.peek(key)


async def _clear(key: str, user: str) -> None:
    async with _cache_for(user) as cache:
        await cache.clear(key)


@cache_app.command("show")
def cache_show(
    key: str = typer.Argument(help="Resource key, e.g. posts or connections"),
    user: str = typer.Option("", "--user", "-u", help="Viewer whose entries to read"),
):
    entry = asyncio.run(_peek(key, user))
    if entry is None:
        console.print(f"[yellow]No cache entry for[/] {key}")
        raise typer.Exit(1)
    console.print(f"[bold]{key}[/] · {len(entry.data)} items · age {entry.age(time.time()):.0f}s")
    console.print_json(json.dumps(entry.data))


@cache_app.command("clear")
def cache_clear(
    key: str = typer.Argument(help="Resource key to remove"),
    user: str = typer.Option("", "--user", "-u", help="Viewer whose entries to clear"),
):
    asyncio.run(_clear(key, user))
    console.print(f"[bold green]✓[/] Cleared [cyan]{key}[/]")
