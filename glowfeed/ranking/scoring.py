"""Feed ranking: scores posts by engagement, recency and relationship to the viewer.

Pure functions only. ``now`` is always supplied by the caller so a ranking
pass is reproducible for a fixed input.
"""
from datetime import datetime
from typing import Iterable

from pydantic import BaseModel

from glowfeed.models import Connection, Post, RankedPost, as_utc

_SECONDS_PER_HOUR = 3600


class RankingWeights(BaseModel):
    reaction: float = 10
    comment: float = 15
    recency_max: float = 100
    recency_per_hour: float = 1
    connection: float = 50
    analysis: float = 20
    before_after: float = 30
    content: float = 10


DEFAULT_WEIGHTS = RankingWeights()


def connection_user_ids(connections: Iterable[Connection], viewer_id: str) -> set[str]:
    """Return the other party of every accepted connection involving the viewer."""
    ids: set[str] = set()
    for conn in connections:
        if conn.status != "accepted":
            continue
        if conn.user1_id == viewer_id:
            ids.add(conn.user2_id)
        elif conn.user2_id == viewer_id:
            ids.add(conn.user1_id)
    return ids


def score_post(
    post: Post,
    connection_ids: set[str],
    now: datetime,
    weights: RankingWeights = DEFAULT_WEIGHTS,
) -> float:
    # Naive ``now`` is read as UTC, like naive record timestamps
    hours_since_posted = (as_utc(now) - post.created_at).total_seconds() / _SECONDS_PER_HOUR

    score = weights.reaction * len(post.reactions)
    score += weights.comment * len(post.comments)
    # Linear decay, floored at zero so old posts are never penalised
    score += max(0.0, weights.recency_max - weights.recency_per_hour * hours_since_posted)

    if post.user_id in connection_ids:
        score += weights.connection
    if post.analyses is not None:
        score += weights.analysis
    if post.before_analysis is not None and post.after_analysis is not None:
        score += weights.before_after
    if post.content and post.content.strip():
        score += weights.content
    return score


def rank_posts(
    posts: Iterable[Post],
    connection_ids: set[str],
    now: datetime,
    weights: RankingWeights = DEFAULT_WEIGHTS,
) -> list[RankedPost]:
    """Score every post and sort highest first.

    The sort is stable: posts with equal scores keep their input order
    (normally reverse-chronological, as fetched).
    """
    ranked = [
        RankedPost(post=post, score=score_post(post, connection_ids, now, weights))
        for post in posts
    ]
    return sorted(ranked, key=lambda r: r.score, reverse=True)
