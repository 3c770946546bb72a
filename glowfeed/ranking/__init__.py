from glowfeed.ranking.scoring import (
    DEFAULT_WEIGHTS,
    RankingWeights,
    connection_user_ids,
    rank_posts,
    score_post,
)

__all__ = [
    "DEFAULT_WEIGHTS",
    "RankingWeights",
    "connection_user_ids",
    "rank_posts",
    "score_post",
]
