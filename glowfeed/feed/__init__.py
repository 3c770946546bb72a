from glowfeed.feed.service import FeedService

__all__ = ["FeedService"]
