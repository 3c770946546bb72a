from glowfeed.utils.retry import with_retry

__all__ = ["with_retry"]
