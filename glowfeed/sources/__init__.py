from glowfeed.sources.rest import RestSource

__all__ = ["RestSource"]
