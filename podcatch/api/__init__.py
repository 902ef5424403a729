"""
Feed Layer.

This package fetches podcast RSS feeds over HTTP and parses them into tag
tables the rest of the application consumes.
"""

from .feed_client import FeedClient, parse_feed

__all__ = ["FeedClient", "parse_feed"]
