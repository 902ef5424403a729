"""
Data Models Layer.

This package contains the data structures used throughout the application:
parsed feeds, resolved settings and session statistics.
"""

from .config import EffectiveSettings, RunConfig
from .feed import Channel, Episode, TagTable
from .stats import DownloadStats

__all__ = [
    "Channel",
    "DownloadStats",
    "EffectiveSettings",
    "Episode",
    "RunConfig",
    "TagTable",
]
