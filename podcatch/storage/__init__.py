"""
Storage Layer.

This package handles all data persistence: the INI configuration files and
the download tracker ledgers.
"""

from .config_manager import ConfigManager
from .tracker import DownloadTracker, TrackerRegistry

__all__ = ["ConfigManager", "DownloadTracker", "TrackerRegistry"]
