"""
Media Processing Layer.

This package is responsible for all episode file operations: resumable
downloading, ID3 tagging and running the download hook.
"""

from .downloader import Downloader
from .hook import run_hook
from .tagger import Tagger

__all__ = ["Downloader", "Tagger", "run_hook"]
