"""
podcatch: a concurrent podcast downloader driven by RSS feeds and templates.
"""

__version__ = "0.4.0"

APPNAME = "podcatch"
