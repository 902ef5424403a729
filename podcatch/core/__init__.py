"""
Core application engine for orchestrating the sync process.

The `DownloadManager` fetches feeds and filters episodes per podcast,
delegating each eligible episode to the `EpisodeProcessor`.
"""
