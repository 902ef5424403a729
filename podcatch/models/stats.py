"""
Dataclass for tracking sync session statistics.
"""

import time
from dataclasses import dataclass, field


@dataclass
class DownloadStats:
    """Tracks statistics for a sync session, including real-time speed."""

    podcasts_synced: int = 0
    podcasts_failed: int = 0
    episodes_downloaded: int = 0
    episodes_adopted: int = 0
    episodes_skipped_tracked: int = 0
    episodes_skipped_filtered: int = 0
    episodes_deferred_backlog: int = 0
    episodes_failed: int = 0
    episodes_resumed: int = 0
    hook_warnings: int = 0
    total_size_downloaded: int = 0

    # Real-time speed calculation fields
    current_speed_bps: float = 0.0
    peak_speed_bps: float = 0.0
    _speed_samples: list[float] = field(default_factory=list, repr=False)
    _last_progress_time: float = field(default=0.0, repr=False)
    _last_progress_bytes: int = field(default=0, repr=False)

    def __post_init__(self):
        self._last_progress_time = time.monotonic()

    @property
    def has_failures(self) -> bool:
        return self.episodes_failed > 0 or self.podcasts_failed > 0

    def record_bytes(self, count: int) -> None:
        """
        Adds transferred bytes and updates the rolling speed estimate.

        Only called from the event loop thread, so no lock is needed.
        """
        self.total_size_downloaded += count
        now = time.monotonic()
        elapsed = now - self._last_progress_time

        # Update speed roughly twice per second
        if elapsed > 0.5:
            bytes_diff = self.total_size_downloaded - self._last_progress_bytes
            if bytes_diff > 0:
                self._speed_samples.append(bytes_diff / elapsed)
                # Keep a sliding window of the last 10 speed samples
                if len(self._speed_samples) > 10:
                    self._speed_samples.pop(0)
                self.current_speed_bps = sum(self._speed_samples) / len(
                    self._speed_samples
                )
                self.peak_speed_bps = max(self.peak_speed_bps, self.current_speed_bps)

            self._last_progress_time = now
            self._last_progress_bytes = self.total_size_downloaded
