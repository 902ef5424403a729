"""
Backlog pacing: releases a podcast's back catalogue gradually, one episode per
interval, oldest first.
"""

from bisect import bisect_left
from datetime import datetime, timedelta
from typing import Iterable, Optional

from podcatch.models.config import EffectiveSettings


class BacklogSchedule:
    """
    Unlock times for the episodes published at or after ``start``.

    The episode at rank k (0-based, ascending publish date) unlocks at
    ``start + k * interval_days``. Episodes published before ``start`` are
    not paced at all.
    """

    def __init__(self, start: datetime, interval_days: int, pubdates: Iterable[datetime]):
        if interval_days < 1:
            raise ValueError("Backlog interval must be at least one day.")
        self.start = start
        self.interval = timedelta(days=interval_days)
        self._paced = sorted(d for d in pubdates if d >= start)

    @classmethod
    def from_settings(
        cls, settings: EffectiveSettings, pubdates: Iterable[datetime]
    ) -> Optional["BacklogSchedule"]:
        """Returns ``None`` when the podcast has no backlog configured."""
        if not settings.backlog_active:
            return None
        return cls(settings.backlog_start, settings.backlog_interval, pubdates)

    def rank(self, pubdate: datetime) -> Optional[int]:
        if pubdate < self.start:
            return None
        return bisect_left(self._paced, pubdate)

    def unlock_time(self, pubdate: datetime) -> Optional[datetime]:
        rank = self.rank(pubdate)
        if rank is None:
            return None
        return self.start + rank * self.interval

    def is_unlocked(self, pubdate: datetime, now: datetime) -> bool:
        unlock = self.unlock_time(pubdate)
        return unlock is None or now >= unlock

    def __len__(self) -> int:
        return len(self._paced)


def is_unlocked(
    backlog_start: Optional[datetime],
    interval_days: Optional[int],
    episode_pubdate: datetime,
    now: datetime,
    pubdates: Iterable[datetime],
) -> bool:
    """
    Whether an episode may be downloaded under backlog pacing.

    ``pubdates`` are the publish dates of every episode in the feed; they fix
    the episode's rank. Pacing is inactive if start or interval is unset.
    """
    if backlog_start is None or interval_days is None:
        return True
    schedule = BacklogSchedule(backlog_start, interval_days, pubdates)
    return schedule.is_unlocked(episode_pubdate, now)
