"""
Decides which episodes of a feed should be downloaded in this run.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from podcatch.core.backlog import BacklogSchedule
from podcatch.exceptions import RenderError
from podcatch.models.config import EffectiveSettings
from podcatch.models.feed import Channel, Episode
from podcatch.storage.tracker import DownloadTracker, normalize_id
from podcatch.utils.patterns import RenderBindings

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    """An episode that passed every filter, with its tracked id."""

    episode: Episode
    episode_id: str


@dataclass
class Selection:
    """The outcome of filtering one podcast's feed."""

    eligible: list[Candidate] = field(default_factory=list)  # newest first
    skipped_tracked: int = 0
    skipped_filtered: int = 0
    deferred: int = 0
    failed: list[tuple[Episode, RenderError]] = field(default_factory=list)


def render_episode_id(settings: EffectiveSettings, channel: Channel, episode: Episode) -> str:
    """
    Renders the tracked id of an episode.

    Raises:
        RenderError: If the id pattern references missing data.
    """
    bindings = RenderBindings(
        podcast_name=settings.name, channel=channel.tags, episode=episode
    )
    episode_id = normalize_id(settings.id_pattern.render(bindings))
    if not episode_id:
        raise RenderError(f"Id pattern '{settings.id_pattern}' rendered an empty id.")
    return episode_id


def select_episodes(
    settings: EffectiveSettings,
    channel: Channel,
    tracker: DownloadTracker,
    now: Optional[datetime] = None,
) -> Selection:
    """
    Filters a feed down to the episodes to download, newest first.

    Filters run in order and the first that rejects an episode decides:
    already tracked, published before ``earliest_date``, older than
    ``max_days``, not yet unlocked by the backlog. The survivors are ranked
    by publish date and cut to ``max_episodes``. When two episodes render
    the same id only the newer one is kept.
    """
    now = now or datetime.now(timezone.utc)
    selection = Selection()

    cutoff = now - timedelta(days=settings.max_days) if settings.max_days else None
    backlog = BacklogSchedule.from_settings(
        settings, (episode.published for episode in channel.episodes)
    )

    # Newest first, so duplicates resolve in favour of the latest episode.
    ordered = sorted(channel.episodes, key=lambda e: e.published, reverse=True)
    seen_ids: set[str] = set()
    passed: list[Candidate] = []

    for episode in ordered:
        try:
            episode_id = render_episode_id(settings, channel, episode)
        except RenderError as e:
            selection.failed.append((episode, e))
            continue

        if episode_id in tracker:
            selection.skipped_tracked += 1
            continue
        if settings.earliest_date and episode.published < settings.earliest_date:
            selection.skipped_filtered += 1
            continue
        if cutoff and episode.published < cutoff:
            selection.skipped_filtered += 1
            continue
        if backlog and not backlog.is_unlocked(episode.published, now):
            selection.deferred += 1
            continue
        if episode_id in seen_ids:
            log.debug(
                f"'{settings.name}': episode '{episode.title}' has the same id "
                f"'{episode_id}' as a newer episode; skipped."
            )
            selection.skipped_filtered += 1
            continue

        seen_ids.add(episode_id)
        passed.append(Candidate(episode, episode_id))

    if settings.max_episodes is not None and len(passed) > settings.max_episodes:
        selection.skipped_filtered += len(passed) - settings.max_episodes
        passed = passed[: settings.max_episodes]

    selection.eligible = passed
    return selection
