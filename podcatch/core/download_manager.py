"""
The main orchestrator: fetches every podcast's feed, filters its episodes and
manages the download queue.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from rich.markup import escape

from podcatch.api import FeedClient
from podcatch.cli.progress_manager import ProgressManager
from podcatch.exceptions import PodcatchError, RenderError, TrackerError
from podcatch.media import Downloader, Tagger
from podcatch.models.config import DEFAULT_TRACKER_FILENAME, EffectiveSettings, RunConfig
from podcatch.models.feed import Channel
from podcatch.models.stats import DownloadStats
from podcatch.storage.tracker import TrackerRegistry
from podcatch.utils.path import (
    episode_extension,
    episode_filename,
    sanitize_component,
    to_path,
)
from podcatch.utils.patterns import RenderBindings
from podcatch.utils.structured_logger import EpisodeLogger, SessionLogger

from .eligibility import Selection, select_episodes
from .episode_processor import DownloadTask, EpisodeProcessor

log = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Everything a sync run produced."""

    downloaded: list[Path] = field(default_factory=list)
    stats: DownloadStats = field(default_factory=DownloadStats)
    errors: dict[str, PodcatchError] = field(default_factory=dict)
    duration: float = 0.0
    timed_out: bool = False

    @property
    def exit_code(self) -> int:
        return 1 if self.errors or self.timed_out or self.stats.has_failures else 0


def podcast_directory(settings: EffectiveSettings, channel: Optional[Channel] = None) -> Path:
    """
    Renders the podcast's download directory.

    Raises:
        RenderError: If the template references missing channel data.
    """
    bindings = RenderBindings(
        podcast_name=settings.name, channel=channel.tags if channel else None
    )
    return to_path(settings.download_path.render(bindings, transform=sanitize_component))


def tracker_location(
    settings: EffectiveSettings,
    download_dir: Path,
    channel: Optional[Channel] = None,
) -> Path:
    """The ledger file for a podcast: ``tracker_path`` or a file in its download directory."""
    if settings.tracker_path is None:
        return download_dir / DEFAULT_TRACKER_FILENAME
    bindings = RenderBindings(
        podcast_name=settings.name, channel=channel.tags if channel else None
    )
    return to_path(settings.tracker_path.render(bindings, transform=sanitize_component))


class DownloadManager:
    """Orchestrates the entire sync process."""

    def __init__(
        self,
        run_config: RunConfig,
        feed_client: Optional[FeedClient] = None,
        downloader: Optional[Downloader] = None,
        tagger: Optional[Tagger] = None,
        progress_manager: Optional[ProgressManager] = None,
        episode_logger: Optional[EpisodeLogger] = None,
        session_logger: Optional[SessionLogger] = None,
    ):
        self.run_config = run_config
        self.feed_client = feed_client or FeedClient(
            max_attempts=run_config.max_attempts, max_workers=run_config.max_workers
        )
        self.stats = DownloadStats()
        self.progress_manager = progress_manager
        self.processor = EpisodeProcessor(
            run_config,
            self.stats,
            downloader
            or Downloader(
                max_attempts=run_config.max_attempts,
                max_workers=run_config.max_workers,
            ),
            tagger or Tagger(),
            progress_manager,
            episode_logger,
        )
        self.session_logger = session_logger
        self.trackers = TrackerRegistry()
        self.semaphore = asyncio.Semaphore(run_config.max_workers)
        self._result = SyncResult(stats=self.stats)

    async def sync(
        self,
        podcasts: list[EffectiveSettings],
        now: Optional[datetime] = None,
    ) -> SyncResult:
        """
        Syncs every podcast concurrently. A failing podcast is recorded in
        the result and never stops the others.
        """
        start = time.monotonic()
        now = now or datetime.now(timezone.utc)
        if self.session_logger:
            self.session_logger.session_started(len(podcasts), self.run_config.max_workers)

        try:
            await asyncio.gather(
                *(self._process_podcast(settings, now) for settings in podcasts)
            )
        finally:
            self._result.duration = time.monotonic() - start
            if self.session_logger:
                self.session_logger.session_completed(
                    self._result.duration,
                    self.stats.episodes_downloaded,
                    self.stats.episodes_failed,
                    self.stats.total_size_downloaded / (1024 * 1024),
                )
        return self._result

    @property
    def result(self) -> SyncResult:
        """The result so far; complete once ``sync`` returns."""
        return self._result

    def record_podcast_error(self, name: str, error: PodcatchError) -> None:
        self._result.errors[name] = error
        self.stats.podcasts_failed += 1
        if self.session_logger:
            self.session_logger.podcast_failed(name, str(error))
        if self.progress_manager:
            self.progress_manager.podcast_finished(failed=True)
        log.error(f"[red]✗ {escape(name)}: {escape(str(error))}[/red]")

    async def _process_podcast(self, settings: EffectiveSettings, now: datetime) -> None:
        try:
            channel = await self.feed_client.fetch(settings.url)
            download_dir = podcast_directory(settings, channel)
            tracker = self.trackers.get(tracker_location(settings, download_dir, channel))
        except PodcatchError as e:
            self.record_podcast_error(settings.name, e)
            return

        selection = select_episodes(settings, channel, tracker, now)
        self._record_selection(settings, selection)

        tasks = self._build_tasks(settings, channel, download_dir, tracker, selection)
        if tasks:
            log.info(
                f"[bold]{escape(settings.name)}[/bold]: {len(tasks)} new "
                f"episode{'s' if len(tasks) != 1 else ''}"
            )
        else:
            log.debug(f"'{settings.name}': nothing new.")

        aborted = asyncio.Event()
        running = [asyncio.create_task(self._run_task(task, aborted)) for task in tasks]
        try:
            await asyncio.gather(*running)
        except TrackerError as e:
            for pending in running:
                pending.cancel()
            await asyncio.gather(*running, return_exceptions=True)
            self._collect(running)
            self.record_podcast_error(settings.name, e)
            return

        self._collect(running)
        self.stats.podcasts_synced += 1
        if self.progress_manager:
            self.progress_manager.podcast_finished()

    async def _run_task(self, task: DownloadTask, aborted: asyncio.Event) -> Optional[Path]:
        async with self.semaphore:
            if aborted.is_set():
                return None
            try:
                return await self.processor.process_episode(task)
            except TrackerError:
                aborted.set()
                raise

    def _collect(self, running: list[asyncio.Task]) -> None:
        for done in running:
            if done.done() and not done.cancelled() and done.exception() is None:
                if (path := done.result()) is not None:
                    self._result.downloaded.append(path)

    def _record_selection(self, settings: EffectiveSettings, selection: Selection) -> None:
        self.stats.episodes_skipped_tracked += selection.skipped_tracked
        self.stats.episodes_skipped_filtered += selection.skipped_filtered
        self.stats.episodes_deferred_backlog += selection.deferred
        for episode, error in selection.failed:
            self.stats.episodes_failed += 1
            log.error(
                f"  [red]✗ Failed:[/] {escape(settings.name)} - "
                f"{escape(episode.title)} ({escape(str(error))})"
            )
        if self.session_logger:
            self.session_logger.podcast_completed(
                settings.name,
                len(selection.eligible),
                selection.skipped_tracked + selection.skipped_filtered,
                selection.deferred,
            )

    def _build_tasks(
        self,
        settings: EffectiveSettings,
        channel: Channel,
        download_dir: Path,
        tracker,
        selection: Selection,
    ) -> list[DownloadTask]:
        """Renders target paths. Of two episodes with the same path only the newer is kept."""
        tasks: list[DownloadTask] = []
        seen_paths: set[Path] = set()
        for candidate in selection.eligible:
            episode = candidate.episode
            bindings = RenderBindings(
                podcast_name=settings.name, channel=channel.tags, episode=episode
            )
            try:
                rendered = settings.name_pattern.render(bindings, transform=sanitize_component)
                filename = episode_filename(
                    rendered, episode_extension(episode.url, episode.mime_type)
                )
            except (RenderError, ValueError) as e:
                self.stats.episodes_failed += 1
                log.error(
                    f"  [red]✗ Failed:[/] {escape(settings.name)} - "
                    f"{escape(episode.title)} ({escape(str(e))})"
                )
                continue

            final_path = download_dir / filename
            if final_path in seen_paths:
                log.warning(
                    f"[yellow]⚠ '{escape(episode.title)}' would overwrite "
                    f"'{escape(filename)}' from a newer episode; skipped.[/yellow]"
                )
                self.stats.episodes_skipped_filtered += 1
                continue
            seen_paths.add(final_path)

            tasks.append(
                DownloadTask(
                    settings=settings,
                    episode=episode,
                    episode_id=candidate.episode_id,
                    final_path=final_path,
                    tracker=tracker,
                    channel_tags=channel.tags,
                )
            )
        return tasks
