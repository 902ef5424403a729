"""
Handles the processing of a single episode, from download to tracker commit.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from rich.markup import escape

from podcatch.cli.progress_manager import ProgressManager
from podcatch.exceptions import PodcatchError, TrackerError, TransferError
from podcatch.media import Downloader, Tagger, run_hook
from podcatch.media.downloader import partial_path_for
from podcatch.models.config import EffectiveSettings, RunConfig
from podcatch.models.feed import Episode, TagTable
from podcatch.models.stats import DownloadStats
from podcatch.storage.tracker import DownloadTracker
from podcatch.utils.path import create_dir
from podcatch.utils.patterns import RenderBindings
from podcatch.utils.structured_logger import EpisodeLogger

log = logging.getLogger(__name__)


class EpisodeState(Enum):
    CANDIDATE = "candidate"
    FILTERED = "filtered"
    ELIGIBLE = "eligible"
    FETCHING = "fetching"
    COMPLETE = "complete"
    TAGGED = "tagged"
    HOOKED = "hooked"
    TRACKED = "tracked"
    FAILED = "failed"


@dataclass
class DownloadTask:
    """An eligible episode bound to its target file and ledger."""

    settings: EffectiveSettings
    episode: Episode
    episode_id: str
    final_path: Path
    tracker: DownloadTracker
    channel_tags: Optional[TagTable] = None
    state: EpisodeState = EpisodeState.ELIGIBLE
    error: Optional[PodcatchError] = None

    @property
    def partial_path(self) -> Path:
        return partial_path_for(self.final_path)

    @property
    def podcast(self) -> str:
        return self.settings.name

    @property
    def display_title(self) -> str:
        return f"{escape(self.podcast)} - {escape(self.episode.title)}"

    def bindings(self) -> RenderBindings:
        return RenderBindings(
            podcast_name=self.podcast, channel=self.channel_tags, episode=self.episode
        )


class EpisodeProcessor:
    """
    Orchestrates the download, tagging, hook and tracker commit of one
    episode.
    """

    def __init__(
        self,
        run_config: RunConfig,
        stats: DownloadStats,
        downloader: Downloader,
        tagger: Tagger,
        progress_manager: Optional[ProgressManager] = None,
        episode_logger: Optional[EpisodeLogger] = None,
    ):
        self.run_config = run_config
        self.stats = stats
        self.downloader = downloader
        self.tagger = tagger
        self.progress_manager = progress_manager
        self.episode_logger = episode_logger

    async def process_episode(self, task: DownloadTask) -> Optional[Path]:
        """
        Manages the complete lifecycle of one episode.

        Returns:
            The path of a newly downloaded file, or None if the file was
            already on disk or the episode failed. Cancellation propagates
            and leaves the partial file for the next run.

        Raises:
            TrackerError: If the ledger cannot be written. The caller stops
                the rest of the podcast.
        """
        if task.final_path.is_file():
            return await self._adopt(task)

        task_id = None
        try:
            await self._create_directory(task)

            task.state = EpisodeState.FETCHING
            if self.episode_logger:
                self.episode_logger.episode_started(
                    task.podcast, task.episode_id, task.episode.url, str(task.final_path)
                )
            if self.progress_manager:
                task_id = self.progress_manager.add_episode_task(task.display_title)

            def on_progress(completed: int, total: Optional[int]) -> None:
                if self.progress_manager:
                    self.progress_manager.update_task_progress(task_id, completed, total)
                    self.progress_manager.update_speed(self.stats.current_speed_bps)

            result = await self.downloader.download_file(
                task.episode.url, task.final_path, self.stats, on_progress
            )
            task.state = EpisodeState.COMPLETE
            self.stats.episodes_downloaded += 1
            if result.resumed:
                self.stats.episodes_resumed += 1
            if self.episode_logger:
                self.episode_logger.episode_completed(
                    task.podcast,
                    task.episode_id,
                    str(result.path),
                    result.size,
                    result.resumed_from,
                )

            await self._tag(task)
            task.state = EpisodeState.TAGGED

            await self._run_hook(task)
            task.state = EpisodeState.HOOKED

            await task.tracker.commit(task.episode_id, task.episode.title)
            task.state = EpisodeState.TRACKED

            if self.progress_manager:
                self.progress_manager.remove_task(task_id, success=True)
            log.info(f"  [green]✓ Downloaded:[/] {task.display_title}")
            return task.final_path

        except TrackerError as e:
            self._fail(task, e)
            if self.progress_manager:
                self.progress_manager.remove_task(task_id, success=False)
            raise
        except PodcatchError as e:
            self._fail(task, e)
            if self.progress_manager:
                self.progress_manager.remove_task(task_id, success=False)
            if self.episode_logger:
                self.episode_logger.episode_failed(task.podcast, task.episode_id, str(e))
            log.error(
                f"  [red]✗ Failed:[/] {task.display_title} ({escape(str(e))})",
                exc_info=log.getEffectiveLevel() == logging.DEBUG,
            )
            return None
        except asyncio.CancelledError:
            if self.progress_manager:
                self.progress_manager.remove_task(task_id, success=False)
            raise

    async def _adopt(self, task: DownloadTask) -> None:
        """Records a file that is already on disk without fetching it again."""
        try:
            await task.tracker.commit(task.episode_id, task.episode.title)
        except TrackerError as e:
            self._fail(task, e)
            raise
        task.state = EpisodeState.TRACKED
        self.stats.episodes_adopted += 1
        log.info(
            f"  [yellow]○ Already on disk:[/] [dim]{escape(task.final_path.name)}[/dim]"
        )
        return None

    async def _create_directory(self, task: DownloadTask) -> None:
        directory = task.final_path.parent
        try:
            await asyncio.to_thread(create_dir, directory)
        except OSError as e:
            raise TransferError(
                f"Could not create directory '{directory}': {e.strerror or e}"
            ) from e

    def _fail(self, task: DownloadTask, error: PodcatchError) -> None:
        task.state = EpisodeState.FAILED
        task.error = error
        self.stats.episodes_failed += 1

    async def _tag(self, task: DownloadTask) -> None:
        templates = task.settings.id3_tags
        if not templates or not self.tagger.can_tag(task.final_path):
            return
        await asyncio.to_thread(
            self.tagger.tag_file, task.final_path, templates, task.bindings()
        )

    async def _run_hook(self, task: DownloadTask) -> None:
        hook = task.settings.download_hook
        if not hook:
            return
        args = [str(task.final_path), task.podcast, task.episode_id, task.episode.title]
        if not await run_hook(hook, args, self.run_config.hook_timeout):
            self.stats.hook_warnings += 1
            if self.episode_logger:
                self.episode_logger.hook_warning(task.podcast, task.episode_id, hook)
