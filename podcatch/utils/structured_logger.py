"""
Per-run event log: one JSON object per line, written next to the console log
so a finished sync can be inspected or post-processed.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TextIO

log = logging.getLogger(__name__)


class StructuredLogger:
    """
    Appends events to ``<log_dir>/<name>_<timestamp>.jsonl``.

    Every entry carries a UTC timestamp, its level, the event name and the
    run context. Without a ``log_dir`` events are only mirrored to the debug
    log.
    """

    def __init__(self, name: str, log_dir: Path | None = None):
        self.name = name
        self.log_path: Path | None = None
        self._file: TextIO | None = None
        self._context: dict[str, Any] = {"run_id": f"{os.getpid()}-{id(self):x}"}

        if log_dir is not None:
            log_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.log_path = log_dir / f"{name}_{stamp}.jsonl"
            self._file = open(self.log_path, "a", encoding="utf-8")  # noqa: SIM115

    def set_session_context(self, **kwargs) -> None:
        """Adds fields that are repeated in every following entry."""
        self._context.update(kwargs)

    def _write_json(self, level: str, event: str, **fields) -> None:
        if self._file is None or self._file.closed:
            return
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "event": event,
            **self._context,
            **fields,
        }
        try:
            self._file.write(json.dumps(entry, default=str) + "\n")
            self._file.flush()
        except (OSError, ValueError) as e:
            log.warning(f"Could not write to event log '{self.log_path}': {e}")

    def _log(self, level: int, event: str, **fields) -> None:
        log.debug(f"Event: {event}")
        self._write_json(logging.getLevelName(level), event, **fields)

    def debug(self, event: str, **fields) -> None:
        self._log(logging.DEBUG, event, **fields)

    def info(self, event: str, **fields) -> None:
        self._log(logging.INFO, event, **fields)

    def warning(self, event: str, **fields) -> None:
        self._log(logging.WARNING, event, **fields)

    def error(self, event: str, **fields) -> None:
        self._log(logging.ERROR, event, **fields)

    def close(self) -> None:
        if self._file is not None and not self._file.closed:
            self._file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class EpisodeLogger:
    """Specialized logger for episode events."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def episode_started(self, podcast: str, episode_id: str, url: str, path: str):
        self.logger.info(
            "episode_download_started",
            podcast=podcast,
            episode_id=episode_id,
            url=url,
            path=path,
        )

    def episode_completed(
        self, podcast: str, episode_id: str, path: str, size: int, resumed_from: int
    ):
        self.logger.info(
            "episode_download_completed",
            podcast=podcast,
            episode_id=episode_id,
            path=path,
            size_mb=round(size / (1024 * 1024), 2),
            resumed_from=resumed_from,
        )

    def episode_failed(self, podcast: str, episode_id: str, error: str):
        self.logger.error(
            "episode_download_failed",
            podcast=podcast,
            episode_id=episode_id,
            error=error,
        )

    def hook_warning(self, podcast: str, episode_id: str, hook: str):
        self.logger.warning(
            "download_hook_failed",
            podcast=podcast,
            episode_id=episode_id,
            hook=hook,
        )


class SessionLogger:
    """Specialized logger for session events."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def session_started(self, podcasts: int, max_workers: int):
        self.logger.info("session_started", podcasts=podcasts, max_workers=max_workers)

    def podcast_failed(self, podcast: str, error: str):
        self.logger.error("podcast_failed", podcast=podcast, error=error)

    def podcast_completed(
        self, podcast: str, eligible: int, skipped: int, deferred: int
    ):
        self.logger.info(
            "podcast_completed",
            podcast=podcast,
            eligible=eligible,
            skipped=skipped,
            deferred=deferred,
        )

    def session_completed(
        self,
        duration_s: float,
        downloaded: int,
        failed: int,
        total_size_mb: float,
    ):
        self.logger.info(
            "session_completed",
            duration_s=round(duration_s, 2),
            episodes_downloaded=downloaded,
            episodes_failed=failed,
            total_size_mb=round(total_size_mb, 2),
        )


def create_structured_logger(
    log_dir: Path | None = None,
) -> tuple[StructuredLogger, EpisodeLogger, SessionLogger]:
    """
    Create all structured loggers.

    Returns:
        Tuple of (base_logger, episode_logger, session_logger)
    """
    base = StructuredLogger("podcatch", log_dir=log_dir)
    return base, EpisodeLogger(base), SessionLogger(base)
