"""
Manages the plain-text ledgers that record downloaded episode ids, one per line,
to prevent redownloading.
"""

import asyncio
import logging
import os
import re
import time
from pathlib import Path

import aiofiles

from podcatch.exceptions import TrackerError

log = logging.getLogger(__name__)

FIELD_SEPARATOR = "\t"

# Lines written by older releases: `<id> <unix time> "<title>"`.
_LEGACY_LINE = re.compile(r'^(\S+) \d+ ".*"$')


def normalize_id(episode_id: str) -> str:
    """Ids are stored on a single line with tab-separated fields."""
    return re.sub(r"[\t\r\n]+", " ", episode_id).strip()


def parse_line(line: str) -> str | None:
    """Extracts the tracked id from one ledger line."""
    line = line.rstrip("\r\n")
    if not line.strip():
        return None
    if FIELD_SEPARATOR in line:
        return line.split(FIELD_SEPARATOR, 1)[0]
    if legacy := _LEGACY_LINE.match(line):
        return legacy.group(1)
    return line


class DownloadTracker:
    """
    An append-only ledger of downloaded episode ids for one tracker file.

    The file is read once; membership tests then hit an in-memory set. Every
    commit appends and flushes a single line under a lock, so each ledger has
    exactly one writer at a time.
    """

    def __init__(self, path: Path, ids: set[str] | None = None):
        self.path = path
        self._ids: set[str] = set(ids or ())
        self._lock = asyncio.Lock()

    @classmethod
    def load(cls, path: Path) -> "DownloadTracker":
        """
        Reads a ledger from disk. A missing file is an empty ledger.

        Raises:
            TrackerError: If the path is a directory or cannot be read.
        """
        if path.is_dir():
            raise TrackerError(f"Tracker path '{path}' is a directory.")
        ids: set[str] = set()
        try:
            with open(path, encoding="utf-8") as f:
                for line in f:
                    if (episode_id := parse_line(line)) is not None:
                        ids.add(episode_id)
        except FileNotFoundError:
            log.debug(f"No tracker file at '{path}' yet.")
        except (OSError, UnicodeDecodeError) as e:
            raise TrackerError(f"Could not read tracker file '{path}': {e}") from e
        log.debug(f"Loaded {len(ids)} tracked ids from '{path}'.")
        return cls(path, ids)

    def contains(self, episode_id: str) -> bool:
        return normalize_id(episode_id) in self._ids

    def __contains__(self, episode_id: object) -> bool:
        return isinstance(episode_id, str) and self.contains(episode_id)

    def __len__(self) -> int:
        return len(self._ids)

    async def commit(self, episode_id: str, title: str = "") -> None:
        """
        Appends an id to the ledger and flushes it to disk.

        Raises:
            TrackerError: If the ledger cannot be written.
        """
        episode_id = normalize_id(episode_id)
        line = FIELD_SEPARATOR.join(
            (episode_id, str(int(time.time())), normalize_id(title))
        )
        async with self._lock:
            try:
                await asyncio.to_thread(self.path.parent.mkdir, parents=True, exist_ok=True)
                async with aiofiles.open(self.path, "a", encoding="utf-8") as f:
                    await f.write(line + "\n")
                    await f.flush()
                    await asyncio.to_thread(os.fsync, f.fileno())
            except OSError as e:
                raise TrackerError(
                    f"Could not write to tracker file '{self.path}': {e}"
                ) from e
            self._ids.add(episode_id)


class TrackerRegistry:
    """Hands out a single tracker per ledger file."""

    def __init__(self):
        self._trackers: dict[Path, DownloadTracker] = {}

    def get(self, path: Path) -> DownloadTracker:
        key = path.expanduser().resolve()
        if key not in self._trackers:
            self._trackers[key] = DownloadTracker.load(key)
        return self._trackers[key]
