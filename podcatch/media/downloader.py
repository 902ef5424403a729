"""
Handles the low-level downloading of episode files over HTTP, writing to a
partial file that later runs can resume from.
"""

import asyncio
import json
import logging
import os
import re
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import aiofiles
import aiohttp

from podcatch import APPNAME, __version__
from podcatch.exceptions import TransferError
from podcatch.models.stats import DownloadStats
from podcatch.utils.path import PARTIAL_SUFFIX, VALIDATOR_SUFFIX

log = logging.getLogger(__name__)

CHUNK_SIZE = 262144  # 256 KB
USER_AGENT = f"{APPNAME}/{__version__}"

_connection_pool: aiohttp.ClientSession | None = None
_pool_lock = asyncio.Lock()

ProgressCallback = Callable[[int, int | None], None]


async def get_connection_pool(max_workers: int = 4) -> aiohttp.ClientSession:
    """
    Gets or creates a shared aiohttp ClientSession for feeds and downloads.

    This function ensures that only one connection pool is created for the
    lifetime of the application run.

    Args:
        max_workers: Maximum concurrent transfers (should match config.max_workers).
    """
    global _connection_pool
    async with _pool_lock:
        if _connection_pool and not _connection_pool.closed:
            return _connection_pool

        connector = aiohttp.TCPConnector(
            limit=max_workers * 2,  # Total connections, feeds included
            limit_per_host=max_workers,
            ttl_dns_cache=600,  # 10 minutes
            keepalive_timeout=30,
            enable_cleanup_closed=True,
        )
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=15, sock_read=90)
        _connection_pool = aiohttp.ClientSession(
            connector=connector,
            timeout=timeout,
            headers={"User-Agent": USER_AGENT},
        )
        log.debug(f"Created connection pool with limit_per_host={max_workers}")

    return _connection_pool


async def close_connection_pool() -> None:
    """Closes the shared global connection pool."""
    global _connection_pool
    async with _pool_lock:
        if _connection_pool and not _connection_pool.closed:
            await _connection_pool.close()
            _connection_pool = None
            log.debug("Shared connection pool closed.")


def partial_path_for(final_path: Path) -> Path:
    """The temporary file a transfer writes to, next to its final path."""
    return final_path.with_name(final_path.name + PARTIAL_SUFFIX)


def validator_path_for(final_path: Path) -> Path:
    return final_path.with_name(final_path.name + VALIDATOR_SUFFIX)


def _content_range_start(header: str | None) -> int | None:
    if not header:
        return None
    match = re.match(r"bytes\s+(\d+)-\d+/(?:\d+|\*)", header.strip())
    return int(match.group(1)) if match else None


def _strong_validator(headers) -> str | None:
    """
    A validator usable in If-Range. Weak ETags are not allowed there, so fall
    back to Last-Modified.
    """
    etag = headers.get("ETag")
    if etag and not etag.startswith("W/"):
        return etag
    return headers.get("Last-Modified")


@dataclass(frozen=True)
class TransferResult:
    path: Path
    size: int
    resumed_from: int = 0

    @property
    def resumed(self) -> bool:
        return self.resumed_from > 0


class Downloader:
    """
    A file downloader with retry logic and resumable partial files.

    A transfer writes to ``<final>.partial`` and records the server's
    validator in ``<final>.partial.json``. A later attempt with the same URL
    resumes with a Range request guarded by If-Range, so a changed resource
    is fetched from the start instead of being spliced onto stale bytes. The
    partial file only replaces the final path once it is complete, and is
    left on disk after a failure.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.5,
        session: aiohttp.ClientSession | None = None,
        max_workers: int = 4,
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_workers = max_workers
        self._session = session

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is not None:
            return self._session
        return await get_connection_pool(self.max_workers)

    async def download_file(
        self,
        url: str,
        final_path: Path,
        stats: DownloadStats | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> TransferResult:
        """
        Downloads a URL to ``final_path``, resuming a previous partial file.

        Raises:
            TransferError: When every attempt failed or the file cannot be
                written locally. The partial file stays.
        """
        partial = partial_path_for(final_path)
        last_exception: Exception | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                resumed_from = await self._transfer(url, final_path, stats, on_progress)
                size = partial.stat().st_size
                await asyncio.to_thread(os.replace, partial, final_path)
                validator_path_for(final_path).unlink(missing_ok=True)
                return TransferResult(final_path, size, resumed_from)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_exception = e
                log.debug(
                    f"Download attempt {attempt}/{self.max_attempts} for "
                    f"'{final_path.name}' failed: {e!r}. Retrying..."
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.base_delay * (2 ** (attempt - 1)))
            except OSError as e:
                # Local disk errors are not retried.
                raise TransferError(
                    f"Could not write '{partial.name}': {e.strerror or e}"
                ) from e

        raise TransferError(
            f"Download of '{url}' failed after {self.max_attempts} attempts: "
            f"{last_exception}"
        ) from last_exception

    def _resume_offset(self, url: str, final_path: Path) -> tuple[int, str | None]:
        """Returns the byte offset to resume from and the stored validator."""
        partial = partial_path_for(final_path)
        if not partial.is_file():
            return 0, None
        offset = partial.stat().st_size
        try:
            with open(validator_path_for(final_path), encoding="utf-8") as f:
                saved = json.load(f)
        except (OSError, ValueError):
            saved = {}

        validator = saved.get("validator") if saved.get("url") == url else None
        if offset and not validator:
            log.debug(
                f"Partial file for '{final_path.name}' has no usable validator; "
                "restarting from the beginning."
            )
            return 0, None
        return offset, validator

    def _discard_partial(self, final_path: Path) -> None:
        partial_path_for(final_path).unlink(missing_ok=True)
        validator_path_for(final_path).unlink(missing_ok=True)

    def _save_validator(self, url: str, final_path: Path, validator: str | None) -> None:
        path = validator_path_for(final_path)
        if validator is None:
            path.unlink(missing_ok=True)
            return
        with open(path, "w", encoding="utf-8") as f:
            json.dump({"url": url, "validator": validator}, f)

    async def _transfer(
        self,
        url: str,
        final_path: Path,
        stats: DownloadStats | None,
        on_progress: ProgressCallback | None,
        allow_restart: bool = True,
    ) -> int:
        offset, validator = self._resume_offset(url, final_path)
        headers = {"Accept-Encoding": "identity"}
        if offset and validator:
            headers["Range"] = f"bytes={offset}-"
            headers["If-Range"] = validator

        session = await self._get_session()
        async with session.get(url, headers=headers, allow_redirects=True) as response:
            if response.status == 416 and offset and allow_restart:
                log.debug(f"Server rejected resume range for '{final_path.name}'.")
                self._discard_partial(final_path)
                return await self._transfer(
                    url, final_path, stats, on_progress, allow_restart=False
                )
            response.raise_for_status()

            if response.status == 206:
                start = _content_range_start(response.headers.get("Content-Range"))
                if start != offset:
                    if not allow_restart:
                        raise aiohttp.ClientPayloadError(
                            f"Unexpected Content-Range for '{final_path.name}'."
                        )
                    log.debug(
                        f"Content-Range mismatch for '{final_path.name}' "
                        f"(wanted {offset}, got {start}); restarting."
                    )
                    self._discard_partial(final_path)
                    return await self._transfer(
                        url, final_path, stats, on_progress, allow_restart=False
                    )
                mode = "ab"
                log.info(f"  [dim]Resuming '{final_path.name}' at {offset} bytes[/dim]")
            else:
                if offset:
                    log.debug(f"'{final_path.name}' changed upstream; restarting.")
                offset = 0
                mode = "wb"
                await asyncio.to_thread(
                    self._save_validator, url, final_path, _strong_validator(response.headers)
                )

            length = response.headers.get("Content-Length")
            expected = offset + int(length) if length and length.isdigit() else None
            written = offset

            async with aiofiles.open(partial_path_for(final_path), mode) as f:
                async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                    await f.write(chunk)
                    written += len(chunk)
                    if stats:
                        stats.record_bytes(len(chunk))
                    if on_progress:
                        on_progress(written, expected)

            if expected is not None and written != expected:
                raise aiohttp.ClientPayloadError(
                    f"Transfer of '{final_path.name}' ended at {written} of "
                    f"{expected} bytes."
                )
        return offset
