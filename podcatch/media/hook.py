"""
Runs the user's download hook after an episode has been saved.
"""

import asyncio
import logging
import os
import shlex
from asyncio.subprocess import DEVNULL

log = logging.getLogger(__name__)


def build_command(hook: str, args: list[str]) -> list[str]:
    """
    Splits the configured hook like a shell would and appends the episode
    arguments. The executable may start with '~'.
    """
    command = shlex.split(hook)
    if not command:
        raise ValueError("Download hook is empty.")
    command[0] = os.path.expanduser(command[0])
    return command + args


async def run_hook(hook: str, args: list[str], timeout: float) -> bool:
    """
    Runs the hook and waits for it. Output is discarded; only the exit code
    is observed.

    Returns:
        True if the hook exited with status 0. A failure to start, a nonzero
        exit or a timeout is logged as a warning and returns False.
    """
    try:
        command = build_command(hook, args)
        process = await asyncio.create_subprocess_exec(
            *command, stdin=DEVNULL, stdout=DEVNULL, stderr=DEVNULL
        )
    except (OSError, ValueError) as e:
        log.warning(f"[yellow]⚠ Download hook '{hook}' could not be started: {e}[/yellow]")
        return False

    try:
        returncode = await asyncio.wait_for(process.wait(), timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        log.warning(
            f"[yellow]⚠ Download hook '{hook}' timed out after {timeout:.0f}s "
            "and was killed.[/yellow]"
        )
        return False
    except asyncio.CancelledError:
        process.kill()
        await process.wait()
        raise

    if returncode != 0:
        log.warning(
            f"[yellow]⚠ Download hook '{hook}' exited with status {returncode}.[/yellow]"
        )
        return False
    return True
