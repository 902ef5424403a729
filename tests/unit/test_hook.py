"""Tests for running the download hook."""

import asyncio
import json
import os
import shlex
import sys
from pathlib import Path

import pytest

from podcatch.media.hook import build_command, run_hook


def python_hook(tmp_path: Path, body: str) -> str:
    script = tmp_path / "hook.py"
    script.write_text(f"import json, sys, time\n{body}\n", encoding="utf-8")
    return f"{shlex.quote(sys.executable)} {shlex.quote(str(script))}"


class TestBuildCommand:
    """Tests for build_command."""

    def test_splits_and_appends(self) -> None:
        assert build_command("notify --quiet", ["a b", "c"]) == ["notify", "--quiet", "a b", "c"]

    def test_expands_home(self) -> None:
        command = build_command("~/bin/hook", [])
        assert not command[0].startswith("~")

    def test_empty_hook(self) -> None:
        with pytest.raises(ValueError):
            build_command("   ", [])


class TestRunHook:
    """Tests for run_hook."""

    async def test_receives_episode_arguments(self, tmp_path: Path) -> None:
        out = tmp_path / "args.json"
        hook = python_hook(
            tmp_path, f"json.dump(sys.argv[1:], open({str(out)!r}, 'w'))"
        )
        args = ["/downloads/Show/ep.mp3", "Show", "guid-1", "Episode 1"]

        assert await run_hook(hook, args, timeout=30) is True
        assert json.loads(out.read_text()) == args

    async def test_nonzero_exit_is_a_warning(self, tmp_path: Path, caplog) -> None:
        hook = python_hook(tmp_path, "sys.exit(3)")
        assert await run_hook(hook, [], timeout=30) is False
        assert "status 3" in caplog.text

    async def test_timeout_kills_hook(self, tmp_path: Path, caplog) -> None:
        hook = python_hook(tmp_path, "time.sleep(30)")
        assert await run_hook(hook, [], timeout=0.5) is False
        assert "timed out" in caplog.text

    async def test_missing_executable(self, tmp_path: Path) -> None:
        assert await run_hook(str(tmp_path / "does-not-exist"), [], timeout=5) is False

    async def test_cancel_kills_and_reaps_hook(self, tmp_path: Path) -> None:
        pid_file = tmp_path / "pid"
        hook = python_hook(
            tmp_path,
            f"import os\nopen({str(pid_file)!r}, 'w').write(str(os.getpid()))\ntime.sleep(30)",
        )
        running = asyncio.create_task(run_hook(hook, [], timeout=60))
        for _ in range(200):
            if pid_file.is_file() and pid_file.read_text():
                break
            await asyncio.sleep(0.05)
        pid = int(pid_file.read_text())

        running.cancel()
        with pytest.raises(asyncio.CancelledError):
            await running

        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)
