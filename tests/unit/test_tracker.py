"""Tests for the download tracker ledger."""

import asyncio
from pathlib import Path

import pytest

from podcatch.exceptions import TrackerError
from podcatch.storage.tracker import DownloadTracker, TrackerRegistry, parse_line


class TestParseLine:
    """Tests for reading ledger lines."""

    @pytest.mark.parametrize(
        "line,expected",
        [
            ("guid-1\t1700000000\tTitle\n", "guid-1"),
            ('guid-2 1700000000 "Some title"\n', "guid-2"),
            ("https://cdn.example.com/a.mp3\n", "https://cdn.example.com/a.mp3"),
            ("   \n", None),
        ],
    )
    def test_formats(self, line: str, expected: str | None) -> None:
        assert parse_line(line) == expected


class TestDownloadTracker:
    """Tests for DownloadTracker."""

    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        tracker = DownloadTracker.load(tmp_path / "none" / ".downloaded")
        assert len(tracker) == 0
        assert "x" not in tracker

    def test_directory_is_an_error(self, tmp_path: Path) -> None:
        with pytest.raises(TrackerError):
            DownloadTracker.load(tmp_path)

    def test_load_existing_ledger(self, tmp_path: Path) -> None:
        path = tmp_path / ".downloaded"
        path.write_text('a\t1\tA\nb 2 "B"\nc\n\n', encoding="utf-8")
        tracker = DownloadTracker.load(path)
        assert len(tracker) == 3
        assert all(episode_id in tracker for episode_id in "abc")

    async def test_commit_appends_and_survives_reload(self, tmp_path: Path) -> None:
        """Test a committed id is seen by a fresh load of the same file."""
        path = tmp_path / "nested" / ".downloaded"
        tracker = DownloadTracker.load(path)
        await tracker.commit("guid-1", "First\tEpisode")
        await tracker.commit("guid-2")

        assert "guid-1" in tracker
        lines = path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        assert lines[0].split("\t")[0] == "guid-1"
        assert lines[0].split("\t")[2] == "First Episode"

        reloaded = DownloadTracker.load(path)
        assert "guid-1" in reloaded and "guid-2" in reloaded

    async def test_ids_with_newlines_are_normalized(self, tmp_path: Path) -> None:
        tracker = DownloadTracker.load(tmp_path / ".downloaded")
        await tracker.commit("multi\nline")
        assert "multi line" in DownloadTracker.load(tmp_path / ".downloaded")

    async def test_concurrent_commits_keep_lines_intact(self, tmp_path: Path) -> None:
        path = tmp_path / ".downloaded"
        tracker = DownloadTracker.load(path)

        await asyncio.gather(
            *(tracker.commit(f"guid-{n}", f"Episode {n} " * 20) for n in range(50))
        )

        lines = path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 50
        assert all(len(line.split("\t")) == 3 for line in lines)
        assert {line.split("\t")[0] for line in lines} == {f"guid-{n}" for n in range(50)}
        assert len(DownloadTracker.load(path)) == 50

    async def test_unwritable_ledger(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("")
        tracker = DownloadTracker(blocker / ".downloaded")
        with pytest.raises(TrackerError):
            await tracker.commit("x")


class TestTrackerRegistry:
    """Tests for sharing trackers between podcasts."""

    def test_same_path_same_tracker(self, tmp_path: Path) -> None:
        registry = TrackerRegistry()
        first = registry.get(tmp_path / ".downloaded")
        second = registry.get(tmp_path / "sub" / ".." / ".downloaded")
        assert first is second

    def test_different_paths(self, tmp_path: Path) -> None:
        registry = TrackerRegistry()
        assert registry.get(tmp_path / "a") is not registry.get(tmp_path / "b")
