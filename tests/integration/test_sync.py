"""End-to-end sync runs against a local feed and media server."""

import asyncio
import json
import os
import shlex
import sys
from pathlib import Path

import mutagen.id3 as id3
import pytest

from podcatch.api import FeedClient
from podcatch.core.download_manager import DownloadManager
from podcatch.core.episode_processor import DownloadTask, EpisodeProcessor, EpisodeState
from podcatch.exceptions import TrackerError
from podcatch.media import Downloader, Tagger
from podcatch.media.downloader import partial_path_for
from podcatch.models.config import RunConfig
from podcatch.models.stats import DownloadStats
from podcatch.storage.tracker import DownloadTracker
from podcatch.utils.structured_logger import create_structured_logger
from tests.factories import NOW, daily_items, make_feed, make_item


@pytest.fixture
def show(media_server):
    """A feed with five daily episodes, each served by the media server."""
    items = daily_items(5, media_server.base_url)
    payloads = {}
    for n in range(1, 6):
        payloads[f"ep{n}.mp3"] = b"\xff\xfb\x90\x00" + os.urandom(20_000 + n)
        media_server.add_file(f"ep{n}.mp3", payloads[f"ep{n}.mp3"])
    media_server.feeds["show.xml"] = make_feed(items)
    return {
        "url": f"{media_server.base_url}/feeds/show.xml",
        "items": items,
        "payloads": payloads,
    }


def make_manager(http_session, **run_config) -> DownloadManager:
    return DownloadManager(
        RunConfig(**run_config),
        feed_client=FeedClient(session=http_session, base_delay=0),
        downloader=Downloader(session=http_session, base_delay=0),
    )


class TestSync:
    """Tests for DownloadManager.sync."""

    async def test_second_run_downloads_nothing(
        self, show, settings_factory, http_session, tmp_path
    ) -> None:
        """Test tracker idempotence: an unchanged feed yields no new downloads."""
        settings = settings_factory(url=show["url"])

        first = await make_manager(http_session).sync([settings], now=NOW)

        assert first.exit_code == 0
        assert len(first.downloaded) == 5
        download_dir = tmp_path / "downloads" / "Test Show"
        for path in first.downloaded:
            assert path.parent == download_dir
        newest = download_dir / "2024-06-01 Episode 5.mp3"
        assert newest.read_bytes() == show["payloads"]["ep5.mp3"]
        assert len((download_dir / ".downloaded").read_text().splitlines()) == 5

        second = await make_manager(http_session).sync([settings], now=NOW)

        assert second.downloaded == []
        assert second.stats.episodes_downloaded == 0
        assert second.stats.episodes_skipped_tracked == 5

    async def test_max_episodes_limits_run(
        self, show, settings_factory, http_session
    ) -> None:
        settings = settings_factory(url=show["url"], max_episodes="2")
        result = await make_manager(http_session).sync([settings], now=NOW)
        assert sorted(p.name for p in result.downloaded) == [
            "2024-05-31 Episode 4.mp3",
            "2024-06-01 Episode 5.mp3",
        ]
        assert result.stats.episodes_skipped_filtered == 3

    async def test_tags_and_custom_paths(
        self, show, settings_factory, http_session, tmp_path
    ) -> None:
        settings = settings_factory(
            url=show["url"],
            name_pattern="{rss::channel::title} - {guid}",
            tracker_path=str(tmp_path / "ledgers" / "{podname}.txt"),
            **{"id3.artist": "{rss::channel::itunes:author}", "id3.title": "{rss::episode::title}"},
        )
        result = await make_manager(http_session, max_workers=2).sync([settings], now=NOW)

        assert len(result.downloaded) == 5
        path = tmp_path / "downloads" / "Test Show" / "Test Show - guid-3.mp3"
        tags = id3.ID3(str(path))
        assert tags["TPE1"].text[0] == "Jane Host"
        assert tags["TIT2"].text[0] == "Episode 3"
        assert (tmp_path / "ledgers" / "Test Show.txt").is_file()

    async def test_existing_file_is_adopted(
        self, show, settings_factory, http_session, tmp_path, media_server
    ) -> None:
        """Test a file already on disk is tracked without being fetched or replaced."""
        settings = settings_factory(url=show["url"], max_episodes="1")
        target = tmp_path / "downloads" / "Test Show" / "2024-06-01 Episode 5.mp3"
        target.parent.mkdir(parents=True)
        target.write_bytes(b"mine")

        result = await make_manager(http_session).sync([settings], now=NOW)

        assert result.downloaded == []
        assert result.stats.episodes_adopted == 1
        assert target.read_bytes() == b"mine"
        assert media_server.media_requests("ep5.mp3") == []
        assert "guid-5" in DownloadTracker.load(target.parent / ".downloaded")

    async def test_failed_feed_does_not_stop_other_podcasts(
        self, show, settings_factory, http_session, media_server
    ) -> None:
        good = settings_factory(url=show["url"], max_episodes="1")
        broken = settings_factory("Broken", url=f"{media_server.base_url}/feeds/missing.xml")

        result = await make_manager(http_session, max_attempts=1).sync([broken, good], now=NOW)

        assert len(result.downloaded) == 1
        assert "Broken" in result.errors
        assert result.stats.podcasts_failed == 1
        assert result.exit_code == 1

    async def test_failed_download_is_not_tracked(
        self, show, settings_factory, http_session, media_server, tmp_path
    ) -> None:
        media_server.fail["ep5.mp3"] = 10
        settings = settings_factory(url=show["url"], max_episodes="1")

        result = await make_manager(http_session, max_attempts=2).sync([settings], now=NOW)

        assert result.stats.episodes_failed == 1
        assert result.exit_code == 1
        ledger = tmp_path / "downloads" / "Test Show" / ".downloaded"
        assert not ledger.exists() or "guid-5" not in ledger.read_text()

    async def test_hook_runs_before_commit(
        self, show, settings_factory, http_session, tmp_path
    ) -> None:
        out = tmp_path / "hook.json"
        script = tmp_path / "hook.py"
        script.write_text(
            "import json, sys\n"
            f"json.dump(sys.argv[1:], open({str(out)!r}, 'w'))\n",
            encoding="utf-8",
        )
        hook = f"{shlex.quote(sys.executable)} {shlex.quote(str(script))}"
        settings = settings_factory(url=show["url"], max_episodes="1", download_hook=hook)

        result = await make_manager(http_session).sync([settings], now=NOW)

        path, podcast, episode_id, title = json.loads(out.read_text())
        assert Path(path) == result.downloaded[0]
        assert (podcast, episode_id, title) == ("Test Show", "guid-5", "Episode 5")

    async def test_failing_hook_still_commits(
        self, show, settings_factory, http_session, tmp_path
    ) -> None:
        script = tmp_path / "hook.py"
        script.write_text("import sys\nsys.exit(1)\n", encoding="utf-8")
        hook = f"{shlex.quote(sys.executable)} {shlex.quote(str(script))}"
        settings = settings_factory(url=show["url"], max_episodes="1", download_hook=hook)

        result = await make_manager(http_session).sync([settings], now=NOW)

        assert result.stats.hook_warnings == 1
        assert result.exit_code == 0
        ledger = tmp_path / "downloads" / "Test Show" / ".downloaded"
        assert "guid-5" in ledger.read_text()

    async def test_event_log(self, show, settings_factory, http_session, tmp_path) -> None:
        base, episode_logger, session_logger = create_structured_logger(tmp_path / "logs")
        manager = DownloadManager(
            RunConfig(),
            feed_client=FeedClient(session=http_session, base_delay=0),
            downloader=Downloader(session=http_session, base_delay=0),
            episode_logger=episode_logger,
            session_logger=session_logger,
        )
        with base:
            await manager.sync([settings_factory(url=show["url"], max_episodes="1")], now=NOW)

        events = [json.loads(line)["event"] for line in base.log_path.read_text().splitlines()]
        assert events[0] == "session_started"
        assert "episode_download_completed" in events
        assert events[-1] == "session_completed"

    async def test_long_title_is_shortened(
        self, settings_factory, http_session, media_server
    ) -> None:
        url = media_server.add_file("long.mp3", b"\xff\xfb" * 500)
        media_server.feeds["long.xml"] = make_feed([make_item("T" * 300, NOW, url, guid="long")])
        settings = settings_factory(url=f"{media_server.base_url}/feeds/long.xml")

        result = await make_manager(http_session).sync([settings], now=NOW)

        assert result.exit_code == 0
        (path,) = result.downloaded
        assert path.name.endswith(".mp3")
        assert len((path.name + ".partial.json").encode()) <= 255

    async def test_unwritable_directory_fails_only_that_episode(
        self, show, settings_factory, http_session, media_server, tmp_path
    ) -> None:
        blocker = tmp_path / "not-a-directory"
        blocker.write_text("")
        media_server.feeds["other.xml"] = make_feed(show["items"][:1], title="Other")
        blocked = settings_factory(
            "Blocked",
            url=f"{media_server.base_url}/feeds/other.xml",
            download_path=str(blocker / "{podname}"),
            tracker_path=str(tmp_path / "blocked.txt"),
        )
        good = settings_factory(url=show["url"], max_episodes="1")

        result = await make_manager(http_session).sync([blocked, good], now=NOW)

        assert [p.name for p in result.downloaded] == ["2024-06-01 Episode 5.mp3"]
        assert result.stats.episodes_failed == 1
        assert result.errors == {}
        assert result.exit_code == 1
        assert "guid-5" not in DownloadTracker.load(tmp_path / "blocked.txt")

    async def test_ledger_failure_stops_the_podcast(
        self, show, settings_factory, http_session, media_server, monkeypatch
    ) -> None:
        """Test an unwritable ledger aborts the podcast and is reported as its error."""

        async def failing_commit(self, episode_id, title=""):
            raise TrackerError("disk full")

        monkeypatch.setattr(DownloadTracker, "commit", failing_commit)
        settings = settings_factory(url=show["url"], max_episodes="3")

        result = await make_manager(http_session, max_workers=1).sync([settings], now=NOW)

        assert isinstance(result.errors["Test Show"], TrackerError)
        assert result.stats.podcasts_failed == 1
        assert result.stats.episodes_failed == 1
        assert result.downloaded == []
        assert len(media_server.requests) == 1
        assert result.exit_code == 1

    async def test_cancelled_sync_keeps_partial_file(
        self, show, settings_factory, http_session, media_server, tmp_path
    ) -> None:
        """Test a timed out run leaves the partial file, commits nothing and resumes later."""
        media_server.stall["ep5.mp3"] = 5000
        settings = settings_factory(url=show["url"], max_episodes="1")
        final = tmp_path / "downloads" / "Test Show" / "2024-06-01 Episode 5.mp3"

        manager = make_manager(http_session)
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(manager.sync([settings], now=NOW), timeout=2)

        assert partial_path_for(final).stat().st_size == 5000
        assert not final.exists()
        assert manager.result.downloaded == []
        ledger = final.parent / ".downloaded"
        assert not ledger.exists() or ledger.read_text() == ""

        media_server.stall.clear()
        result = await make_manager(http_session).sync([settings], now=NOW)

        assert result.downloaded == [final]
        assert final.read_bytes() == show["payloads"]["ep5.mp3"]
        assert media_server.media_requests("ep5.mp3")[-1]["Range"] == "bytes=5000-"
        assert result.stats.episodes_resumed == 1
        assert "guid-5" in DownloadTracker.load(ledger)


class TestEpisodeProcessor:
    """Tests for the per-episode state machine."""

    async def test_states_through_tracked(
        self, show, settings_factory, http_session, tmp_path
    ) -> None:
        from podcatch.api.feed_client import parse_feed

        channel = parse_feed(make_feed(show["items"]))
        episode = channel.episodes[0]
        final_path = tmp_path / "out" / "episode.mp3"
        tracker = DownloadTracker(tmp_path / "out" / ".downloaded")
        task = DownloadTask(
            settings=settings_factory(url=show["url"]),
            episode=episode,
            episode_id=episode.guid,
            final_path=final_path,
            tracker=tracker,
            channel_tags=channel.tags,
        )
        processor = EpisodeProcessor(
            RunConfig(),
            DownloadStats(),
            Downloader(session=http_session, base_delay=0),
            Tagger(),
        )

        assert await processor.process_episode(task) == final_path
        assert task.state is EpisodeState.TRACKED
        assert episode.guid in tracker
        assert not partial_path_for(final_path).exists()

    async def test_failure_state(self, settings_factory, http_session, tmp_path, media_server) -> None:
        from podcatch.models.feed import Episode

        episode = Episode(guid="g", url=f"{media_server.base_url}/media/nothing.mp3", published=NOW)
        task = DownloadTask(
            settings=settings_factory(),
            episode=episode,
            episode_id="g",
            final_path=tmp_path / "x.mp3",
            tracker=DownloadTracker(tmp_path / ".downloaded"),
        )
        stats = DownloadStats()
        processor = EpisodeProcessor(
            RunConfig(),
            stats,
            Downloader(max_attempts=1, session=http_session, base_delay=0),
            Tagger(),
        )

        assert await processor.process_episode(task) is None
        assert task.state is EpisodeState.FAILED
        assert stats.episodes_failed == 1
        assert "g" not in task.tracker
