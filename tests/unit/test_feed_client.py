"""Tests for feed parsing and fetching."""

from datetime import datetime, timezone

import pytest

from podcatch.api.feed_client import FeedClient, parse_feed
from podcatch.exceptions import FeedError
from tests.factories import NOW, make_feed, make_item


class TestParseFeed:
    """Tests for parse_feed."""

    def test_channel_and_episode_tags(self) -> None:
        content = make_feed(
            [
                make_item(
                    "Pilot",
                    NOW,
                    "https://cdn.example.com/pilot.mp3",
                    guid="g-1",
                    extra="<itunes:episode>1</itunes:episode>",
                )
            ]
        )
        channel = parse_feed(content)

        assert channel.title == "Test Show"
        assert channel.tags.first("itunes:author") == "Jane Host"
        assert len(channel.episodes) == 1

        episode = channel.episodes[0]
        assert episode.guid == "g-1"
        assert episode.title == "Pilot"
        assert episode.url == "https://cdn.example.com/pilot.mp3"
        assert episode.published == NOW
        assert episode.published.tzinfo == timezone.utc
        assert episode.mime_type == "audio/mpeg"
        assert episode.tags.first("itunes:episode") == "1"
        assert episode.tags.first("enclosure@url") == episode.url

    def test_guid_falls_back_to_url(self) -> None:
        channel = parse_feed(make_feed([make_item("A", NOW, "https://cdn.example.com/a.mp3")]))
        assert channel.episodes[0].guid == "https://cdn.example.com/a.mp3"

    def test_items_without_enclosure_or_date_are_skipped(self) -> None:
        content = b"""<?xml version="1.0"?>
<rss version="2.0"><channel><title>T</title>
  <item><title>No enclosure</title><pubDate>Sat, 01 Jun 2024 12:00:00 +0000</pubDate></item>
  <item><title>No date</title><enclosure url="https://x/a.mp3"/></item>
  <item><title>Bad date</title><pubDate>someday</pubDate><enclosure url="https://x/b.mp3"/></item>
  <item><title>Good</title><pubDate>Sat, 01 Jun 2024 12:00:00 +0200</pubDate>
    <enclosure url="https://x/c.mp3"/></item>
</channel></rss>"""
        channel = parse_feed(content)
        assert [e.title for e in channel.episodes] == ["Good"]
        assert channel.episodes[0].published == datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)

    def test_repeated_tags_are_kept_in_order(self) -> None:
        item = make_item(
            "A",
            NOW,
            "https://x/a.mp3",
            extra="<category>news</category><category>tech</category>",
        )
        episode = parse_feed(make_feed([item])).episodes[0]
        assert episode.tags.get_all("category") == ["news", "tech"]

    @pytest.mark.parametrize("content", [b"", b"not xml at all", b"<html><body/></html>"])
    def test_not_a_feed(self, content: bytes) -> None:
        with pytest.raises(FeedError):
            parse_feed(content)


class TestFeedClient:
    """Tests for FeedClient against a local server."""

    async def test_fetch(self, media_server, http_session) -> None:
        media_server.feeds["show.xml"] = make_feed([make_item("A", NOW, "https://x/a.mp3")])
        client = FeedClient(session=http_session, base_delay=0)
        channel = await client.fetch(f"{media_server.base_url}/feeds/show.xml")
        assert channel.title == "Test Show"
        assert len(channel.episodes) == 1

    async def test_missing_feed_raises_feed_error(self, media_server, http_session) -> None:
        client = FeedClient(session=http_session, max_attempts=2, base_delay=0)
        with pytest.raises(FeedError):
            await client.fetch(f"{media_server.base_url}/feeds/missing.xml")
