"""Shared fixtures: resolved settings, a local media server and an HTTP session."""

import aiohttp
import pytest
from aiohttp.test_utils import TestServer

from podcatch.models.config import EffectiveSettings, resolve_podcast
from tests.factories import MediaServer


@pytest.fixture
def settings_factory(tmp_path):
    """Resolves a podcast's settings with the download directory under tmp_path."""

    def factory(name: str = "Test Show", **podcast: str) -> EffectiveSettings:
        podcast.setdefault("url", "https://example.com/feed.xml")
        global_settings = {"download_path": str(tmp_path / "downloads" / "{podname}")}
        return resolve_podcast(name, global_settings, podcast)

    return factory


@pytest.fixture
async def media_server():
    server = MediaServer()
    test_server = TestServer(server.build_app())
    await test_server.start_server()
    server.base_url = str(test_server.make_url("")).rstrip("/")
    yield server
    server.release.set()
    await test_server.close()


@pytest.fixture
async def http_session():
    async with aiohttp.ClientSession() as session:
        yield session
