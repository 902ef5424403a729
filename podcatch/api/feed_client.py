"""
Fetches podcast RSS feeds and parses them into channel and episode tag tables.
"""

import asyncio
import logging
from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import Iterator, Optional

import aiohttp
from lxml import etree

from podcatch.exceptions import FeedError
from podcatch.media.downloader import get_connection_pool
from podcatch.models.feed import Channel, Episode, TagTable

log = logging.getLogger(__name__)

ATTRIBUTE_SEPARATOR = "@"


def _tag_name(element: etree._Element) -> Optional[str]:
    """The tag as written in the feed, namespace prefix included."""
    if not isinstance(element.tag, str):  # comments, processing instructions
        return None
    local = etree.QName(element).localname
    return f"{element.prefix}:{local}" if element.prefix else local


def _tag_pairs(element: etree._Element) -> Iterator[tuple[str, str]]:
    """
    Yields ``(tag, text)`` for each direct child, plus ``(tag@attr, value)``
    for its attributes, e.g. ``enclosure@url`` or ``itunes:image@href``.
    """
    for child in element:
        name = _tag_name(child)
        if name is None or name == "item":
            continue
        text = "".join(child.itertext()).strip()
        if text:
            yield name, text
        for attr, value in child.attrib.items():
            attr_name = etree.QName(attr).localname
            yield f"{name}{ATTRIBUTE_SEPARATOR}{attr_name}", value


def _parse_item(item: etree._Element) -> Optional[Episode]:
    tags = TagTable(_tag_pairs(item))

    url = tags.first(f"enclosure{ATTRIBUTE_SEPARATOR}url")
    if not url:
        log.debug(f"Skipping item without enclosure: {tags.first('title')!r}")
        return None

    raw_date = tags.first("pubDate")
    try:
        published = parsedate_to_datetime(raw_date) if raw_date else None
    except (TypeError, ValueError):
        published = None
    if published is None:
        log.debug(f"Skipping item without a valid pubDate: {tags.first('title')!r}")
        return None
    if published.tzinfo is None:
        published = published.replace(tzinfo=timezone.utc)

    return Episode(
        guid=tags.first("guid") or url,
        url=url,
        published=published.astimezone(timezone.utc),
        tags=tags,
        mime_type=tags.first(f"enclosure{ATTRIBUTE_SEPARATOR}type"),
    )


def parse_feed(content: bytes) -> Channel:
    """
    Parses an RSS 2.0 document.

    Items without an enclosure or a parsable publish date are skipped.

    Raises:
        FeedError: If the document is not an RSS feed.
    """
    parser = etree.XMLParser(recover=True, resolve_entities=False, no_network=True)
    try:
        root = etree.fromstring(content, parser=parser)
    except etree.XMLSyntaxError as e:
        raise FeedError(f"Feed is not valid XML: {e}") from e
    if root is None:
        raise FeedError("Feed is empty or not XML.")

    channel = root.find("channel")
    if channel is None:
        raise FeedError(f"Not an RSS feed (root element '{_tag_name(root)}').")

    episodes = tuple(
        episode
        for item in channel.iter("item")
        if (episode := _parse_item(item)) is not None
    )
    return Channel(tags=TagTable(_tag_pairs(channel)), episodes=episodes)


class FeedClient:
    """Downloads and parses podcast feeds, retrying transient network errors."""

    def __init__(
        self,
        session: aiohttp.ClientSession | None = None,
        max_attempts: int = 3,
        base_delay: float = 1.5,
        max_workers: int = 4,
    ):
        self._session = session
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_workers = max_workers

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is not None:
            return self._session
        return await get_connection_pool(self.max_workers)

    async def fetch(self, url: str) -> Channel:
        """
        Fetches and parses a feed.

        Raises:
            FeedError: If the feed cannot be downloaded or parsed.
        """
        last_exception: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                session = await self._get_session()
                async with session.get(url, allow_redirects=True) as response:
                    response.raise_for_status()
                    content = await response.read()
                return await asyncio.to_thread(parse_feed, content)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_exception = e
                log.debug(
                    f"Feed attempt {attempt}/{self.max_attempts} for '{url}' "
                    f"failed: {e!r}"
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.base_delay * (2 ** (attempt - 1)))

        raise FeedError(f"Could not fetch feed '{url}': {last_exception}") from last_exception
