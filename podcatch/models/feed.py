"""
Data structures for parsed podcast feeds.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Iterator, Optional


class TagTable:
    """
    Raw XML tag values keyed by tag name (``title``, ``itunes:author``).

    A tag may repeat, so every key maps to an ordered list of values. A
    missing tag is an ordinary ``None`` / empty result, not an exception.
    """

    def __init__(self, pairs: Iterable[tuple[str, str]] = ()):
        self._values: dict[str, list[str]] = {}
        for key, value in pairs:
            self._values.setdefault(key, []).append(value)

    @classmethod
    def from_dict(cls, values: dict[str, str | list[str]]) -> "TagTable":
        pairs = []
        for key, value in values.items():
            if isinstance(value, str):
                pairs.append((key, value))
            else:
                pairs.extend((key, v) for v in value)
        return cls(pairs)

    def first(self, tag: str) -> Optional[str]:
        values = self._values.get(tag)
        return values[0] if values else None

    def get_all(self, tag: str) -> list[str]:
        return list(self._values.get(tag, ()))

    def __contains__(self, tag: object) -> bool:
        return tag in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"TagTable({self._values!r})"


@dataclass(frozen=True)
class Episode:
    """One feed entry with an audio enclosure."""

    guid: str
    url: str
    published: datetime
    tags: TagTable = field(default_factory=TagTable, compare=False, repr=False)
    mime_type: Optional[str] = None

    @property
    def title(self) -> str:
        return self.tags.first("title") or self.guid


@dataclass(frozen=True)
class Channel:
    """A parsed feed: channel-level tags plus its episodes in feed order."""

    tags: TagTable
    episodes: tuple[Episode, ...] = ()

    @property
    def title(self) -> Optional[str]:
        return self.tags.first("title")
