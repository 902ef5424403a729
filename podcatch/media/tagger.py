"""
Reads and rewrites ID3 tags of downloaded episodes, with tag values rendered
from templates.
"""

import logging
import re
from dataclasses import replace
from pathlib import Path
from typing import Optional

import mutagen.id3 as id3
from mutagen import MutagenError
from mutagen.id3 import ID3NoHeaderError

from podcatch.exceptions import RenderError, TaggingError
from podcatch.utils.patterns import CompiledTemplate, RenderBindings

log = logging.getLogger(__name__)

TAGGABLE_SUFFIXES = frozenset({".mp3"})

# Friendly names accepted in `id3.<name>` settings and `{id3tag::<name>}`.
FRIENDLY_FRAMES = {
    "title": "TIT2",
    "subtitle": "TIT3",
    "artist": "TPE1",
    "albumartist": "TPE2",
    "album": "TALB",
    "genre": "TCON",
    "date": "TDRC",
    "year": "TDRC",
    "tracknumber": "TRCK",
    "composer": "TCOM",
    "publisher": "TPUB",
    "copyright": "TCOP",
    "language": "TLAN",
    "comment": "COMM",
    "website": "WOAS",
}

_FRAME_ID = re.compile(r"^[A-Z][A-Z0-9]{3}$")


def frame_key(tag: str) -> str:
    """
    Maps a configured tag name to an ID3 frame key: a friendly name, a raw
    frame id such as ``TIT2``, or anything else as a ``TXXX:<name>`` frame.
    """
    if friendly := FRIENDLY_FRAMES.get(tag.lower()):
        return friendly
    if _FRAME_ID.match(tag) or tag.startswith("TXXX:"):
        return tag
    return f"TXXX:{tag}"


def _frame_value(frame: id3.Frame) -> Optional[str]:
    if url := getattr(frame, "url", None):
        return str(url)
    text = getattr(frame, "text", None)
    if text:
        return str(text[0])
    return None


def _build_frame(key: str, value: str) -> id3.Frame:
    if key.startswith("TXXX:"):
        return id3.TXXX(encoding=3, desc=key[len("TXXX:") :], text=value)
    if key == "COMM":
        return id3.COMM(encoding=3, lang="eng", desc="", text=value)

    frame_cls = getattr(id3, key, None)
    if not isinstance(frame_cls, type) or not issubclass(frame_cls, id3.Frame):
        raise TaggingError(f"Unknown ID3 frame '{key}'.")
    if issubclass(frame_cls, id3.UrlFrame):
        return frame_cls(url=value)
    if issubclass(frame_cls, id3.TextFrame):
        return frame_cls(encoding=3, text=value)
    raise TaggingError(f"ID3 frame '{key}' cannot hold a text value.")


class Tagger:
    """Writes template-rendered ID3 tags to MP3 files."""

    @staticmethod
    def can_tag(path: Path) -> bool:
        return path.suffix.lower() in TAGGABLE_SUFFIXES

    @staticmethod
    def _load(path: Path) -> id3.ID3:
        try:
            return id3.ID3(str(path))
        except ID3NoHeaderError:
            return id3.ID3()

    def reader(self, path: Path):
        """Returns a lookup function for the tags currently in ``path``."""
        tags = self._load(path)

        def read(tag: str) -> Optional[str]:
            for frame in tags.getall(frame_key(tag)):
                if (value := _frame_value(frame)) is not None:
                    return value
            return None

        return read

    def tag_file(
        self,
        path: Path,
        templates: dict[str, CompiledTemplate],
        bindings: RenderBindings,
    ) -> int:
        """
        Renders every tag template and rewrites the tags in place.

        All values are rendered against the tags as they were before this
        call. Returns the number of frames written.

        Raises:
            TaggingError: If a value cannot be rendered or the file cannot be
                saved.
        """
        if not templates:
            return 0
        try:
            audio = self._load(path)
            bound = replace(bindings, id3=self.reader(path))
            frames = [
                (frame_key(tag), template.render(bound))
                for tag, template in templates.items()
            ]
            for key, value in frames:
                audio.delall(key)
                audio.add(_build_frame(key, value))
            audio.save(str(path), v2_version=3)
        except RenderError as e:
            raise TaggingError(f"Could not render tags for '{path.name}': {e}") from e
        except (MutagenError, OSError) as e:
            raise TaggingError(f"Failed to tag file '{path.name}': {e}") from e

        log.debug(f"Wrote {len(frames)} ID3 frames to '{path.name}'.")
        return len(frames)
