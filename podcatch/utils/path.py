"""
Utilities for turning rendered templates into filesystem paths.
"""

import mimetypes
import re
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlsplit

from pathvalidate import sanitize_filename

DEFAULT_EXTENSION = ".mp3"
PARTIAL_SUFFIX = ".partial"
VALIDATOR_SUFFIX = ".partial.json"
# Longest file name most filesystems accept, in bytes.
MAX_NAME_LENGTH = 255

_EXTENSION = re.compile(r"^\.[A-Za-z0-9]{1,5}$")

# mimetypes picks odd first choices for a few audio types.
_MIME_EXTENSIONS = {
    "audio/mpeg": ".mp3",
    "audio/mp3": ".mp3",
    "audio/x-m4a": ".m4a",
    "audio/mp4": ".m4a",
    "audio/aac": ".aac",
    "audio/ogg": ".ogg",
    "audio/opus": ".opus",
    "video/mp4": ".mp4",
}


def create_dir(directory_path: Path) -> None:
    """Creates a directory if it does not already exist."""
    directory_path.mkdir(parents=True, exist_ok=True)


def sanitize_component(value: str) -> str:
    """Makes a substituted value safe to use inside a single path component."""
    return sanitize_filename(value.replace("/", "-"), replacement_text="_", platform="auto")


def to_path(rendered: str) -> Path:
    """Expands ``~`` in a rendered directory template."""
    return Path(rendered).expanduser()


def episode_extension(url: str, mime_type: Optional[str] = None) -> str:
    """
    Picks the file extension for an enclosure: the URL's own suffix if it has
    a plausible one, else one guessed from the MIME type, else ``.mp3``.
    """
    suffix = Path(unquote(urlsplit(url).path)).suffix
    if _EXTENSION.match(suffix):
        return suffix.lower()
    if mime_type:
        mime = mime_type.split(";", 1)[0].strip().lower()
        if guessed := _MIME_EXTENSIONS.get(mime) or mimetypes.guess_extension(mime):
            return guessed
    return DEFAULT_EXTENSION


def episode_filename(rendered_name: str, extension: str) -> str:
    """
    Builds the final file name from a rendered name pattern. The name is
    shortened so the file and its resume sidecar still fit in one path
    component.

    Raises:
        ValueError: If nothing usable is left after sanitizing.
    """
    max_len = MAX_NAME_LENGTH - len(extension) - len(VALIDATOR_SUFFIX)
    name = sanitize_filename(rendered_name.strip(), platform="auto", max_len=max_len).strip()
    if not name:
        raise ValueError(f"Name '{rendered_name}' is empty after sanitizing.")
    return f"{name}{extension}"
