"""Tests for path helpers."""

import pytest

from podcatch.utils.path import (
    VALIDATOR_SUFFIX,
    episode_extension,
    episode_filename,
    sanitize_component,
)


class TestEpisodeExtension:
    """Tests for picking a file extension."""

    @pytest.mark.parametrize(
        "url,mime,expected",
        [
            ("https://cdn.example.com/a/episode.mp3", None, ".mp3"),
            ("https://cdn.example.com/episode.M4A?token=abc", None, ".m4a"),
            ("https://cdn.example.com/play/12345", "audio/x-m4a", ".m4a"),
            ("https://cdn.example.com/play/12345", "audio/mpeg; charset=binary", ".mp3"),
            ("https://cdn.example.com/play/12345", None, ".mp3"),
            ("https://cdn.example.com/v1.2.3/stream", None, ".mp3"),
        ],
    )
    def test_extension(self, url: str, mime: str | None, expected: str) -> None:
        assert episode_extension(url, mime) == expected


class TestSanitizing:
    """Tests for file name sanitizing."""

    def test_component_has_no_separators(self) -> None:
        assert "/" not in sanitize_component("AC/DC: Live?")

    def test_filename(self) -> None:
        assert episode_filename("2024-01-01 Hello", ".mp3") == "2024-01-01 Hello.mp3"

    def test_empty_filename(self) -> None:
        with pytest.raises(ValueError):
            episode_filename("   ", ".mp3")

    def test_long_name_leaves_room_for_suffixes(self) -> None:
        filename = episode_filename("2024-06-01 " + "T" * 300, ".mp3")
        assert filename.endswith(".mp3")
        assert len((filename + VALIDATOR_SUFFIX).encode()) <= 255

