"""
Manages loading and updating the INI configuration files: `config.ini` holds the
global settings, `podcasts.ini` holds one section per podcast.
"""

import configparser
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from podcatch.exceptions import ConfigurationError, PodcatchError
from podcatch.models.config import (
    DEFAULT_DOWNLOAD_PATH,
    DEFAULT_ID_PATTERN,
    DEFAULT_NAME_PATTERN,
    RUN_KEYS,
    EffectiveSettings,
    RunConfig,
    is_known_key,
    resolve_podcast,
)

log = logging.getLogger(__name__)

CONFIG_FILENAME = "config.ini"
PODCASTS_FILENAME = "podcasts.ini"

# podcasts.ini has no shared section; every section is a podcast.
_PODCASTS_DEFAULT_SECTION = "podcatch:unused-defaults"


def _new_parser(**kwargs: Any) -> configparser.ConfigParser:
    # No interpolation: templates carry strftime '%' codes verbatim.
    parser = configparser.ConfigParser(interpolation=None, **kwargs)
    parser.optionxform = str  # keep ID3 frame names like TIT2 as written
    return parser


class ConfigManager:
    """Handles all operations related to the application's INI config files."""

    def __init__(self, config_dir: Path):
        self.config_dir = config_dir
        self.config_file_path = config_dir / CONFIG_FILENAME
        self.podcasts_file_path = config_dir / PODCASTS_FILENAME

    def _read(self, parser: configparser.ConfigParser, path: Path) -> None:
        try:
            with open(path, encoding="utf-8") as f:
                parser.read_file(f)
        except configparser.Error as e:
            raise ConfigurationError(f"Error parsing '{path}': {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Could not read '{path}': {e}") from e

    def load_global_settings(self) -> dict[str, str]:
        """
        Reads the 'DEFAULT' section of config.ini. A missing file means every
        setting falls back to its built-in default.
        """
        if not self.config_file_path.is_file():
            log.debug(f"No global config at '{self.config_file_path}', using defaults.")
            return {}
        parser = _new_parser()
        self._read(parser, self.config_file_path)
        settings = dict(parser.defaults())
        for key in settings:
            if key not in RUN_KEYS and not is_known_key(key):
                log.warning(f"[yellow]Unknown global setting '{key}' ignored.[/yellow]")
        return settings

    def load_run_config(self, cli_options: dict[str, Any] | None = None) -> RunConfig:
        """
        Builds the run-level configuration from config.ini and CLI overrides.

        Raises:
            ConfigurationError: If validation fails.
        """
        values = {
            key: value
            for key, value in self.load_global_settings().items()
            if key in RUN_KEYS and value.strip()
        }
        if cli_options:
            values.update({k: v for k, v in cli_options.items() if v is not None})
        try:
            return RunConfig(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def load_podcasts(self) -> dict[str, dict[str, str]]:
        """
        Reads podcasts.ini into an ordered mapping of podcast name to its raw
        settings.

        Raises:
            ConfigurationError: If the file is missing or malformed.
        """
        if not self.podcasts_file_path.is_file():
            raise ConfigurationError(
                f"No podcasts configured ('{self.podcasts_file_path}' not found). "
                "Add one with 'podcatch add <URL> <NAME>'."
            )
        parser = _new_parser(default_section=_PODCASTS_DEFAULT_SECTION)
        self._read(parser, self.podcasts_file_path)

        podcasts = {}
        for name in parser.sections():
            section = dict(parser.items(name))
            for key in section:
                if key in RUN_KEYS:
                    log.warning(
                        f"[yellow]'{key}' is a global setting; ignored for podcast "
                        f"'{name}'.[/yellow]"
                    )
                elif not is_known_key(key):
                    log.warning(
                        f"[yellow]Unknown setting '{key}' for podcast '{name}' "
                        "ignored.[/yellow]"
                    )
            podcasts[name] = section
        return podcasts

    def resolve_podcasts(
        self, name_filter: re.Pattern | None = None
    ) -> tuple[list[EffectiveSettings], dict[str, PodcatchError]]:
        """
        Resolves the effective settings of every (matching) podcast.

        A podcast with an invalid configuration is returned in the error map
        instead of aborting the others.
        """
        global_settings = self.load_global_settings()
        resolved: list[EffectiveSettings] = []
        errors: dict[str, PodcatchError] = {}

        for name, raw in self.load_podcasts().items():
            if name_filter and not name_filter.search(name):
                continue
            try:
                resolved.append(resolve_podcast(name, global_settings, raw))
            except PodcatchError as e:
                errors[name] = e
        return resolved, errors

    def podcast_names(self, name_filter: re.Pattern | None = None) -> list[str]:
        return [
            name
            for name in self.load_podcasts()
            if not name_filter or name_filter.search(name)
        ]

    def add_podcast(self, name: str, url: str) -> bool:
        """
        Appends a podcast section. Returns False if the name already exists.
        """
        parser = _new_parser(default_section=_PODCASTS_DEFAULT_SECTION)
        if self.podcasts_file_path.is_file():
            self._read(parser, self.podcasts_file_path)
        if parser.has_section(name):
            return False
        parser.add_section(name)
        parser.set(name, "url", url)
        self._write(parser, self.podcasts_file_path)
        return True

    def catch_up(self, names: list[str], now: datetime | None = None) -> int:
        """
        Marks everything published so far as seen by setting each podcast's
        `earliest_date` to the current time. Returns the number updated.
        """
        if not names:
            return 0
        stamp = (now or datetime.now().astimezone()).isoformat(timespec="seconds")
        parser = _new_parser(default_section=_PODCASTS_DEFAULT_SECTION)
        self._read(parser, self.podcasts_file_path)
        updated = 0
        for name in names:
            if parser.has_section(name):
                parser.set(name, "earliest_date", stamp)
                updated += 1
        self._write(parser, self.podcasts_file_path)
        return updated

    def save_new_config(self, settings: dict[str, Any] | None = None) -> None:
        """
        Creates and saves a new global configuration file.

        Args:
            settings: Values overriding the built-in defaults.
        """
        defaults: dict[str, Any] = {
            "download_path": DEFAULT_DOWNLOAD_PATH,
            "name_pattern": DEFAULT_NAME_PATTERN,
            "id_pattern": DEFAULT_ID_PATTERN,
            **RunConfig().model_dump(exclude_none=True),
        }
        defaults.update(settings or {})

        parser = _new_parser()
        for key, value in defaults.items():
            parser["DEFAULT"][key] = str(value)
        self._write(parser, self.config_file_path)

    def ensure_podcasts_file(self) -> Path:
        """Creates an empty podcasts.ini if there is none yet."""
        if not self.podcasts_file_path.exists():
            self._write(
                _new_parser(default_section=_PODCASTS_DEFAULT_SECTION),
                self.podcasts_file_path,
            )
        return self.podcasts_file_path

    def _write(self, parser: configparser.ConfigParser, path: Path) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                parser.write(f)
        except OSError as e:
            raise ConfigurationError(f"Failed to save '{path}': {e}") from e
