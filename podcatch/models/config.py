"""
Settings models and the resolution of global settings with per-podcast overrides.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from podcatch.exceptions import CompileError, ConfigurationError, MissingRequiredSetting
from podcatch.utils.patterns import CompiledTemplate, PatternContext, compile_template

DISABLE_SENTINEL = "false"

DEFAULT_DOWNLOAD_PATH = "{home}/{appname}/{podname}"
DEFAULT_NAME_PATTERN = "{pubdate::%Y-%m-%d} {rss::episode::title}"
DEFAULT_ID_PATTERN = "{guid}"
DEFAULT_TRACKER_FILENAME = ".downloaded"

ID3_PREFIX = "id3."
ID3_ALL = "id3"


class SettingScope(Enum):
    """Where a setting may be written."""

    ANY = "any"  # global default, overridable per podcast
    PODCAST = "podcast"  # per podcast only; a global value is never consulted


class SettingState(Enum):
    UNSET = "unset"
    DISABLED = "disabled"
    VALUE = "value"


@dataclass(frozen=True)
class Setting:
    """
    A three-state setting value. After resolution, ``UNSET`` means no
    override, global value or built-in default exists.
    """

    state: SettingState
    value: Optional[str] = None

    @classmethod
    def of(cls, value: str) -> "Setting":
        return cls(SettingState.VALUE, value)

    @property
    def is_set(self) -> bool:
        return self.state is SettingState.VALUE

    @property
    def is_disabled(self) -> bool:
        return self.state is SettingState.DISABLED

    @property
    def is_missing(self) -> bool:
        return self.state is SettingState.UNSET


UNSET = Setting(SettingState.UNSET)
DISABLED = Setting(SettingState.DISABLED)


@dataclass(frozen=True)
class SettingSpec:
    key: str
    scope: SettingScope = SettingScope.ANY
    required: bool = False
    default: Optional[str] = None
    context: Optional[PatternContext] = None  # set for template-valued settings


SETTINGS: dict[str, SettingSpec] = {
    spec.key: spec
    for spec in (
        SettingSpec("url", SettingScope.PODCAST, required=True),
        SettingSpec(
            "download_path",
            required=True,
            default=DEFAULT_DOWNLOAD_PATH,
            context=PatternContext.PODCAST,
        ),
        SettingSpec(
            "name_pattern",
            required=True,
            default=DEFAULT_NAME_PATTERN,
            context=PatternContext.EPISODE,
        ),
        SettingSpec(
            "id_pattern",
            required=True,
            default=DEFAULT_ID_PATTERN,
            context=PatternContext.EPISODE,
        ),
        SettingSpec("tracker_path", context=PatternContext.PODCAST),
        SettingSpec("download_hook"),
        SettingSpec("max_days"),
        SettingSpec("max_episodes"),
        SettingSpec("earliest_date"),
        SettingSpec("backlog_start", SettingScope.PODCAST),
        SettingSpec("backlog_interval", SettingScope.PODCAST),
    )
}

# Run-level settings, read from the global document only.
RUN_KEYS = frozenset({"max_workers", "max_attempts", "hook_timeout", "log_dir"})


def is_disable_sentinel(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() == DISABLE_SENTINEL


def _raw(settings: Mapping[str, str], key: str) -> Optional[str]:
    value = settings.get(key)
    if value is None or not value.strip():
        return None
    return value.strip()


def resolve(
    global_settings: Mapping[str, str],
    podcast_settings: Mapping[str, str],
    key: str,
) -> Setting:
    """
    Resolves one setting for one podcast.

    Order: explicit podcast value, podcast disable sentinel, global value (for
    global-eligible settings), built-in default. Anything else is ``UNSET``.
    """
    spec = SETTINGS[key]

    override = _raw(podcast_settings, key)
    if override is not None:
        return DISABLED if is_disable_sentinel(override) else Setting.of(override)

    if spec.scope is SettingScope.ANY:
        global_value = _raw(global_settings, key)
        if global_value is not None:
            if is_disable_sentinel(global_value):
                return DISABLED
            return Setting.of(global_value)

    if spec.default is not None:
        return Setting.of(spec.default)
    return UNSET


def resolve_id3_tags(
    global_settings: Mapping[str, str], podcast_settings: Mapping[str, str]
) -> dict[str, str]:
    """
    Merges ``id3.<tag>`` entries per tag. A podcast can drop a single tag with
    ``id3.<tag> = false`` or every tag with ``id3 = false``.
    """
    if is_disable_sentinel(podcast_settings.get(ID3_ALL)):
        return {}

    tags: dict[str, str] = {}
    if not is_disable_sentinel(global_settings.get(ID3_ALL)):
        _merge_id3(tags, global_settings)
    _merge_id3(tags, podcast_settings)
    return tags


def _merge_id3(tags: dict[str, str], settings: Mapping[str, str]) -> None:
    for key, value in settings.items():
        if not key.startswith(ID3_PREFIX):
            continue
        tag = key[len(ID3_PREFIX) :].strip()
        if not tag:
            continue
        if is_disable_sentinel(value):
            tags.pop(tag, None)
        elif value.strip():
            tags[tag] = value.strip()


def parse_timestamp(value: str) -> datetime:
    """Parses an ISO date or datetime. Naive values are taken as local time."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return parsed.astimezone(timezone.utc)


def is_known_key(key: str) -> bool:
    return key in SETTINGS or key == ID3_ALL or key.startswith(ID3_PREFIX)


class EffectiveSettings(BaseModel):
    """The fully resolved, validated settings of a single podcast."""

    name: str
    url: str
    download_path: CompiledTemplate
    name_pattern: CompiledTemplate
    id_pattern: CompiledTemplate
    tracker_path: Optional[CompiledTemplate] = None
    download_hook: Optional[str] = None
    max_days: Optional[int] = None
    max_episodes: Optional[int] = None
    earliest_date: Optional[datetime] = None
    backlog_start: Optional[datetime] = None
    backlog_interval: Optional[int] = None
    id3_tags: dict[str, CompiledTemplate] = Field(default_factory=dict)

    class Config:
        """Pydantic model configuration."""

        arbitrary_types_allowed = True
        frozen = True

    @field_validator("max_days", "max_episodes", "backlog_interval")
    @classmethod
    def validate_positive(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("must be a positive whole number")
        return v

    @field_validator("earliest_date", "backlog_start", mode="before")
    @classmethod
    def validate_timestamp(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_timestamp(v)
        return v

    @property
    def backlog_active(self) -> bool:
        return self.backlog_start is not None and self.backlog_interval is not None


def resolve_podcast(
    name: str,
    global_settings: Mapping[str, str],
    podcast_settings: Mapping[str, str],
) -> EffectiveSettings:
    """
    Resolves and validates every setting of one podcast and compiles its
    templates, so configuration errors surface before any network I/O.

    Raises:
        MissingRequiredSetting: A required setting is unset or disabled.
        CompileError: A template is malformed or uses an unavailable pattern.
        ConfigurationError: A value has the wrong type or range.
    """
    values: dict[str, Any] = {"name": name}

    for key, spec in SETTINGS.items():
        setting = resolve(global_settings, podcast_settings, key)
        if spec.required and not setting.is_set:
            raise MissingRequiredSetting(name, key, disabled=setting.is_disabled)
        if not setting.is_set:
            continue
        if spec.context is not None:
            values[key] = _compile(name, key, setting.value, spec.context)
        else:
            values[key] = setting.value

    values["id3_tags"] = {
        tag: _compile(name, f"{ID3_PREFIX}{tag}", template, PatternContext.TAGGING)
        for tag, template in resolve_id3_tags(global_settings, podcast_settings).items()
    }

    try:
        return EffectiveSettings(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Podcast '{name}': invalid settings:\n{e}") from e


def _compile(
    podcast: str, key: str, template: str, context: PatternContext
) -> CompiledTemplate:
    try:
        return compile_template(template, context)
    except CompileError as e:
        raise type(e)(f"Podcast '{podcast}', setting '{key}': {e}") from e


class RunConfig(BaseModel):
    """A validated model of the run-level settings."""

    max_workers: int = 4
    max_attempts: int = 3
    hook_timeout: float = 300.0
    log_dir: Optional[str] = None

    class Config:
        """Pydantic model configuration."""

        validate_assignment = True
        str_strip_whitespace = True

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        """Ensures a reasonable number of workers."""
        if v < 1 or v > 32:
            raise ValueError("Max workers must be between 1 and 32.")
        return v

    @field_validator("max_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1 or v > 10:
            raise ValueError("Max attempts must be between 1 and 10.")
        return v

    @field_validator("hook_timeout")
    @classmethod
    def validate_hook_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Hook timeout must be positive.")
        return v
