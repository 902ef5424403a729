"""
Compiles and renders the curly-brace templates used for paths, file names,
tracked episode ids and ID3 tag values.

A template is plain text with placeholders:

    {podname}                       unit pattern (no argument)
    {pubdate::%Y-%m-%d}             data pattern (one argument)
    {rss::episode::itunes:author|Unknown}
                                    data pattern with a fallback value

Literal braces are written doubled (``{{`` and ``}}``).
"""

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Callable, Optional, Union

from podcatch import APPNAME
from podcatch.exceptions import CompileError, ContextViolation, RenderError
from podcatch.models.feed import Episode, TagTable

log = logging.getLogger(__name__)


class PatternContext(IntEnum):
    """
    Where a template is rendered. Each context can see everything the
    previous one can, plus its own data.
    """

    PODCAST = 1  # download_path, tracker_path: no episode bound yet
    EPISODE = 2  # name_pattern, id_pattern, hook arguments
    TAGGING = 3  # id3 tag values: the downloaded file exists


# Pattern name -> the least context in which its data exists.
UNIT_PATTERNS = {
    "podname": PatternContext.PODCAST,
    "appname": PatternContext.PODCAST,
    "home": PatternContext.PODCAST,
    "guid": PatternContext.EPISODE,
    "url": PatternContext.EPISODE,
}

DATA_PATTERNS = {
    "rss::channel": PatternContext.PODCAST,
    "rss::episode": PatternContext.EPISODE,
    "pubdate": PatternContext.EPISODE,
    "id3tag": PatternContext.TAGGING,
}

FALLBACK_PATTERNS = frozenset({"rss::channel", "rss::episode", "id3tag"})

# Unit patterns whose value is a filesystem location, never a path component.
PATH_VALUED_PATTERNS = frozenset({"home"})


@dataclass(frozen=True)
class Literal:
    text: str


@dataclass(frozen=True)
class Placeholder:
    name: str
    argument: Optional[str] = None
    fallback: Optional[str] = None

    def __str__(self) -> str:
        if self.argument is None:
            return f"{{{self.name}}}"
        suffix = f"|{self.fallback}" if self.fallback is not None else ""
        return f"{{{self.name}::{self.argument}{suffix}}}"


Node = Union[Literal, Placeholder]


@dataclass(frozen=True)
class RenderBindings:
    """
    The data a template may draw from. Fields that are ``None`` are not
    available at the current call site.
    """

    podcast_name: str
    home: Path = field(default_factory=Path.home)
    channel: Optional[TagTable] = None
    episode: Optional[Episode] = None
    id3: Optional[Callable[[str], Optional[str]]] = None


@dataclass(frozen=True)
class CompiledTemplate:
    """An immutable, reusable sequence of literal and placeholder nodes."""

    source: str
    context: PatternContext
    nodes: tuple[Node, ...]

    @property
    def placeholders(self) -> tuple[Placeholder, ...]:
        return tuple(n for n in self.nodes if isinstance(n, Placeholder))

    def uses(self, name: str) -> bool:
        return any(p.name == name for p in self.placeholders)

    def render(
        self,
        bindings: RenderBindings,
        transform: Optional[Callable[[str], str]] = None,
    ) -> str:
        """
        Renders the template against the given bindings.

        Args:
            bindings: The data sources available at this call site.
            transform: Optional function applied to every substituted value
                (not to literal text), e.g. a filename sanitizer.

        Raises:
            RenderError: If a referenced value is absent and has no fallback.
        """
        parts = []
        for node in self.nodes:
            if isinstance(node, Literal):
                parts.append(node.text)
                continue
            value = _resolve(node, bindings)
            if transform and node.name not in PATH_VALUED_PATTERNS:
                value = transform(value)
            parts.append(value)
        return "".join(parts)

    def __str__(self) -> str:
        return self.source


def compile_template(template: str, context: PatternContext) -> CompiledTemplate:
    """
    Parses a template and checks every placeholder against the context.

    Raises:
        CompileError: On unbalanced braces, empty placeholders, unknown
            pattern names or a wrong number of arguments.
        ContextViolation: If a pattern's data is unavailable in ``context``.
    """
    nodes: list[Node] = []
    buffer: list[str] = []
    i, n = 0, len(template)

    while i < n:
        ch = template[i]
        if ch == "{":
            if template.startswith("{{", i):
                buffer.append("{")
                i += 2
                continue
            end = template.find("}", i + 1)
            if end == -1:
                raise CompileError(
                    f"Unterminated placeholder at position {i} in '{template}'."
                )
            body = template[i + 1 : end]
            if "{" in body:
                raise CompileError(
                    f"Nested '{{' at position {i + 1 + body.index('{')} "
                    f"in '{template}'."
                )
            placeholder = _parse_placeholder(body, template)
            required = _required_context(placeholder)
            if required > context:
                raise ContextViolation(
                    f"Pattern '{placeholder}' is not available in "
                    f"{context.name.lower()} templates ('{template}')."
                )
            if buffer:
                nodes.append(Literal("".join(buffer)))
                buffer = []
            nodes.append(placeholder)
            i = end + 1
        elif ch == "}":
            if template.startswith("}}", i):
                buffer.append("}")
                i += 2
                continue
            raise CompileError(
                f"Unmatched '}}' at position {i} in '{template}'. "
                "Use '}}' for a literal brace."
            )
        else:
            buffer.append(ch)
            i += 1

    if buffer:
        nodes.append(Literal("".join(buffer)))
    return CompiledTemplate(source=template, context=context, nodes=tuple(nodes))


def _parse_placeholder(body: str, template: str) -> Placeholder:
    if not body.strip():
        raise CompileError(f"Empty placeholder in '{template}'.")

    # Longest name first so 'rss::episode' wins over a shorter prefix.
    for name in sorted(DATA_PATTERNS, key=len, reverse=True):
        prefix = f"{name}::"
        if body.startswith(prefix):
            argument = body[len(prefix) :]
            fallback = None
            if name in FALLBACK_PATTERNS and "|" in argument:
                argument, fallback = argument.split("|", 1)
            if not argument:
                raise CompileError(
                    f"Pattern '{name}' requires an argument in '{template}'."
                )
            return Placeholder(name, argument, fallback)

    if body in UNIT_PATTERNS:
        return Placeholder(body)
    if body in DATA_PATTERNS:
        raise CompileError(f"Pattern '{body}' requires an argument in '{template}'.")

    head = body.split("::", 1)[0]
    if head in UNIT_PATTERNS:
        raise CompileError(f"Pattern '{head}' takes no argument in '{template}'.")
    raise CompileError(f"Unknown pattern '{{{body}}}' in '{template}'.")


def _required_context(placeholder: Placeholder) -> PatternContext:
    if placeholder.argument is None:
        return UNIT_PATTERNS[placeholder.name]
    return DATA_PATTERNS[placeholder.name]


def _lookup(
    value: Optional[str], placeholder: Placeholder, what: str
) -> str:
    if value is not None:
        return value
    if placeholder.fallback is not None:
        return placeholder.fallback
    raise RenderError(f"{what} '{placeholder.argument}' not found for {placeholder}.")


def _require_episode(bindings: RenderBindings, placeholder: Placeholder) -> Episode:
    if bindings.episode is None:
        raise RenderError(f"No episode bound while rendering {placeholder}.")
    return bindings.episode


def _resolve(placeholder: Placeholder, bindings: RenderBindings) -> str:
    name = placeholder.name

    if name == "podname":
        return bindings.podcast_name
    if name == "appname":
        return APPNAME
    if name == "home":
        return str(bindings.home)
    if name == "guid":
        return _require_episode(bindings, placeholder).guid
    if name == "url":
        return _require_episode(bindings, placeholder).url
    if name == "pubdate":
        episode = _require_episode(bindings, placeholder)
        try:
            return episode.published.strftime(placeholder.argument)
        except ValueError as e:
            raise RenderError(f"Invalid date format in {placeholder}: {e}") from e
    if name == "rss::episode":
        episode = _require_episode(bindings, placeholder)
        return _lookup(episode.tags.first(placeholder.argument), placeholder, "Episode tag")
    if name == "rss::channel":
        channel = bindings.channel
        value = channel.first(placeholder.argument) if channel is not None else None
        return _lookup(value, placeholder, "Channel tag")
    if name == "id3tag":
        if bindings.id3 is None:
            raise RenderError(f"No audio file bound while rendering {placeholder}.")
        return _lookup(bindings.id3(placeholder.argument), placeholder, "ID3 tag")

    raise RenderError(f"Unhandled pattern {placeholder}.")
