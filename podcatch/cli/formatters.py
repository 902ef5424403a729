"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from podcatch.exceptions import PodcatchError
from podcatch.models.config import EffectiveSettings
from podcatch.models.stats import DownloadStats
from podcatch.utils.formatting import format_duration, format_size, format_timestamp


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "ConfigurationError": [
            "• Check config.ini and podcasts.ini in your config directory.",
            "• Run `podcatch validate` to check every podcast without downloading.",
        ],
        "MissingRequiredSetting": [
            "• Set the value globally in config.ini or in the podcast's section.",
            "• Required settings cannot be disabled with 'false'.",
        ],
        "CompileError": [
            "• A template has unbalanced braces or an unknown pattern.",
            "• Write '{{' and '}}' for literal braces.",
            "• Run `podcatch --pattern-help` for the list of patterns.",
        ],
        "ContextViolation": [
            "• Episode data is not available in directory templates.",
            "• ID3 data is only available in `id3.<tag>` templates.",
        ],
        "FeedError": [
            "• Check the feed URL in a browser.",
            "• The podcast host may be temporarily unavailable.",
        ],
        "TrackerError": [
            "• Check the permissions of the tracker file and its directory.",
        ],
        "TimeoutError": [
            "• The run exceeded its --timeout.",
            "• Partial downloads are kept and resume on the next run.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    suggestion_text = Text("\n".join(suggestions))

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(suggestion_text)

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_validation_table(
    console: Console,
    podcasts: list[EffectiveSettings],
    errors: dict[str, PodcatchError],
):
    """Displays the resolved settings of every podcast and any errors."""
    table = Table(box=box.ROUNDED, title="[bold]Podcasts[/bold]", title_style="")
    table.add_column("Podcast", style="bold cyan")
    table.add_column("Directory", style="dim")
    table.add_column("File name", style="dim")
    table.add_column("Limits")
    table.add_column("Hook")

    for settings in podcasts:
        limits = []
        if settings.max_episodes:
            limits.append(f"{settings.max_episodes} newest")
        if settings.max_days:
            limits.append(f"{settings.max_days} days")
        if settings.earliest_date:
            limits.append(f"since {format_timestamp(settings.earliest_date)}")
        if settings.backlog_active:
            limits.append(f"backlog every {settings.backlog_interval}d")
        table.add_row(
            escape(settings.name),
            escape(str(settings.download_path)),
            escape(str(settings.name_pattern)),
            ", ".join(limits) or "-",
            "✓" if settings.download_hook else "-",
        )
    for name, error in errors.items():
        table.add_row(
            f"[red]{escape(name)}[/red]", f"[red]{escape(str(error))}[/red]", "", "", ""
        )

    title_style = "red" if errors else "green"
    mark = "✗" if errors else "✓"
    console.print(
        Panel(
            table,
            title=f"[bold {title_style}]{mark} {len(podcasts)} valid, "
            f"{len(errors)} invalid[/bold {title_style}]",
            border_style=title_style,
            expand=False,
        )
    )


def print_podcast_list(console: Console, podcasts: list[tuple[str, str]]):
    table = Table(box=box.SIMPLE)
    table.add_column("Podcast", style="bold cyan")
    table.add_column("Feed", style="dim")
    for name, url in podcasts:
        table.add_row(escape(name), escape(url))
    console.print(table)


def print_summary_panel(
    console: Console,
    stats: DownloadStats,
    duration_s: float,
    progress_stats: dict | None = None,
):
    """Displays the final summary of the sync session."""
    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=20)
    stats_table.add_column(style="white", justify="left")

    stats_table.add_row(
        "✓ Downloaded:", f"[bold green]{stats.episodes_downloaded}[/bold green]"
    )
    if stats.episodes_resumed > 0:
        stats_table.add_row("↻ Resumed:", f"[cyan]{stats.episodes_resumed}[/cyan]")

    skip_sections = []
    if stats.episodes_skipped_tracked > 0:
        skip_sections.append(
            f"[yellow]{stats.episodes_skipped_tracked} (tracked)[/yellow]"
        )
    if stats.episodes_adopted > 0:
        skip_sections.append(f"[yellow]{stats.episodes_adopted} (on disk)[/yellow]")
    if stats.episodes_skipped_filtered > 0:
        skip_sections.append(
            f"[yellow]{stats.episodes_skipped_filtered} (filtered)[/yellow]"
        )
    if skip_sections:
        stats_table.add_row("○ Skipped:", " + ".join(skip_sections))

    if stats.episodes_deferred_backlog > 0:
        stats_table.add_row(
            "⏳ Backlog:", f"[yellow]{stats.episodes_deferred_backlog} waiting[/yellow]"
        )
    if stats.hook_warnings > 0:
        stats_table.add_row("⚠ Hook Warnings:", f"[yellow]{stats.hook_warnings}[/yellow]")
    if stats.episodes_failed > 0:
        stats_table.add_row("✗ Failed:", f"[bold red]{stats.episodes_failed}[/bold red]")
    if stats.podcasts_failed > 0:
        stats_table.add_row(
            "✗ Podcasts Failed:", f"[bold red]{stats.podcasts_failed}[/bold red]"
        )

    stats_table.add_row("", "")  # Spacer

    stats_table.add_row(
        "Total Size:", f"[cyan]{format_size(stats.total_size_downloaded)}[/cyan]"
    )
    avg_speed = stats.total_size_downloaded / duration_s if duration_s > 0 else 0
    stats_table.add_row(
        "Avg. Speed:", f"[magenta]{format_size(int(avg_speed))}/s[/magenta]"
    )
    if stats.peak_speed_bps > 0:
        stats_table.add_row(
            "Peak Speed:",
            f"[magenta]{format_size(int(stats.peak_speed_bps))}/s[/magenta]",
        )
    stats_table.add_row("Time Elapsed:", f"[blue]{format_duration(duration_s)}[/blue]")

    if progress_stats:
        stats_table.add_row(
            "Peak Concurrent:",
            f"[green]{progress_stats.get('peak_concurrent', 0)}[/green]",
        )

    if stats.has_failures:
        title = "🎧 [bold]Sync Finished With Errors[/bold]"
        border_color = "red"
    else:
        title = "🎧 [bold]Sync Complete![/bold]"
        border_color = "green"

    console.print()
    console.print(
        Panel(
            stats_table,
            title=title,
            border_style=border_color,
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )


def print_pattern_help(console: Console, config_dir: Path):
    """Displays a help panel for the template patterns."""
    main_panel = Panel(
        Text(
            "Settings like download_path, name_pattern, id_pattern and id3.<tag> are"
            " templates. Substituted values are made safe for file names; literal"
            " braces are written '{{' and '}}'.",
            justify="center",
        ),
        title="[bold]Pattern Guide[/bold]",
        border_style="cyan",
        padding=(1, 2),
    )

    ph_table = Table(box=box.ROUNDED, title="[bold]Patterns[/bold]", title_style="")
    ph_table.add_column("Pattern", style="bold magenta", no_wrap=True)
    ph_table.add_column("Description")
    ph_table.add_column("Usable in")

    ph_table.add_row("{podname}", "The podcast's section name.", "everywhere")
    ph_table.add_row("{appname}", "'podcatch'.", "everywhere")
    ph_table.add_row("{home}", "Your home directory.", "everywhere")
    ph_table.add_row(
        "{rss::channel::<tag>}", "A channel tag, e.g. 'title' or 'itunes:author'.",
        "everywhere",
    )
    ph_table.add_section()
    ph_table.add_row("{guid}", "The episode's GUID, or its URL if it has none.", "episode")
    ph_table.add_row("{url}", "The enclosure URL.", "episode")
    ph_table.add_row("{pubdate::<format>}", "Publish date (UTC), strftime format.", "episode")
    ph_table.add_row("{rss::episode::<tag>}", "An item tag, e.g. 'title'.", "episode")
    ph_table.add_section()
    ph_table.add_row("{id3tag::<tag>}", "The file's existing ID3 tag value.", "id3.<tag> only")

    usage = Table.grid(expand=True, padding=(0, 1))
    usage.add_row(
        "[bold cyan]Contexts:[/bold cyan]",
        "download_path and tracker_path see 'everywhere' patterns; name_pattern,"
        " id_pattern also see 'episode' patterns; id3.<tag> sees all.",
    )
    usage.add_row(
        "[bold cyan]Fallbacks:[/bold cyan]",
        "`{rss::episode::itunes:author|Unknown}` uses 'Unknown' when the tag is missing.",
    )
    usage.add_row(
        "[bold cyan]Disable:[/bold cyan]",
        "Set an optional setting to 'false' in a podcast to turn off its global value.",
    )
    usage.add_row("[bold cyan]Config:[/bold cyan]", f"[dim]{escape(str(config_dir))}[/dim]")

    example = Text.from_markup(
        """
[bold]Default name_pattern:[/bold]
`{pubdate::%Y-%m-%d} {rss::episode::title}`

[bold]Result:[/bold]
`2024-03-01 Episode 12 - The Interview.mp3`
    """,
        justify="left",
    )

    console.print(main_panel)
    console.print(ph_table)
    console.print(Panel(usage, title="[bold]Usage[/bold]", border_style="green"))
    console.print(
        Panel(example, title="[bold]Example[/bold]", border_style="yellow", padding=(1, 2))
    )
