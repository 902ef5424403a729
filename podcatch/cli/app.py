"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import logging
import os
import re
from enum import Enum
from pathlib import Path

import click
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from podcatch import APPNAME, __version__
from podcatch.api import FeedClient
from podcatch.core.download_manager import DownloadManager, SyncResult
from podcatch.media.downloader import close_connection_pool
from podcatch.models.config import RunConfig
from podcatch.storage.config_manager import ConfigManager
from podcatch.utils.structured_logger import create_structured_logger

from .formatters import (
    print_pattern_help,
    print_podcast_list,
    print_summary_panel,
    print_validation_table,
)
from .progress_manager import ProgressManager

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("podcatch")

app = typer.Typer(
    name="podcatch",
    help=(
        "Downloads new podcast episodes from RSS feeds. Use 'podcatch <command>"
        " --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


class EditTarget(str, Enum):
    config = "config"
    podcasts = "podcasts"


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / APPNAME


def _config_manager(ctx: typer.Context) -> ConfigManager:
    config_dir = (ctx.obj or {}).get("config_dir") or get_config_dir()
    return ConfigManager(config_dir)


def _compile_filter(pattern: str | None) -> re.Pattern | None:
    if pattern is None:
        return None
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        raise typer.BadParameter(f"Invalid regular expression: {e}") from e


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    pattern_help: bool = typer.Option(
        False,
        "--pattern-help",
        help="Show help for the template patterns and exit.",
        is_eager=True,
    ),
    config_dir: Path | None = typer.Option(
        None,
        "--config-dir",
        "-c",
        envvar="PODCATCH_CONFIG_DIR",
        help="Directory holding config.ini and podcasts.ini.",
    ),
):
    """podcatch: a podcast downloader"""
    ctx.obj = {"config_dir": config_dir.expanduser() if config_dir else None}

    if pattern_help:
        print_pattern_help(console, config_dir or get_config_dir())
        raise typer.Exit()

    if version:
        console.print(f"[bold]{APPNAME}[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "INFO"
    if verbose >= 2:
        log_level = "DEBUG"
    logging.getLogger("podcatch").setLevel(log_level)
    ctx.obj["verbose"] = verbose

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    ctx: typer.Context,
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing config.ini without asking."
    ),
):
    """Write a config.ini with the default settings."""
    config_manager = _config_manager(ctx)
    if (
        config_manager.config_file_path.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    config_manager.save_new_config()
    console.print(
        f"\n[bold green]✓ Configuration saved to "
        f"'{escape(str(config_manager.config_file_path))}'[/bold green]"
    )
    console.print(
        "[dim]Add podcasts with[/dim] [cyan]podcatch add <URL> <NAME>[/cyan][dim].[/dim]"
    )


@app.command()
def add(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="The podcast's RSS feed URL."),
    name: str | None = typer.Argument(
        None, help="Name of the podcast. Defaults to the feed's title."
    ),
    catch_up: bool = typer.Option(
        False,
        "--catch-up",
        help="Treat every episode published so far as already downloaded.",
    ),
):
    """Add a podcast to podcasts.ini."""
    config_manager = _config_manager(ctx)

    if name is None:

        async def _fetch_title() -> str | None:
            try:
                channel = await FeedClient().fetch(url)
                return channel.title
            finally:
                await close_connection_pool()

        name = asyncio.run(_fetch_title())
        if not name:
            console.print("[red]✗ The feed has no title.[/red] Pass a NAME explicitly.")
            raise typer.Exit(code=1)
        name = name.strip()

    if not config_manager.add_podcast(name, url):
        console.print(f"[red]✗ A podcast named '{escape(name)}' already exists.[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓ Added '{escape(name)}'.[/green]")

    if catch_up:
        config_manager.catch_up([name])
        console.print("[dim]Existing episodes will not be downloaded.[/dim]")


@app.command(name="list")
def list_podcasts(
    ctx: typer.Context,
    filter_: str | None = typer.Option(
        None, "--filter", help="Only podcasts whose name matches this regex."
    ),
):
    """List the configured podcasts."""
    config_manager = _config_manager(ctx)
    name_filter = _compile_filter(filter_)
    podcasts = [
        (name, settings.get("url", ""))
        for name, settings in config_manager.load_podcasts().items()
        if not name_filter or name_filter.search(name)
    ]
    if not podcasts:
        console.print("[yellow]No podcasts configured.[/yellow]")
        return
    print_podcast_list(console, podcasts)


@app.command(name="catch-up")
def catch_up_command(
    ctx: typer.Context,
    filter_: str | None = typer.Option(
        None, "--filter", help="Only podcasts whose name matches this regex."
    ),
):
    """Mark every episode published so far as downloaded."""
    config_manager = _config_manager(ctx)
    names = config_manager.podcast_names(_compile_filter(filter_))
    updated = config_manager.catch_up(names)
    console.print(f"[green]✓ Caught up {updated} podcast{'s' if updated != 1 else ''}.[/green]")


@app.command()
def edit(
    ctx: typer.Context,
    target: EditTarget = typer.Argument(
        EditTarget.podcasts, help="Which file to open: config or podcasts."
    ),
):
    """Open config.ini or podcasts.ini in $EDITOR."""
    config_manager = _config_manager(ctx)
    if target is EditTarget.config:
        path = config_manager.config_file_path
        if not path.exists():
            config_manager.save_new_config()
    else:
        path = config_manager.ensure_podcasts_file()

    try:
        click.edit(filename=str(path))
    except click.ClickException as e:
        console.print(f"[red]✗ {escape(e.format_message())}[/red]")
        raise typer.Exit(code=1) from e


@app.command()
def validate(
    ctx: typer.Context,
    filter_: str | None = typer.Option(
        None, "--filter", help="Only podcasts whose name matches this regex."
    ),
):
    """Resolve every podcast's settings and compile its templates."""
    config_manager = _config_manager(ctx)
    config_manager.load_run_config()
    podcasts, errors = config_manager.resolve_podcasts(_compile_filter(filter_))
    print_validation_table(console, podcasts, errors)
    if errors:
        raise typer.Exit(code=1)


@app.command()
def sync(
    ctx: typer.Context,
    filter_: str | None = typer.Option(
        None,
        "--filter",
        help="Only sync podcasts whose name matches this regex (case-insensitive).",
    ),
    print_paths: bool = typer.Option(
        False,
        "--print",
        "-p",
        help="Print the paths of downloaded episodes instead of a progress display.",
    ),
    timeout: float | None = typer.Option(
        None, "--timeout", "-t", help="Give up after this many seconds."
    ),
    workers: int | None = typer.Option(
        None, "-w", "--workers", help="Number of simultaneous downloads."
    ),
):
    """Download new episodes of every configured podcast."""
    config_manager = _config_manager(ctx)
    name_filter = _compile_filter(filter_)
    run_config = config_manager.load_run_config({"max_workers": workers})
    podcasts, errors = config_manager.resolve_podcasts(name_filter)

    if not podcasts and not errors:
        console.print("[yellow]No podcasts match.[/yellow]")
        raise typer.Exit()

    if print_paths and not ctx.obj.get("verbose"):
        logging.getLogger("podcatch").setLevel("WARNING")

    log_dir = (
        Path(run_config.log_dir).expanduser()
        if run_config.log_dir
        else config_manager.config_dir / "logs"
    )

    result, progress_stats = asyncio.run(
        _sync_async(run_config, podcasts, errors, log_dir, timeout, print_paths)
    )

    if print_paths:
        for path in result.downloaded:
            typer.echo(str(path))
    else:
        print_summary_panel(console, result.stats, result.duration, progress_stats)

    if result.exit_code:
        raise typer.Exit(code=result.exit_code)


async def _sync_async(
    run_config: RunConfig,
    podcasts,
    errors,
    log_dir: Path,
    timeout: float | None,
    quiet: bool,
) -> tuple[SyncResult, dict]:
    base_logger, episode_logger, session_logger = create_structured_logger(log_dir)
    try:
        async with ProgressManager(console, enabled=not quiet) as progress_manager:
            manager = DownloadManager(
                run_config,
                progress_manager=progress_manager,
                episode_logger=episode_logger,
                session_logger=session_logger,
            )
            progress_manager.start_session(len(podcasts) + len(errors))
            for name, error in errors.items():
                manager.record_podcast_error(name, error)

            if not quiet:
                console.print(
                    f"[bold cyan]🎧 Syncing {len(podcasts)} "
                    f"podcast{'s' if len(podcasts) != 1 else ''}...[/bold cyan]"
                )
            try:
                await asyncio.wait_for(manager.sync(podcasts), timeout)
            except asyncio.TimeoutError:
                manager.result.timed_out = True
                log.error(
                    f"[red]✗ Sync timed out after {timeout:g}s. Partial downloads "
                    "are kept and resume next time.[/red]"
                )
            return manager.result, progress_manager.get_statistics()
    finally:
        await close_connection_pool()
        base_logger.close()
        if base_logger.log_path:
            log.debug(f"Event log written to '{base_logger.log_path}'.")
