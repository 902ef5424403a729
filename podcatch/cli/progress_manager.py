"""
Manages a Rich Live display for concurrent episode downloads: a statistics
header and one progress bar per active transfer.
"""

import asyncio
import logging
from datetime import datetime

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.table import Table
from rich.text import Text

from podcatch.utils.formatting import format_duration, shorten

log = logging.getLogger("podcatch")


class ProgressManager:
    """
    Live view of a sync run. With ``enabled=False`` every method is a no-op,
    which is what tests and ``--print`` runs use.
    """

    def __init__(self, console: Console, enabled: bool = True):
        self.console = console
        self.enabled = enabled

        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}", justify="left"),
            BarColumn(bar_width=20),
            "[progress.percentage]{task.percentage:>3.0f}%",
            "•",
            DownloadColumn(),
            "•",
            TransferSpeedColumn(),
            "•",
            TimeRemainingColumn(),
            console=console,
            transient=False,
        )

        self._live: Live | None = None
        self._stats = {
            "podcasts": 0,
            "podcasts_done": 0,
            "podcasts_failed": 0,
            "completed": 0,
            "failed": 0,
            "active_downloads": 0,
            "peak_concurrent": 0,
            "start_time": None,
            "current_speed": 0.0,
        }
        self._active_tasks: set[TaskID] = set()

    def log_message(self, message: str, level: str = "info"):
        getattr(log, level, log.info)(message)

    def update_speed(self, current_speed: float):
        self._stats["current_speed"] = current_speed

    def podcast_finished(self, failed: bool = False):
        """Counts a podcast whose feed was handled, successfully or not."""
        self._stats["podcasts_done"] += 1
        if failed:
            self._stats["podcasts_failed"] += 1

    def _generate_header(self) -> Panel:
        stats = self._stats
        line = Text("🎧 podcatch", style="bold cyan")
        line.append(f"  {stats['podcasts_done']}/{stats['podcasts']} feeds", style="white")
        if stats["start_time"]:
            running = (datetime.now() - stats["start_time"]).total_seconds()
            line.append(f"  ⏱ {format_duration(running)}", style="yellow")
        if stats["current_speed"] > 0:
            line.append(
                f"  ⚡ {stats['current_speed'] / (1024 * 1024):.1f} MB/s", style="magenta"
            )

        counters = Table.grid(padding=(0, 1))
        for _ in range(4):
            counters.add_column()
        counters.add_row(
            f"[green]✓ {stats['completed']}[/green] episodes",
            f"[red]✗ {stats['failed']}[/red] failed",
            f"[cyan]↓ {stats['active_downloads']}[/cyan] active",
            f"[red]{stats['podcasts_failed']}[/red] feeds failed"
            if stats["podcasts_failed"]
            else "",
        )
        return Panel(Group(line, counters), border_style="cyan")

    def _render(self) -> Group:
        if self._active_tasks:
            body = self.progress
        else:
            body = Text("No transfers running.", style="dim italic", justify="center")
        return Group(
            self._generate_header(),
            Panel(body, title=f"Episodes ({len(self._active_tasks)})", border_style="green"),
        )

    def start_session(self, podcasts: int):
        self._stats["podcasts"] = podcasts
        self._stats["start_time"] = datetime.now()

    def add_episode_task(self, description: str, total_size: int | None = None) -> TaskID | None:
        if not self.enabled:
            return None
        task_id = self.progress.add_task(shorten(description), total=total_size, start=True)
        self._active_tasks.add(task_id)
        self._stats["active_downloads"] = len(self._active_tasks)
        self._stats["peak_concurrent"] = max(
            self._stats["peak_concurrent"], self._stats["active_downloads"]
        )
        return task_id

    def update_task_progress(self, task_id: TaskID | None, completed: int, total: int | None):
        if task_id is None or not self.enabled:
            return
        self.progress.update(task_id, completed=completed, total=total)

    def remove_task(self, task_id: TaskID | None, success: bool = True):
        if task_id is None or not self.enabled:
            return
        if task_id in self._active_tasks:
            self.progress.remove_task(task_id)
            self._active_tasks.discard(task_id)
        self._stats["active_downloads"] = len(self._active_tasks)
        if success:
            self._stats["completed"] += 1
        else:
            self._stats["failed"] += 1

    def get_statistics(self) -> dict:
        return self._stats.copy()

    async def __aenter__(self):
        if not self.enabled:
            return self
        self._live = Live(
            console=self.console,
            get_renderable=self._render,
            refresh_per_second=8,
            vertical_overflow="visible",
        )
        self._live.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._live is not None:
            await asyncio.sleep(0.1)
            self._live.stop()
            self._live = None
