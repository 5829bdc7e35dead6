"""Rich rendering of run progress and run log lines."""

from __future__ import annotations

from dataclasses import dataclass

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from lt_controller.progress import ProgressSnapshot


def rich_progress(console: Console) -> Progress:
    """Create the Rich progress bar used by `lt run`."""
    return Progress(
        TextColumn("[bold]{task.description}[/bold]"),
        BarColumn(bar_width=40),
        MofNCompleteColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
        transient=False,
        expand=True,
    )


@dataclass
class RichProgressHandle:
    """Feed `ProgressSnapshot`s into one Rich progress task."""

    progress: Progress
    task_id: TaskID
    finished: bool = False

    def update(self, snapshot: ProgressSnapshot) -> None:
        if self.finished:
            return
        total = snapshot.total_batches or None
        self.progress.update(
            self.task_id, total=total, completed=snapshot.batches_completed
        )

    def finish(self, description: str | None = None) -> None:
        if self.finished:
            return
        if description:
            self.progress.update(self.task_id, description=description)
        self.progress.stop_task(self.task_id)
        self.finished = True


class ConsoleRunLog:
    """Print run log lines above the live progress bar."""

    def __init__(self, console: Console) -> None:
        self._console = console

    def write(self, line: str) -> None:
        style = "red" if "ERROR" in line else "dim"
        self._console.print(line, style=style, markup=False, highlight=False)
