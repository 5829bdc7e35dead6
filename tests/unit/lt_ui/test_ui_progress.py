import io

import pytest
from rich.console import Console

from lt_controller.progress import ProgressSnapshot
from lt_ui.progress import ConsoleRunLog, RichProgressHandle, rich_progress


pytestmark = pytest.mark.unit_ui


def _console():
    return Console(file=io.StringIO(), force_terminal=False, width=100)


def test_handle_tracks_snapshots():
    progress = rich_progress(_console())
    task_id = progress.add_task("Submitting jobs", total=None)
    handle = RichProgressHandle(progress, task_id)

    handle.update(ProgressSnapshot(0, 4))
    handle.update(ProgressSnapshot(3, 4))

    task = progress.tasks[0]
    assert task.total == 4
    assert task.completed == 3


def test_finish_freezes_the_task():
    progress = rich_progress(_console())
    task_id = progress.add_task("Submitting jobs", total=None)
    handle = RichProgressHandle(progress, task_id)

    handle.update(ProgressSnapshot(1, 2))
    handle.finish("Done")
    handle.update(ProgressSnapshot(2, 2))
    handle.finish()

    task = progress.tasks[0]
    assert task.completed == 1
    assert task.description == "Done"
    assert handle.finished


def test_console_run_log_prints_lines():
    console = _console()
    ConsoleRunLog(console).write("Run state: running")
    ConsoleRunLog(console).write("ERROR: [boom]")
    output = console.file.getvalue()
    assert "Run state: running" in output
    assert "ERROR: [boom]" in output
