import shutil
import tempfile
from collections import defaultdict
from pathlib import Path

import pytest
from rich.console import Console
from rich.table import Table

from lt_common.run_log import MemoryRunLog


KNOWN_MARKERS = {
    "unit_common",
    "unit_driver",
    "unit_controller",
    "unit_ui",
    "inter_generic",
}


@pytest.fixture
def pipe_dir():
    """Short socket directory; AF_UNIX paths are limited to about 100 bytes."""
    path = Path(tempfile.mkdtemp(prefix="lt"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def run_log():
    return MemoryRunLog()


def pytest_terminal_summary(terminalreporter, exitstatus, config):
    """
    Print statistics by marker at the end of the test session.
    """
    _ = (exitstatus, config)
    marker_stats = defaultdict(
        lambda: {"passed": 0, "failed": 0, "skipped": 0, "total": 0, "duration": 0.0}
    )

    for outcome in ["passed", "failed", "skipped"]:
        reports = terminalreporter.stats.get(outcome, [])
        for report in reports:
            # Only count the actual test call, or setup skips
            if report.when == "call" or (
                report.when == "setup" and report.outcome == "skipped"
            ):
                duration = getattr(report, "duration", 0.0)
                for marker in KNOWN_MARKERS:
                    if marker in report.keywords:
                        stats = marker_stats[marker]
                        stats[outcome] += 1
                        stats["total"] += 1
                        stats["duration"] += duration

    if not marker_stats:
        return

    console = Console()
    table = Table(
        title="Test Statistics by Marker", show_header=True, header_style="bold magenta"
    )
    table.add_column("Marker", style="cyan")
    table.add_column("Total", justify="right")
    table.add_column("Passed", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Skipped", justify="right", style="yellow")
    table.add_column("Duration (s)", justify="right", style="blue")

    for marker in sorted(marker_stats):
        stats = marker_stats[marker]
        table.add_row(
            marker,
            str(stats["total"]),
            str(stats["passed"]),
            str(stats["failed"]),
            str(stats["skipped"]),
            f"{stats['duration']:.2f}",
        )

    console.print("\n")
    console.print(table)
