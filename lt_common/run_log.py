"""Human-readable run log sinks.

Components receive a `RunLog` instead of writing to a process-wide logger,
so every state transition of a run can be captured in memory by tests, on
stdout by the driver (where the controller picks it up) or in a file.
"""

from __future__ import annotations

import logging
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import IO, Protocol, runtime_checkable


logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


@runtime_checkable
class RunLog(Protocol):
    """Anything that accepts one human-readable line at a time."""

    def write(self, line: str) -> None: ...


class MemoryRunLog:
    """Keep run log lines in memory."""

    def __init__(self) -> None:
        self._lines: list[str] = []
        self._lock = threading.Lock()

    def write(self, line: str) -> None:
        with self._lock:
            self._lines.append(line)

    @property
    def lines(self) -> list[str]:
        with self._lock:
            return list(self._lines)

    def contains(self, fragment: str) -> bool:
        """Return True when any line contains `fragment`."""
        return any(fragment in line for line in self.lines)

    def clear(self) -> None:
        with self._lock:
            self._lines.clear()


class FileRunLog:
    """Append timestamped lines to a file.

    The file is opened per write so other processes can append to the same
    log concurrently. Write failures are logged and dropped.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def write(self, line: str) -> None:
        entry = f"{datetime.now().strftime(TIMESTAMP_FORMAT)}: {line}\n"
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(entry)
            except OSError as exc:
                logger.warning("Failed to write run log %s: %s", self.path, exc)

    def reset(self) -> None:
        """Truncate the log file, creating it when missing."""
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text("", encoding="utf-8")


class StreamRunLog:
    """Write lines to a text stream and flush immediately."""

    def __init__(self, stream: IO[str] | None = None) -> None:
        self._stream = stream
        self._lock = threading.Lock()

    def write(self, line: str) -> None:
        stream = self._stream or sys.stdout
        with self._lock:
            try:
                stream.write(line + "\n")
                stream.flush()
            except (OSError, ValueError) as exc:
                logger.debug("Run log stream unavailable: %s", exc)


class LoggerRunLog:
    """Forward run log lines to a stdlib logger."""

    def __init__(
        self, target: logging.Logger | None = None, level: int = logging.INFO
    ) -> None:
        self._logger = target or logging.getLogger("lt.run")
        self._level = level

    def write(self, line: str) -> None:
        self._logger.log(self._level, line)


class TeeRunLog:
    """Fan a line out to several sinks; one failing sink does not stop the rest."""

    def __init__(self, *sinks: RunLog) -> None:
        self.sinks = list(sinks)

    def write(self, line: str) -> None:
        for sink in self.sinks:
            try:
                sink.write(line)
            except Exception as exc:  # noqa: BLE001
                logger.debug("Run log sink %r failed: %s", sink, exc)


def ensure_run_log(run_log: RunLog | None) -> RunLog:
    """Return `run_log` or a logger-backed default."""
    return run_log if run_log is not None else LoggerRunLog()
