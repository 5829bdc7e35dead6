"""Run helper executables and collect their tagged stdout lines."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

from lt_common.errors import SubprocessLaunchFailed, SubprocessNotFound
from lt_common.run_log import RunLog, ensure_run_log

logger = logging.getLogger(__name__)

SELECTED_QUEUE_PREFIX = "Selected Queue: "
SELECTED_JOB_PREFIX = "Selected Job: "
DEFAULT_TAG_PREFIXES: tuple[str, ...] = (SELECTED_QUEUE_PREFIX, SELECTED_JOB_PREFIX)

_STREAM_LIMIT = 1024 * 1024


@dataclass(frozen=True)
class TaggedLine:
    """A recognized stdout line with its prefix stripped."""

    tag: str
    value: str


def resolve_executable(path: str | Path) -> str:
    """Return an existing file path or a command found on PATH."""
    candidate = Path(path)
    if candidate.is_file():
        return str(candidate)
    found = shutil.which(str(path))
    if found:
        return found
    raise SubprocessNotFound(
        f"Helper executable not found: {path}", context={"path": str(path)}
    )


def match_tag(line: str, prefixes: Sequence[str]) -> TaggedLine | None:
    for prefix in prefixes:
        if line.startswith(prefix):
            return TaggedLine(prefix, line[len(prefix):].strip())
    return None


class SubprocessAdapter:
    """Spawn a helper, stream its output into the run log, return tagged values."""

    def __init__(
        self,
        run_log: RunLog | None = None,
        *,
        tag_prefixes: Sequence[str] = DEFAULT_TAG_PREFIXES,
        terminate_timeout: float = 5.0,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._run_log = ensure_run_log(run_log)
        self._tag_prefixes = tuple(tag_prefixes)
        self._terminate_timeout = terminate_timeout
        self._env = dict(env) if env is not None else None
        self._active: asyncio.subprocess.Process | None = None

    @property
    def active_process(self) -> asyncio.subprocess.Process | None:
        return self._active

    async def run(self, path: str | Path, args: Sequence[str]) -> list[TaggedLine]:
        """Run `path` with `args` to completion.

        Returns the tagged stdout values in arrival order; an empty list when
        the helper printed none. Cancelling the caller terminates the child.
        """
        executable = resolve_executable(path)
        name = Path(executable).name
        env = None if self._env is None else {**os.environ, **self._env}
        try:
            process = await asyncio.create_subprocess_exec(
                executable,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                limit=_STREAM_LIMIT,
            )
        except FileNotFoundError as exc:
            raise SubprocessNotFound(
                f"Helper executable not found: {executable}",
                context={"path": executable},
                cause=exc,
            ) from exc
        except OSError as exc:
            raise SubprocessLaunchFailed(
                f"Failed to launch {name}: {exc}",
                context={"path": executable},
                cause=exc,
            ) from exc

        self._active = process
        tagged: list[TaggedLine] = []
        try:
            await asyncio.gather(
                self._pump_stdout(process.stdout, tagged),
                self._pump_stderr(process.stderr, name),
            )
            returncode = await process.wait()
        except asyncio.CancelledError:
            await self._terminate(process)
            raise
        finally:
            if self._active is process:
                self._active = None

        if returncode != 0:
            self._run_log.write(f"{name} exited with code {returncode}")
        return tagged

    async def terminate_active(self) -> None:
        """Stop the in-flight helper, if any."""
        process = self._active
        if process is not None:
            await self._terminate(process)

    async def _pump_stdout(
        self, stream: asyncio.StreamReader | None, tagged: list[TaggedLine]
    ) -> None:
        async for line in _iter_lines(stream):
            self._run_log.write(line)
            match = match_tag(line, self._tag_prefixes)
            if match is not None:
                tagged.append(match)

    async def _pump_stderr(self, stream: asyncio.StreamReader | None, name: str) -> None:
        async for line in _iter_lines(stream):
            self._run_log.write(f"ERROR: {line}")
            logger.debug("%s stderr: %s", name, line)

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self._terminate_timeout)
            return
        except asyncio.TimeoutError:
            logger.warning("Helper pid %s ignored terminate; killing", process.pid)
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()


async def _iter_lines(stream: asyncio.StreamReader | None):
    if stream is None:
        return
    while True:
        try:
            raw = await stream.readline()
        except ValueError as exc:
            logger.warning("Dropping oversized helper output line: %s", exc)
            continue
        if not raw:
            return
        line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        if line:
            yield line
