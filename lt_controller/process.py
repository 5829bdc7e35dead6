"""Owned child processes (driver, metrics helper) with streamed output."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from enum import Enum
from typing import Mapping, Sequence

from lt_common.errors import SubprocessLaunchFailed, SubprocessNotFound
from lt_common.run_log import RunLog, ensure_run_log
from lt_common.tasks import cancel_and_wait

logger = logging.getLogger(__name__)

_STREAM_LIMIT = 1024 * 1024


class ProcessRole(str, Enum):
    DRIVER = "driver"
    METRICS = "metrics"


class ProcessHandle:
    """A child process started in its own session.

    Output lines are copied to the run log prefixed with the role. Stopping
    signals the whole process group so helpers spawned by the child go with
    it. `terminate()` and `dispose()` are safe to call repeatedly.
    """

    def __init__(
        self,
        role: ProcessRole,
        command: Sequence[str],
        *,
        run_log: RunLog | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.role = role
        self.command = list(command)
        self._run_log = ensure_run_log(run_log)
        self._env = dict(env) if env is not None else None
        self._process: asyncio.subprocess.Process | None = None
        self._pumps: list[asyncio.Task[None]] = []

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process else None

    @property
    def started(self) -> bool:
        return self._process is not None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def start(self) -> "ProcessHandle":
        if self._process is not None:
            raise RuntimeError(f"{self.role.value} process already started")
        logger.debug("Starting %s: %s", self.role.value, self.command[0])
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._env,
                start_new_session=True,
                limit=_STREAM_LIMIT,
            )
        except FileNotFoundError as exc:
            raise SubprocessNotFound(
                f"{self.role.value} executable not found: {self.command[0]}",
                context={"command": self.command[0]},
                cause=exc,
            ) from exc
        except OSError as exc:
            raise SubprocessLaunchFailed(
                f"Failed to start {self.role.value}: {exc}",
                context={"command": self.command[0]},
                cause=exc,
            ) from exc
        self._pumps = [
            asyncio.create_task(self._pump(self._process.stdout, "")),
            asyncio.create_task(self._pump(self._process.stderr, "ERROR: ")),
        ]
        self._run_log.write(f"Started {self.role.value} (pid {self._process.pid})")
        return self

    async def _pump(self, stream: asyncio.StreamReader | None, marker: str) -> None:
        if stream is None:
            return
        prefix = f"{self.role.value} {marker}" if marker else f"{self.role.value}: "
        while True:
            try:
                raw = await stream.readline()
            except ValueError as exc:
                logger.warning("Dropping oversized %s output line: %s", self.role.value, exc)
                continue
            if not raw:
                return
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if line:
                self._run_log.write(f"{prefix}{line}")

    async def wait(self) -> int:
        """Wait for exit and for the output to be fully copied."""
        if self._process is None:
            raise RuntimeError(f"{self.role.value} process not started")
        returncode = await self._process.wait()
        if self._pumps:
            await asyncio.gather(*self._pumps, return_exceptions=True)
        return returncode

    async def wait_for_exit(self, timeout: float) -> bool:
        """Return True when the process exited within `timeout` seconds."""
        if self._process is None:
            return True
        try:
            await asyncio.wait_for(asyncio.shield(self._process.wait()), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def terminate(self, timeout: float = 5.0) -> int | None:
        """SIGTERM the process group, then SIGKILL it after `timeout`."""
        process = self._process
        if process is None:
            return None
        if process.returncode is None:
            self._signal_group(signal.SIGTERM)
            if not await self.wait_for_exit(timeout):
                logger.warning(
                    "%s pid %s ignored SIGTERM; killing", self.role.value, process.pid
                )
                await self.kill()
        return process.returncode

    async def kill(self) -> None:
        process = self._process
        if process is None or process.returncode is not None:
            return
        self._signal_group(signal.SIGKILL)
        try:
            await process.wait()
        except ProcessLookupError:
            pass

    def _signal_group(self, sig: signal.Signals) -> None:
        process = self._process
        if process is None or process.returncode is not None:
            return
        try:
            os.killpg(os.getpgid(process.pid), sig)
        except ProcessLookupError:
            return
        except OSError as exc:
            logger.debug("killpg failed for %s: %s", self.role.value, exc)
            try:
                process.send_signal(sig)
            except ProcessLookupError:
                return

    async def dispose(self, timeout: float = 5.0) -> None:
        """Stop the process if needed and release the output pumps."""
        try:
            await self.terminate(timeout)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to stop %s: %s", self.role.value, exc)
        await cancel_and_wait(*self._pumps)
