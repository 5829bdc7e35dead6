"""One-shot metrics collection trigger run after a completed run."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping, Sequence

from lt_common.errors import LTError, PipeConnectTimeout
from lt_common.models import METRICS_PIPE_PREFIX, RunConfig, generate_pipe_name
from lt_common.pipes import PipeListener
from lt_common.protocol import run_trigger
from lt_common.run_log import RunLog, ensure_run_log
from lt_controller.process import ProcessHandle, ProcessRole

logger = logging.getLogger(__name__)


def metrics_arguments(config: RunConfig, pipe_name: str) -> list[str]:
    creds = config.credentials
    return [
        "-Hostname", creds.host,
        "-SoapToken", creds.soap_token,
        "-VpsId", creds.vps_id,
        "-SessionId", creds.session_id,
        "-pipeName", pipe_name,
    ]


class MetricsTrigger:
    """Launch the metrics helper and send it a single ``RUN``.

    The helper process stays owned by the trigger until `dispose()`, which
    runs on the next run start, on cancel and on shutdown.
    """

    def __init__(
        self,
        command: Sequence[str],
        *,
        run_log: RunLog | None = None,
        pipe_dir: Path | str | None = None,
        connect_timeout: float = 10.0,
        termination_timeout: float = 5.0,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.command = list(command)
        self._run_log = ensure_run_log(run_log)
        self._pipe_dir = pipe_dir
        self._connect_timeout = connect_timeout
        self._termination_timeout = termination_timeout
        self._env = env
        self._handle: ProcessHandle | None = None
        self.fired_count = 0

    @property
    def handle(self) -> ProcessHandle | None:
        return self._handle

    async def fire(self, config: RunConfig) -> bool:
        """Start the helper and deliver ``RUN``; return True when it was delivered."""
        await self.dispose()
        pipe_name = generate_pipe_name(METRICS_PIPE_PREFIX)
        listener = PipeListener(pipe_name, self._pipe_dir)
        try:
            await listener.open()
            self._handle = ProcessHandle(
                ProcessRole.METRICS,
                [*self.command, *metrics_arguments(config, pipe_name)],
                run_log=self._run_log,
                env=self._env,
            )
            await self._handle.start()
            connection = await listener.wait_for_connection(self._connect_timeout)
            await connection.send(run_trigger())
            self.fired_count += 1
            self._run_log.write("Metrics collection triggered")
            return True
        except PipeConnectTimeout:
            self._run_log.write(
                f"Metrics helper did not connect within {self._connect_timeout}s"
            )
            return False
        except LTError as exc:
            self._run_log.write(f"ERROR: metrics trigger failed: {exc}")
            return False
        finally:
            await listener.close()

    async def dispose(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            await handle.dispose(self._termination_timeout)
