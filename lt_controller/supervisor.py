"""Host-facing facade: one active run, pull status, push notifications."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from lt_common.errors import LTError, RunAlreadyActive
from lt_common.models import RunConfig
from lt_common.run_log import RunLog, ensure_run_log
from lt_controller.controller_state import RunState, RunStateMachine, StateCallback
from lt_controller.orchestrator import OrchestratorController, RunOutcome
from lt_controller.progress import (
    ProgressCallback,
    ProgressListener,
    ProgressSnapshot,
    ProgressState,
)
from lt_controller.settings import ControllerSettings

logger = logging.getLogger(__name__)

_ACCEPT_TIMEOUT = 5.0


@dataclass(frozen=True)
class RunStatus:
    state: RunState
    reason: Optional[str]
    progress: ProgressSnapshot
    pipe_name: Optional[str]

    @property
    def active(self) -> bool:
        return self.state not in {
            RunState.IDLE,
            RunState.COMPLETED,
            RunState.CANCELLED,
            RunState.FAILED,
        }


class RunSupervisor:
    """Own the progress listener and the orchestrator for the host's lifetime.

    Driver-side and pipe-side failures never escape: they end the run as
    `failed` with the reason written to the run log. Only misuse (starting a
    second run while one is active) raises `RunAlreadyActive`.
    """

    def __init__(
        self,
        settings: ControllerSettings | None = None,
        *,
        run_log: RunLog | None = None,
        orchestrator: OrchestratorController | None = None,
        progress_listener: ProgressListener | None = None,
    ) -> None:
        self.settings = settings or ControllerSettings()
        self._run_log = ensure_run_log(run_log)
        if orchestrator is None:
            orchestrator = OrchestratorController(self.settings, run_log=self._run_log)
        self.orchestrator = orchestrator
        self._machine: RunStateMachine = orchestrator.state_machine
        self.progress = progress_listener or ProgressListener(
            ProgressState(),
            pipe_name=self.settings.progress_pipe_name,
            pipe_dir=self.settings.resolved_pipe_dir(),
            run_log=self._run_log,
            retry_delay=self.settings.progress_retry_delay,
        )
        self._opened = False
        self._last_outcome: RunOutcome | None = None

    @property
    def last_outcome(self) -> RunOutcome | None:
        return self._last_outcome

    async def open(self) -> "RunSupervisor":
        if not self._opened:
            self.progress.start()
            self._opened = True
        return self

    async def close(self) -> None:
        try:
            await self.orchestrator.dispose()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to dispose orchestrator: %s", exc)
        await self.progress.stop()
        self._opened = False

    async def __aenter__(self) -> "RunSupervisor":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def start_run(self, config: RunConfig) -> RunConfig:
        """Start a run; raise `RunAlreadyActive` instead of queueing."""
        if self.orchestrator.is_active:
            raise RunAlreadyActive(
                "A run is already active",
                context={"pipe_name": self.orchestrator.pipe_name},
            )
        await self.open()
        self._last_outcome = None
        self.progress.state.reset()
        if not await self.progress.wait_accepting(_ACCEPT_TIMEOUT):
            self._run_log.write("Progress pipe is not accepting yet; starting anyway")
        return await self.orchestrator.start(config)

    async def cancel_run(self) -> bool:
        try:
            return await self.orchestrator.cancel()
        except LTError as exc:
            self._run_log.write(f"ERROR: cancel failed: {exc}")
            return False

    async def wait(self) -> RunOutcome:
        try:
            outcome = await self.orchestrator.wait()
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("Run ended with an unexpected error")
            self._run_log.write(f"ERROR: {exc}")
            outcome = RunOutcome(
                RunState.FAILED, str(exc), pipe_name=self.orchestrator.pipe_name
            )
        self._last_outcome = outcome
        return outcome

    async def run(self, config: RunConfig) -> RunOutcome:
        await self.start_run(config)
        return await self.wait()

    def status(self) -> RunStatus:
        state, reason = self._machine.snapshot()
        return RunStatus(
            state=state,
            reason=reason,
            progress=self.progress.state.snapshot(),
            pipe_name=self.orchestrator.pipe_name,
        )

    def on_progress(self, callback: ProgressCallback) -> Callable[[], None]:
        return self.progress.subscribe(callback)

    def on_state_change(self, callback: StateCallback) -> Callable[[], None]:
        return self._machine.register_callback(callback)
