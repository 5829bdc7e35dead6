"""Launch, connect to, supervise and stop the driver process for one run."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from lt_common.errors import (
    DriverConnectFailed,
    LTError,
    PipeConnectTimeout,
    PipeError,
    RunAlreadyActive,
)
from lt_common.models import RunConfig
from lt_common.pipes import PipeListener
from lt_common.protocol import DEFAULT_PROGRESS_PIPE
from lt_common.protocol import cancel as cancel_message
from lt_common.run_log import RunLog, ensure_run_log
from lt_common.tasks import cancel_and_wait, supervise
from lt_controller.controller_state import RunState, RunStateMachine
from lt_controller.metrics_trigger import MetricsTrigger
from lt_controller.process import ProcessHandle, ProcessRole
from lt_controller.settings import ControllerSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunOutcome:
    """How a run ended."""

    state: RunState
    message: str
    exit_code: Optional[int] = None
    pipe_name: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.state is RunState.COMPLETED


class _Attempt(str, Enum):
    CONNECTED = "connected"
    STOPPED = "stopped"
    EXITED = "exited"
    TIMED_OUT = "timed_out"


class OrchestratorController:
    """Own the driver process and its duplex pipe for the current run.

    `start()` returns once the run is scheduled; `wait()` yields the
    `RunOutcome`. Only one run is active at a time and every handle of a
    previous run is released before the next one starts.
    """

    def __init__(
        self,
        settings: ControllerSettings | None = None,
        *,
        run_log: RunLog | None = None,
        state_machine: RunStateMachine | None = None,
        metrics_trigger: MetricsTrigger | None = None,
    ) -> None:
        self.settings = settings or ControllerSettings()
        self._run_log = ensure_run_log(run_log)
        self._machine = state_machine or RunStateMachine()
        if metrics_trigger is None and self.settings.metrics_command:
            metrics_trigger = MetricsTrigger(
                self.settings.metrics_command,
                run_log=self._run_log,
                pipe_dir=self.settings.resolved_pipe_dir(),
                connect_timeout=self.settings.metrics_connect_timeout,
                termination_timeout=self.settings.termination_timeout,
                env=self.settings.child_env(),
            )
        self.metrics_trigger = metrics_trigger

        self._config: RunConfig | None = None
        self._listener: PipeListener | None = None
        self._driver: ProcessHandle | None = None
        self._run_task: asyncio.Task[RunOutcome] | None = None
        self._metrics_task: asyncio.Task[bool] | None = None
        self._stop_requested = asyncio.Event()

    @property
    def state_machine(self) -> RunStateMachine:
        return self._machine

    @property
    def config(self) -> RunConfig | None:
        return self._config

    @property
    def pipe_name(self) -> str | None:
        return self._config.pipe_name if self._config else None

    @property
    def driver(self) -> ProcessHandle | None:
        return self._driver

    @property
    def is_active(self) -> bool:
        return self._run_task is not None and not self._run_task.done()

    @property
    def driver_connected(self) -> bool:
        return self._listener is not None and self._listener.is_connected

    async def start(self, config: RunConfig) -> RunConfig:
        """Schedule a run under a fresh pipe name and return its config."""
        if self.is_active:
            raise RunAlreadyActive(
                "A run is already active", context={"pipe_name": self.pipe_name}
            )
        await self._release_previous_run()
        config = config.with_fresh_pipe_name()
        self._config = config
        self._stop_requested = asyncio.Event()
        self._machine.transition(RunState.STARTING, config.pipe_name)
        self._run_log.write(
            f"Starting run {config.pipe_name}: {config.total_jobs} jobs "
            f"in steps of {config.step_size}"
        )
        self._run_task = asyncio.create_task(self._execute(config))
        return config

    async def wait(self) -> RunOutcome:
        if self._run_task is None:
            raise RuntimeError("No run has been started")
        return await asyncio.shield(self._run_task)

    async def run(self, config: RunConfig) -> RunOutcome:
        await self.start(config)
        return await self.wait()

    async def cancel(self) -> bool:
        """Stop the active run; return False when there was nothing to stop."""
        if not self.is_active or self._stop_requested.is_set():
            return False
        self._stop_requested.set()
        self._advance(RunState.STOPPING, "cancel requested")
        self._run_log.write("Cancel requested")

        listener = self._listener
        if listener is not None and listener.connection is not None and listener.is_connected:
            try:
                await listener.connection.send(cancel_message())
                self._run_log.write("Sent cancel to driver")
            except PipeError as exc:
                self._run_log.write(f"ERROR: failed to send cancel: {exc}")
        else:
            self._run_log.write("Pipe to driver was not connected.")

        driver = self._driver
        if driver is not None and driver.running:
            if not await driver.wait_for_exit(self.settings.cancel_grace_period):
                self._run_log.write("Driver did not stop in time; killing it")
                await driver.terminate(self.settings.termination_timeout)

        await self._dispose_metrics()
        if listener is not None:
            await listener.close()
        return True

    async def dispose(self) -> None:
        """Tear down the run, the driver and the metrics helper; idempotent."""
        if self.is_active:
            await self.cancel()
            task = self._run_task
            if task is not None:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        await self._release_previous_run()

    async def _execute(self, config: RunConfig) -> RunOutcome:
        try:
            state, message, exit_code = await self._drive(config)
        except asyncio.CancelledError:
            await self._release_run_resources()
            self._finish(RunState.CANCELLED, "Run task cancelled")
            raise
        except LTError as exc:
            state, message, exit_code = self._failure(str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Run %s crashed", config.pipe_name)
            state, message, exit_code = self._failure(f"Unexpected error: {exc}")
        finally:
            await self._release_run_resources()

        outcome = self._finish(state, message, exit_code)
        if outcome.state is RunState.COMPLETED and self.metrics_trigger is not None:
            self._metrics_task = supervise(
                asyncio.create_task(self.metrics_trigger.fire(config)),
                "metrics trigger",
            )
        return outcome

    async def _drive(self, config: RunConfig) -> tuple[RunState, str, Optional[int]]:
        settings = self.settings
        if self._stop_requested.is_set():
            return RunState.CANCELLED, "Run cancelled", None

        listener = PipeListener(config.pipe_name, settings.resolved_pipe_dir())
        self._listener = listener
        await listener.open()

        arguments = config.driver_arguments()
        if settings.progress_pipe_name != DEFAULT_PROGRESS_PIPE:
            arguments += ["-progressPipe", settings.progress_pipe_name]
        driver = ProcessHandle(
            ProcessRole.DRIVER,
            [*settings.driver_command, *arguments],
            run_log=self._run_log,
            env=settings.child_env(),
        )
        self._driver = driver
        await driver.start()

        self._advance(RunState.CONNECTING)
        if not await self._await_driver_connection(listener, driver):
            return RunState.CANCELLED, "Run cancelled", None

        self._advance(RunState.RUNNING)
        returncode = await driver.wait()
        if self._stop_requested.is_set():
            return RunState.CANCELLED, "Run cancelled", returncode
        if returncode == 0:
            return RunState.COMPLETED, "Run completed", returncode
        return RunState.FAILED, f"Driver exited with code {returncode}", returncode

    async def _await_driver_connection(
        self, listener: PipeListener, driver: ProcessHandle
    ) -> bool:
        """Retry until the driver connects; False when a cancel interrupted."""
        attempts = self.settings.connect_attempts
        for attempt in range(1, attempts + 1):
            result = await self._connect_attempt(listener, driver)
            if result is _Attempt.CONNECTED:
                self._run_log.write("Driver connected")
                return True
            if result is _Attempt.STOPPED:
                return False
            if result is _Attempt.EXITED:
                raise DriverConnectFailed(
                    f"Driver exited with code {driver.returncode} before connecting",
                    context={"pipe_name": listener.name, "attempt": attempt},
                )
            self._run_log.write(
                f"Waiting for driver connection (attempt {attempt}/{attempts})"
            )
            if attempt < attempts and await self._stop_aware_sleep(
                self.settings.connect_retry_delay
            ):
                return False
        raise DriverConnectFailed(
            f"Driver did not connect after {attempts} attempts",
            context={"pipe_name": listener.name, "attempts": attempts},
        )

    async def _connect_attempt(
        self, listener: PipeListener, driver: ProcessHandle
    ) -> _Attempt:
        timeout = self.settings.connect_attempt_timeout
        connect = asyncio.ensure_future(listener.wait_for_connection(timeout))
        exited = asyncio.ensure_future(driver.wait_for_exit(timeout))
        stopped = asyncio.ensure_future(self._stop_requested.wait())
        try:
            done, _ = await asyncio.wait(
                {connect, exited, stopped}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            await cancel_and_wait(connect, exited, stopped)

        if connect in done and not connect.cancelled():
            error = connect.exception()
            if error is None:
                return _Attempt.CONNECTED
            if not isinstance(error, PipeConnectTimeout):
                raise error
        if stopped in done:
            return _Attempt.STOPPED
        if listener.connection is not None:
            return _Attempt.CONNECTED
        if exited in done and not exited.cancelled() and exited.result():
            return _Attempt.EXITED
        return _Attempt.TIMED_OUT

    async def _stop_aware_sleep(self, delay: float) -> bool:
        try:
            await asyncio.wait_for(self._stop_requested.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    def _failure(self, message: str) -> tuple[RunState, str, Optional[int]]:
        if self._stop_requested.is_set():
            return RunState.CANCELLED, "Run cancelled", None
        self._run_log.write(f"ERROR: {message}")
        driver = self._driver
        return RunState.FAILED, message, driver.returncode if driver else None

    def _advance(self, state: RunState, reason: str | None = None) -> None:
        if self._stop_requested.is_set() and state is not RunState.STOPPING:
            return
        try:
            self._machine.transition(state, reason)
        except ValueError as exc:
            logger.debug("Skipping state change: %s", exc)
            return
        self._run_log.write(f"Run state: {state.value}")

    def _finish(
        self, state: RunState, message: str, exit_code: Optional[int] = None
    ) -> RunOutcome:
        try:
            self._machine.transition(state, message)
        except ValueError as exc:
            logger.debug("Run already finished: %s", exc)
        self._run_log.write(f"Run {state.value}: {message}")
        return RunOutcome(
            state=state, message=message, exit_code=exit_code, pipe_name=self.pipe_name
        )

    async def _release_run_resources(self) -> None:
        listener, self._listener = self._listener, None
        if listener is not None:
            try:
                await listener.close()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to close driver pipe: %s", exc)
        driver = self._driver
        if driver is not None:
            await driver.dispose(self.settings.termination_timeout)

    async def _dispose_metrics(self) -> None:
        task, self._metrics_task = self._metrics_task, None
        await cancel_and_wait(task)
        if self.metrics_trigger is not None:
            try:
                await self.metrics_trigger.dispose()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to stop metrics helper: %s", exc)

    async def _release_previous_run(self) -> None:
        await self._dispose_metrics()
        await self._release_run_resources()
        self._driver = None
