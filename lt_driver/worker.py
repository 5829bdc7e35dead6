"""Batch submission loop run inside the driver process."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Mapping, Optional

from lt_common.config.env import collect_env, parse_float_env, parse_int_env
from lt_common.errors import (
    ControlChannelUnreachable,
    LTError,
    PipeError,
    ProgressChannelUnreachable,
    SelectionContractViolation,
    SubprocessError,
    error_to_payload,
)
from lt_common.models import RunConfig
from lt_common.pipes import PipeConnection, connect_pipe
from lt_common.protocol import (
    DEFAULT_PROGRESS_PIPE,
    ControlMessage,
    MessageKind,
    increment,
    parse_message,
    set_progress_config,
)
from lt_common.run_log import RunLog, ensure_run_log
from lt_common.subprocess_adapter import SubprocessAdapter, TaggedLine
from lt_common.tasks import Interrupted, cancel_and_wait, run_until_set, supervise
from lt_driver.cancellation import CancellationSignal
from lt_driver.helpers import (
    HelperPaths,
    metrics_monitor_arguments,
    selection_arguments,
    submission_arguments,
)

logger = logging.getLogger(__name__)

Connector = Callable[..., Awaitable[PipeConnection]]


class DriverState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    SUBMITTING = "submitting"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


_TIMING_ENV = {
    "LT_CONNECT_TIMEOUT": "connect_timeout",
    "LT_INTER_BATCH_DELAY": "inter_batch_delay",
    "LT_METRICS_THRESHOLD": "metrics_threshold",
}


@dataclass(frozen=True)
class DriverTimings:
    """Tunable constants of the submission loop."""

    connect_timeout: float = 5.0
    inter_batch_delay: float = 0.75
    metrics_threshold: float = 0.75
    max_submission_failures: Optional[int] = None

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "DriverTimings":
        env = os.environ if env is None else env
        values = collect_env(env, _TIMING_ENV, parse_float_env)
        values.update(
            collect_env(
                env,
                {"LT_MAX_SUBMISSION_FAILURES": "max_submission_failures"},
                parse_int_env,
            )
        )
        return dataclasses.replace(cls(), **values)


@dataclass(frozen=True)
class DriverOutcome:
    state: DriverState
    total_submitted: int
    batches_completed: int
    error: Optional[LTError] = None

    @property
    def exit_code(self) -> int:
        return 1 if self.state is DriverState.FAILED else 0


class DriverWorker:
    """Submit a run's jobs in batches, reporting progress and honouring cancel.

    One worker drives one run: `run()` connects to the controller's duplex
    channel and the progress channel, then alternates selection and
    submission helper calls until every job went out, the controller sent
    `cancel`, or a fatal error occurred. All channels and helper processes
    are released before `run()` returns.
    """

    def __init__(
        self,
        config: RunConfig,
        *,
        helpers: HelperPaths,
        adapter: SubprocessAdapter | None = None,
        run_log: RunLog | None = None,
        signal: CancellationSignal | None = None,
        timings: DriverTimings | None = None,
        progress_pipe_name: str = DEFAULT_PROGRESS_PIPE,
        pipe_dir: Path | str | None = None,
        connector: Connector = connect_pipe,
    ) -> None:
        self._config = config
        self._helpers = helpers
        self._run_log = ensure_run_log(run_log)
        self._adapter = adapter or SubprocessAdapter(self._run_log)
        self._signal = signal or CancellationSignal()
        self._timings = timings or DriverTimings()
        self._progress_pipe_name = progress_pipe_name
        self._pipe_dir = pipe_dir
        self._connector = connector

        self._state = DriverState.IDLE
        self._history: list[DriverState] = [DriverState.IDLE]
        self._control: PipeConnection | None = None
        self._progress: PipeConnection | None = None
        self._listener_task: asyncio.Task[None] | None = None
        self.listener_error: BaseException | None = None

        self._total_submitted = 0
        self._batches_completed = 0
        self._submission_failures = 0
        self._metrics_started = False
        self._progress_write_failed = False

    @property
    def state(self) -> DriverState:
        return self._state

    @property
    def history(self) -> list[DriverState]:
        return list(self._history)

    @property
    def signal(self) -> CancellationSignal:
        return self._signal

    @property
    def total_submitted(self) -> int:
        return self._total_submitted

    @property
    def batches_completed(self) -> int:
        return self._batches_completed

    @property
    def metrics_started(self) -> bool:
        return self._metrics_started

    async def run(self) -> DriverOutcome:
        if self._state is not DriverState.IDLE:
            raise RuntimeError("DriverWorker.run() can only be called once")
        error: LTError | None = None
        try:
            await self._connect_channels()
            self._transition(DriverState.SUBMITTING)
            await self._submission_loop()
        except LTError as exc:
            error = exc
            self._run_log.write(f"ERROR: {exc}")
            logger.error("Driver run failed: %s", exc, extra=error_to_payload(exc))
        finally:
            await self._dispose()

        if error is not None:
            self._transition(DriverState.FAILED, error.error_type)
        elif self._signal.is_set:
            self._transition(DriverState.CANCELLED, self._signal.reason)
        else:
            self._transition(DriverState.COMPLETED)
        return DriverOutcome(
            state=self._state,
            total_submitted=self._total_submitted,
            batches_completed=self._batches_completed,
            error=error,
        )

    def _transition(self, state: DriverState, reason: str | None = None) -> None:
        self._state = state
        self._history.append(state)
        suffix = f" ({reason})" if reason else ""
        self._run_log.write(f"Driver state: {state.value}{suffix}")

    async def _connect_channels(self) -> None:
        self._transition(DriverState.CONNECTING)
        timeout = self._timings.connect_timeout
        pipe_name = self._config.pipe_name
        try:
            self._control = await self._connector(
                pipe_name, timeout=timeout, pipe_dir=self._pipe_dir
            )
        except PipeError as exc:
            raise ControlChannelUnreachable(
                f"Could not connect to controller pipe {pipe_name}",
                context={"pipe_name": pipe_name, "timeout": timeout},
                cause=exc,
            ) from exc
        self._run_log.write(f"Connected to controller pipe {pipe_name}")
        self._listener_task = supervise(
            asyncio.create_task(self._listen_for_cancel(self._control)),
            "cancel listener",
            self._record_listener_error,
        )

        try:
            self._progress = await self._connector(
                self._progress_pipe_name, timeout=timeout, pipe_dir=self._pipe_dir
            )
        except PipeError as exc:
            raise ProgressChannelUnreachable(
                f"Could not connect to progress pipe {self._progress_pipe_name}",
                context={"pipe_name": self._progress_pipe_name, "timeout": timeout},
                cause=exc,
            ) from exc
        self._run_log.write(f"Connected to progress pipe {self._progress_pipe_name}")
        await self._send_progress(
            set_progress_config(self._config.total_jobs, self._config.step_size)
        )

    async def _listen_for_cancel(self, connection: PipeConnection) -> None:
        while True:
            try:
                line = await connection.read_line()
            except PipeError as exc:
                self._record_listener_error(exc)
                return
            if line is None:
                return
            message = parse_message(line)
            if message is not None and message.kind is MessageKind.CANCEL:
                self._run_log.write("Cancel requested by controller")
                self._signal.fire("cancel requested by controller")
                return

    def _record_listener_error(self, exc: BaseException) -> None:
        self.listener_error = exc
        self._run_log.write(f"ERROR: cancel listener stopped: {exc}")

    async def _submission_loop(self) -> None:
        total_jobs = self._config.total_jobs
        while self._total_submitted < total_jobs and not self._signal.is_set:
            try:
                await self._submit_next_batch()
                if await self._signal.sleep(self._timings.inter_batch_delay):
                    break
            except Interrupted:
                self._run_log.write("Helper interrupted by cancellation")
                break

    async def _submit_next_batch(self) -> None:
        config = self._config
        credentials = config.credentials
        batch_size = config.batch_plan().batch_size(self._total_submitted)
        queue, job = await self._select()
        self._run_log.write(f"Submitting {batch_size} jobs of {job} to {queue}")
        try:
            await self._call(
                self._helpers.submission,
                submission_arguments(
                    credentials.gateway_url,
                    credentials.username,
                    credentials.password,
                    queue,
                    job,
                    batch_size,
                ),
            )
        except SubprocessError as exc:
            self._submission_failures += 1
            self._run_log.write(f"ERROR: submission failed: {exc}")
            limit = self._timings.max_submission_failures
            if limit is not None and self._submission_failures >= limit:
                raise
            return

        self._total_submitted += batch_size
        self._batches_completed += 1
        self._run_log.write(
            f"Submitted batch {self._batches_completed}: "
            f"{self._total_submitted}/{config.total_jobs} jobs"
        )
        await self._send_progress(increment())
        await self._maybe_start_metrics_monitor()

    async def _select(self) -> tuple[str, str]:
        try:
            values = await self._call(
                self._helpers.selection, selection_arguments(self._config.queues)
            )
        except SubprocessError as exc:
            raise SelectionContractViolation(
                f"Selection helper failed: {exc}", cause=exc
            ) from exc
        if len(values) < 2:
            raise SelectionContractViolation(
                "Selection helper did not report a queue and a job",
                context={"values": [line.value for line in values]},
            )
        return values[0].value, values[1].value

    async def _maybe_start_metrics_monitor(self) -> None:
        if self._metrics_started:
            return
        threshold = self._timings.metrics_threshold * self._config.total_jobs
        if self._total_submitted < threshold:
            return
        self._metrics_started = True
        self._run_log.write("Starting metrics monitor")
        try:
            await self._call(
                self._helpers.metrics_monitor,
                metrics_monitor_arguments(
                    self._config.credentials.session_id, self._config.total_jobs
                ),
            )
        except SubprocessError as exc:
            self._run_log.write(f"ERROR: metrics monitor failed: {exc}")

    async def _call(self, path: Path, args: list[str]) -> list[TaggedLine]:
        return await run_until_set(self._adapter.run(path, args), self._signal.event)

    async def _send_progress(self, message: ControlMessage) -> None:
        if self._progress is None:
            return
        try:
            await self._progress.send(message)
        except PipeError as exc:
            if not self._progress_write_failed:
                self._progress_write_failed = True
                self._run_log.write(f"ERROR: progress update failed: {exc}")

    async def _dispose(self) -> None:
        await cancel_and_wait(self._listener_task)
        try:
            await self._adapter.terminate_active()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to stop helper process: %s", exc)
        for connection in (self._control, self._progress):
            if connection is None:
                continue
            try:
                await connection.close()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to close pipe %s: %s", connection.name, exc)
