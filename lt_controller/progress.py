"""Controller-side progress tracking fed by the driver's progress pipe."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from lt_common.models import total_batches
from lt_common.pipes import PipeListener
from lt_common.protocol import DEFAULT_PROGRESS_PIPE, MessageKind, parse_message
from lt_common.run_log import RunLog, ensure_run_log
from lt_common.tasks import supervise

logger = logging.getLogger(__name__)

ProgressCallback = Callable[["ProgressSnapshot"], None]


@dataclass(frozen=True)
class ProgressSnapshot:
    batches_completed: int
    total_batches: int

    @property
    def percent(self) -> float:
        if self.total_batches <= 0:
            return 0.0
        return 100.0 * self.batches_completed / self.total_batches

    @property
    def finished(self) -> bool:
        return self.total_batches > 0 and self.batches_completed >= self.total_batches


class ProgressState:
    """Batch counter owned by the controller; never exceeds its total."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._completed = 0
        self._total = 0

    def configure(self, total_jobs: int, step_size: int) -> ProgressSnapshot:
        with self._lock:
            self._total = total_batches(total_jobs, step_size)
            self._completed = 0
            return ProgressSnapshot(self._completed, self._total)

    def increment(self) -> ProgressSnapshot:
        with self._lock:
            if self._completed < self._total:
                self._completed += 1
            return ProgressSnapshot(self._completed, self._total)

    def reset(self) -> ProgressSnapshot:
        with self._lock:
            self._completed = 0
            self._total = 0
            return ProgressSnapshot(0, 0)

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return ProgressSnapshot(self._completed, self._total)


class ProgressListener:
    """Serve the well-known progress pipe for the controller's lifetime.

    One peer is consumed at a time: its lines are applied in arrival order
    and, when it disconnects, a fresh listener takes its place. Failures are
    logged and retried after `retry_delay`.
    """

    def __init__(
        self,
        state: ProgressState | None = None,
        *,
        pipe_name: str = DEFAULT_PROGRESS_PIPE,
        pipe_dir: Path | str | None = None,
        run_log: RunLog | None = None,
        retry_delay: float = 1.0,
    ) -> None:
        self.state = state or ProgressState()
        self.pipe_name = pipe_name
        self._pipe_dir = pipe_dir
        self._run_log = ensure_run_log(run_log)
        self._retry_delay = retry_delay
        self._task: asyncio.Task[None] | None = None
        self._listener: PipeListener | None = None
        self._accepting = asyncio.Event()
        self._callbacks: list[ProgressCallback] = []
        self._error: BaseException | None = None
        self._peers_served = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def error(self) -> BaseException | None:
        """Last failure of the serving loop, if any."""
        return self._error

    @property
    def peers_served(self) -> int:
        return self._peers_served

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def _unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _unsubscribe

    def start(self) -> None:
        if self.running:
            return
        self._task = supervise(
            asyncio.create_task(self._serve_forever()),
            "progress listener",
            self._record_error,
        )

    async def wait_accepting(self, timeout: float | None = None) -> bool:
        try:
            await asyncio.wait_for(self._accepting.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._close_listener()

    def apply_line(self, line: str) -> ProgressSnapshot | None:
        """Apply one protocol line; unrelated or malformed lines are ignored."""
        message = parse_message(line)
        if message is None:
            logger.debug("Ignoring progress line %r", line)
            return None
        if message.kind is MessageKind.SET_PROGRESS_CONFIG:
            snapshot = self.state.configure(message.total_jobs, message.step_size)
            self._run_log.write(
                f"Progress configured: {snapshot.total_batches} batches"
            )
        elif message.kind is MessageKind.INCREMENT:
            snapshot = self.state.increment()
        else:
            return None
        self._notify(snapshot)
        return snapshot

    def _notify(self, snapshot: ProgressSnapshot) -> None:
        for callback in list(self._callbacks):
            try:
                callback(snapshot)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Progress callback %r failed: %s", callback, exc)

    def _record_error(self, exc: BaseException) -> None:
        self._error = exc
        self._run_log.write(f"ERROR: progress listener stopped: {exc}")

    async def _serve_forever(self) -> None:
        while True:
            try:
                await self._serve_one_peer()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                self._error = exc
                self._run_log.write(f"ERROR: progress pipe failure: {exc}")
                await asyncio.sleep(self._retry_delay)
            finally:
                await self._close_listener()

    async def _serve_one_peer(self) -> None:
        listener = PipeListener(self.pipe_name, self._pipe_dir)
        self._listener = listener
        await listener.open()
        self._accepting.set()
        connection = await listener.wait_for_connection()
        self._accepting.clear()
        self._peers_served += 1
        logger.debug("Progress peer %d connected", self._peers_served)
        async for line in connection.lines():
            self.apply_line(line)

    async def _close_listener(self) -> None:
        self._accepting.clear()
        listener, self._listener = self._listener, None
        if listener is not None:
            await listener.close()
