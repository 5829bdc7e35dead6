"""Driver process entry point (``python -m lt_driver``)."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from contextlib import suppress
from typing import Sequence

from lt_common.errors import ConfigurationError
from lt_common.logging import configure_logging
from lt_common.pipes import PIPE_DIR_ENV
from lt_common.run_log import FileRunLog, RunLog, StreamRunLog, TeeRunLog
from lt_common.subprocess_adapter import SubprocessAdapter
from lt_driver.args import DriverArgs
from lt_driver.cancellation import CancellationSignal
from lt_driver.helpers import HelperPaths
from lt_driver.worker import DriverOutcome, DriverTimings, DriverWorker

logger = logging.getLogger(__name__)

RUN_LOG_ENV = "LT_RUN_LOG"


def build_run_log() -> RunLog:
    """Stdout for the controller to capture, plus `LT_RUN_LOG` when set."""
    stream = StreamRunLog()
    path = os.environ.get(RUN_LOG_ENV)
    if path:
        return TeeRunLog(stream, FileRunLog(path))
    return stream


def _install_signal_handlers(cancel: CancellationSignal) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, cancel.fire, f"received {sig.name}")


async def run_driver(args: DriverArgs, run_log: RunLog) -> DriverOutcome:
    cancel = CancellationSignal()
    _install_signal_handlers(cancel)
    worker = DriverWorker(
        args.to_run_config(),
        helpers=HelperPaths.from_env(),
        adapter=SubprocessAdapter(run_log),
        run_log=run_log,
        signal=cancel,
        timings=DriverTimings.from_env(),
        progress_pipe_name=args.progress_pipe,
        pipe_dir=os.environ.get(PIPE_DIR_ENV) or None,
    )
    return await worker.run()


def main(argv: Sequence[str] | None = None) -> int:
    configure_logging()
    argv = list(sys.argv[1:] if argv is None else argv)
    run_log = build_run_log()
    try:
        args = DriverArgs.from_argv(argv)
        args.to_run_config()
    except ConfigurationError as exc:
        run_log.write(f"ERROR: {exc}")
        logger.error("Driver not started: %s", exc, extra={"error": exc.to_dict()})
        return 1

    run_log.write(
        f"Driver starting: {args.total_jobs} jobs in steps of {args.step_value}"
    )
    outcome = asyncio.run(run_driver(args, run_log))
    run_log.write(
        f"Driver finished: {outcome.state.value}, "
        f"{outcome.total_submitted}/{args.total_jobs} jobs submitted"
    )
    return outcome.exit_code


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
