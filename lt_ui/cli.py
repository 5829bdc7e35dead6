"""
Command-line interface for the print load tester.

`lt run` starts a run against a print gateway and renders its progress;
`lt settings` shows the resolved controller settings.
"""

from __future__ import annotations

import asyncio
import signal
from contextlib import suppress
from pathlib import Path
from typing import Callable, List, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from lt_common.errors import ConfigurationError
from lt_common.logging import configure_logging
from lt_common.models import GatewayCredentials, RunConfig, parse_queue_list
from lt_common.run_log import FileRunLog, LoggerRunLog, RunLog, TeeRunLog
from lt_controller.controller_state import RunState
from lt_controller.orchestrator import RunOutcome
from lt_controller.settings import ControllerSettings
from lt_controller.supervisor import RunSupervisor
from lt_ui.interrupts import CancelThenExitStateMachine, SigintDecision
from lt_ui.progress import ConsoleRunLog, RichProgressHandle, rich_progress

app = typer.Typer(
    help="Drive synthetic print load against a print gateway.", no_args_is_help=True
)
console = Console()

EXIT_INTERRUPTED = 130


def load_settings(settings_file: Optional[Path]) -> ControllerSettings:
    if settings_file is not None:
        return ControllerSettings.from_file(settings_file)
    return ControllerSettings.from_env()


def build_run_config(
    *,
    total_jobs: int,
    step: int,
    host: str,
    username: str,
    password: str,
    session_id: str,
    queues: List[str],
    soap_token: str = "",
    vps_id: str = "",
) -> RunConfig:
    """Validate CLI values into a RunConfig, raising ConfigurationError."""
    queue_names = [name for item in queues for name in parse_queue_list(item)]
    try:
        return RunConfig(
            total_jobs=total_jobs,
            step_size=step,
            credentials=GatewayCredentials(
                username=username,
                password=password,
                session_id=session_id,
                host=host,
                soap_token=soap_token,
                vps_id=vps_id,
            ),
            queues=tuple(queue_names),
        )
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid run parameters: {exc}", cause=exc) from exc


def build_settings_table(settings: ControllerSettings) -> Table:
    table = Table(title="Controller settings")
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    for name, value in settings.model_dump().items():
        if isinstance(value, list):
            value = " ".join(str(item) for item in value)
        elif isinstance(value, dict):
            value = ", ".join(f"{key}={val}" for key, val in value.items()) or "-"
        table.add_row(name, "-" if value is None else str(value))
    table.add_row("pipe_dir (resolved)", str(settings.resolved_pipe_dir()))
    return table


def outcome_exit_code(outcome: RunOutcome) -> int:
    return 1 if outcome.state is RunState.FAILED else 0


def dispatch_sigint(
    decision: SigintDecision,
    *,
    request_cancel: Callable[[], None],
    abandon: Callable[[], None],
) -> None:
    """Only the first Ctrl+C of an active run cancels; any other press abandons."""
    if decision is SigintDecision.REQUEST_CANCEL:
        request_cancel()
    else:
        abandon()


async def execute_run(
    config: RunConfig,
    settings: ControllerSettings,
    run_log: RunLog,
    *,
    show_progress: bool = True,
) -> RunOutcome:
    """Run one load test, wiring Ctrl+C to cancel and then to abandon."""
    loop = asyncio.get_running_loop()
    main_task = asyncio.current_task()
    interrupts = CancelThenExitStateMachine()

    async with RunSupervisor(settings, run_log=run_log) as supervisor:

        def _request_cancel() -> None:
            console.print(
                "[yellow]Cancelling run; press Ctrl+C again to exit immediately.[/yellow]"
            )
            loop.create_task(supervisor.cancel_run())

        def _abandon() -> None:
            if main_task is not None:
                main_task.cancel()

        def _on_sigint() -> None:
            dispatch_sigint(
                interrupts.on_sigint(run_active=supervisor.status().active),
                request_cancel=_request_cancel,
                abandon=_abandon,
            )

        with suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(signal.SIGINT, _on_sigint)
        progress = rich_progress(console)
        try:
            with progress:
                task_id = progress.add_task("Submitting jobs", total=None)
                handle = RichProgressHandle(progress, task_id)
                unsubscribe = (
                    supervisor.on_progress(handle.update) if show_progress else None
                )
                try:
                    outcome = await supervisor.run(config)
                finally:
                    if unsubscribe is not None:
                        unsubscribe()
                    handle.finish()
        finally:
            interrupts.mark_finished()
            with suppress(NotImplementedError, RuntimeError):
                loop.remove_signal_handler(signal.SIGINT)
    return outcome


@app.command("run")
def run(
    total_jobs: int = typer.Option(..., "--total-jobs", "-n", help="Jobs to submit."),
    step: int = typer.Option(..., "--step", "-s", help="Jobs per batch."),
    host: str = typer.Option(..., "--host", help="Gateway host name."),
    username: str = typer.Option(..., "--username", "-u", envvar="LT_USERNAME"),
    password: str = typer.Option(
        ..., "--password", "-p", envvar="LT_PASSWORD", help="Gateway password."
    ),
    session_id: str = typer.Option(..., "--session-id", envvar="LT_SESSION_ID"),
    queues: List[str] = typer.Option(
        ..., "--queue", "-q", help="Queue name(s); repeat or separate with spaces/commas."
    ),
    soap_token: str = typer.Option("", "--soap-token", envvar="LT_SOAP_TOKEN"),
    vps_id: str = typer.Option("", "--vps-id"),
    settings_file: Optional[Path] = typer.Option(
        None, "--settings", "-c", help="Controller settings file (YAML or JSON)."
    ),
    run_log_file: Optional[Path] = typer.Option(
        None, "--run-log", help="Append the human-readable run log to this file."
    ),
    quiet: bool = typer.Option(False, "--quiet", help="Do not echo the run log."),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging."),
) -> None:
    """Start a run and follow it until it completes, fails or is cancelled."""
    configure_logging(debug=debug, force=debug)
    try:
        settings = load_settings(settings_file)
        config = build_run_config(
            total_jobs=total_jobs,
            step=step,
            host=host,
            username=username,
            password=password,
            session_id=session_id,
            queues=queues,
            soap_token=soap_token,
            vps_id=vps_id,
        )
    except ConfigurationError as exc:
        console.print(str(exc), style="red", markup=False)
        raise typer.Exit(1)

    sinks: list[RunLog] = [LoggerRunLog()]
    if not quiet:
        sinks.append(ConsoleRunLog(console))
    if run_log_file is not None:
        sinks.append(FileRunLog(run_log_file))
    run_log = TeeRunLog(*sinks)

    try:
        outcome = asyncio.run(execute_run(config, settings, run_log))
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("[red]Run abandoned.[/red]")
        raise typer.Exit(EXIT_INTERRUPTED)

    color = {"completed": "green", "cancelled": "yellow"}.get(outcome.state.value, "red")
    console.print(
        f"[{color}]Run {outcome.state.value}[/{color}]: {escape(outcome.message)}"
    )
    raise typer.Exit(outcome_exit_code(outcome))


@app.command("settings")
def show_settings(
    settings_file: Optional[Path] = typer.Option(
        None, "--settings", "-c", help="Controller settings file (YAML or JSON)."
    ),
) -> None:
    """Print the resolved controller settings."""
    try:
        settings = load_settings(settings_file)
    except ConfigurationError as exc:
        console.print(str(exc), style="red", markup=False)
        raise typer.Exit(1)
    console.print(build_settings_table(settings))


def main() -> None:
    """Invoke the lt Typer application."""
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
