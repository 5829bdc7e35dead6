"""Ctrl+C handling for `lt run`: first press cancels, second one exits."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class InterruptState(str, Enum):
    RUNNING = "running"
    STOPPING = "stopping"
    FINISHED = "finished"


class SigintDecision(str, Enum):
    """Decision returned by the SIGINT state machine."""

    REQUEST_CANCEL = "request_cancel"
    EXIT_NOW = "exit_now"
    DELEGATE = "delegate"


@dataclass(slots=True)
class CancelThenExitStateMachine:
    """The first Ctrl+C requests a graceful cancel; a second one while the
    run is stopping abandons it immediately."""

    state: InterruptState = InterruptState.RUNNING

    def on_sigint(self, *, run_active: bool) -> SigintDecision:
        if not run_active or self.state is InterruptState.FINISHED:
            return SigintDecision.DELEGATE
        if self.state is InterruptState.RUNNING:
            self.state = InterruptState.STOPPING
            return SigintDecision.REQUEST_CANCEL
        return SigintDecision.EXIT_NOW

    def mark_finished(self) -> None:
        self.state = InterruptState.FINISHED
