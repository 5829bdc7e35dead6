"""Run lifecycle state machine primitives."""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    """Lifecycle states of a single run as seen by the controller."""

    IDLE = "idle"
    STARTING = "starting"
    CONNECTING = "connecting"
    RUNNING = "running"
    STOPPING = "stopping"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATES = frozenset(
    {RunState.COMPLETED, RunState.CANCELLED, RunState.FAILED}
)

# Terminal states are reachable from anywhere (see `transition`).
_ALLOWED_TRANSITIONS = {
    RunState.IDLE: {RunState.STARTING},
    RunState.STARTING: {RunState.CONNECTING, RunState.STOPPING},
    RunState.CONNECTING: {RunState.RUNNING, RunState.STOPPING},
    RunState.RUNNING: {RunState.STOPPING},
    RunState.STOPPING: set(),
    RunState.COMPLETED: {RunState.STARTING},
    RunState.CANCELLED: {RunState.STARTING},
    RunState.FAILED: {RunState.STARTING},
}

StateCallback = Callable[[RunState, Optional[str]], None]


class RunStateMachine:
    """Thread-safe run state tracker."""

    def __init__(self) -> None:
        self._state = RunState.IDLE
        self._lock = threading.RLock()
        self._reason: Optional[str] = None
        self._callbacks: list[StateCallback] = []

    @property
    def state(self) -> RunState:
        with self._lock:
            return self._state

    @property
    def reason(self) -> Optional[str]:
        with self._lock:
            return self._reason

    def is_terminal(self) -> bool:
        with self._lock:
            return self._state in TERMINAL_STATES

    def is_active(self) -> bool:
        with self._lock:
            return self._state not in TERMINAL_STATES and self._state is not RunState.IDLE

    def register_callback(self, callback: StateCallback) -> Callable[[], None]:
        """Register a callback invoked on every transition; return an unsubscriber."""
        with self._lock:
            self._callbacks.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return _unsubscribe

    def transition(self, new_state: RunState, reason: Optional[str] = None) -> RunState:
        """Attempt a state transition; raise ValueError if invalid."""
        with self._lock:
            allowed = _ALLOWED_TRANSITIONS.get(self._state, set())
            if new_state not in allowed and new_state not in TERMINAL_STATES:
                raise ValueError(f"Invalid transition {self._state} -> {new_state}")
            if new_state in TERMINAL_STATES and self._state in TERMINAL_STATES:
                raise ValueError(f"Run already ended as {self._state.value}")
            self._state = new_state
            self._reason = reason
            callbacks = list(self._callbacks)
        for cb in callbacks:
            try:
                cb(new_state, reason)
            except Exception as exc:  # noqa: BLE001
                logger.warning("State callback %r failed: %s", cb, exc)
        return new_state

    def snapshot(self) -> tuple[RunState, Optional[str]]:
        with self._lock:
            return self._state, self._reason
