"""Line-oriented control messages exchanged over the named pipes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

DEFAULT_PROGRESS_PIPE = "ProgressPipe"

SET_PROGRESS_CONFIG_PREFIX = "set_progress_config:"
INCREMENT = "increment"
CANCEL = "cancel"
RUN = "RUN"


class MessageKind(str, Enum):
    SET_PROGRESS_CONFIG = "set_progress_config"
    INCREMENT = "increment"
    CANCEL = "cancel"
    RUN = "run"


@dataclass(frozen=True)
class ControlMessage:
    """A single decoded protocol line."""

    kind: MessageKind
    total_jobs: int | None = None
    step_size: int | None = None

    def encode(self) -> str:
        """Render the message as a newline-terminated line."""
        if self.kind is MessageKind.SET_PROGRESS_CONFIG:
            return f"{SET_PROGRESS_CONFIG_PREFIX}{self.total_jobs},{self.step_size}\n"
        if self.kind is MessageKind.INCREMENT:
            return f"{INCREMENT}\n"
        if self.kind is MessageKind.CANCEL:
            return f"{CANCEL}\n"
        return f"{RUN}\n"


def set_progress_config(total_jobs: int, step_size: int) -> ControlMessage:
    if total_jobs <= 0 or step_size <= 0:
        raise ValueError("total_jobs and step_size must be positive")
    return ControlMessage(
        MessageKind.SET_PROGRESS_CONFIG, total_jobs=total_jobs, step_size=step_size
    )


def increment() -> ControlMessage:
    return ControlMessage(MessageKind.INCREMENT)


def cancel() -> ControlMessage:
    return ControlMessage(MessageKind.CANCEL)


def run_trigger() -> ControlMessage:
    return ControlMessage(MessageKind.RUN)


def parse_message(line: str | None) -> ControlMessage | None:
    """Decode one line; unrecognized or malformed lines yield None."""
    if line is None:
        return None
    text = line.strip()
    if text.startswith(SET_PROGRESS_CONFIG_PREFIX):
        return _parse_progress_config(text[len(SET_PROGRESS_CONFIG_PREFIX):])
    if text == INCREMENT:
        return increment()
    if text.lower() == CANCEL:
        return cancel()
    if text == RUN:
        return run_trigger()
    return None


def _parse_progress_config(payload: str) -> ControlMessage | None:
    parts = payload.split(",")
    if len(parts) != 2:
        return None
    try:
        total_jobs, step_size = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    if total_jobs <= 0 or step_size <= 0:
        return None
    return set_progress_config(total_jobs, step_size)
