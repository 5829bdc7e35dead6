"""Shared error taxonomy for the print load tester."""

from __future__ import annotations

from typing import Any, Mapping, TypeVar


def _normalize_context_value(value: Any) -> Any:
    if isinstance(value, Mapping):
        return normalize_context(value)
    if isinstance(value, (list, tuple)):
        return [_normalize_context_value(item) for item in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def normalize_context(context: Mapping[str, Any]) -> dict[str, Any]:
    """Return a JSON-friendly copy of an error context mapping."""
    return {key: _normalize_context_value(val) for key, val in context.items()}


class LTError(Exception):
    """Base error type for typed failure handling."""

    def __init__(
        self,
        message: str,
        *,
        context: Mapping[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.context = normalize_context(context or {})
        if cause is not None:
            self.__cause__ = cause

    @property
    def error_type(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.error_type, "message": str(self), "context": self.context}


class ConfigurationError(LTError):
    """Missing or invalid arguments or settings."""


class RunAlreadyActive(LTError):
    """A run was requested while another one is still active."""


class PipeError(LTError):
    """Failure on a named pipe channel."""


class PipeConnectTimeout(PipeError):
    """No peer connected (or accepted) within the allotted time."""


class ControlChannelUnreachable(PipeError):
    """The driver could not reach the controller's duplex channel."""


class ProgressChannelUnreachable(PipeError):
    """The driver could not reach the controller's progress channel."""


class DriverConnectFailed(PipeError):
    """The driver never connected to the controller's duplex channel."""


class SubprocessError(LTError):
    """Failure launching or talking to a helper process."""


class SubprocessNotFound(SubprocessError):
    """The helper executable does not exist."""


class SubprocessLaunchFailed(SubprocessError):
    """The operating system refused to spawn the helper."""


class SelectionContractViolation(SubprocessError):
    """The selection helper did not report both a queue and a job."""


T = TypeVar("T", bound=LTError)


def wrap_error(
    error_cls: type[T],
    message: str,
    *,
    context: Mapping[str, Any] | None = None,
    cause: Exception | None = None,
) -> T:
    """Create a typed LTError with optional context and cause."""
    return error_cls(message, context=context, cause=cause)


def error_to_payload(error: LTError) -> dict[str, Any]:
    """Convert an LTError to an outcome payload."""
    return {
        "error_type": error.error_type,
        "error": str(error),
        "error_context": error.context,
    }
