"""Public API surface for lt_common."""

from lt_common.errors import (
    ConfigurationError,
    ControlChannelUnreachable,
    DriverConnectFailed,
    LTError,
    PipeConnectTimeout,
    PipeError,
    ProgressChannelUnreachable,
    RunAlreadyActive,
    SelectionContractViolation,
    SubprocessError,
    SubprocessLaunchFailed,
    SubprocessNotFound,
)
from lt_common.logging import configure_logging
from lt_common.models import (
    BatchPlan,
    GatewayCredentials,
    RunConfig,
    generate_pipe_name,
    parse_queue_list,
)
from lt_common.pipes import PipeConnection, PipeListener, connect_pipe
from lt_common.protocol import DEFAULT_PROGRESS_PIPE, ControlMessage, parse_message
from lt_common.run_log import (
    FileRunLog,
    LoggerRunLog,
    MemoryRunLog,
    RunLog,
    StreamRunLog,
    TeeRunLog,
)
from lt_common.subprocess_adapter import SubprocessAdapter, TaggedLine

__all__ = [
    "BatchPlan",
    "ConfigurationError",
    "ControlChannelUnreachable",
    "ControlMessage",
    "DEFAULT_PROGRESS_PIPE",
    "DriverConnectFailed",
    "FileRunLog",
    "GatewayCredentials",
    "LTError",
    "LoggerRunLog",
    "MemoryRunLog",
    "PipeConnectTimeout",
    "PipeConnection",
    "PipeError",
    "PipeListener",
    "ProgressChannelUnreachable",
    "RunAlreadyActive",
    "RunConfig",
    "RunLog",
    "SelectionContractViolation",
    "StreamRunLog",
    "SubprocessAdapter",
    "SubprocessError",
    "SubprocessLaunchFailed",
    "SubprocessNotFound",
    "TaggedLine",
    "TeeRunLog",
    "configure_logging",
    "connect_pipe",
    "generate_pipe_name",
    "parse_message",
    "parse_queue_list",
]
