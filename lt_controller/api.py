"""Public API surface for lt_controller."""

from lt_controller.controller_state import RunState, RunStateMachine
from lt_controller.metrics_trigger import MetricsTrigger
from lt_controller.orchestrator import OrchestratorController, RunOutcome
from lt_controller.process import ProcessHandle, ProcessRole
from lt_controller.progress import ProgressListener, ProgressSnapshot, ProgressState
from lt_controller.settings import ControllerSettings
from lt_controller.supervisor import RunStatus, RunSupervisor

__all__ = [
    "ControllerSettings",
    "MetricsTrigger",
    "OrchestratorController",
    "ProcessHandle",
    "ProcessRole",
    "ProgressListener",
    "ProgressSnapshot",
    "ProgressState",
    "RunOutcome",
    "RunState",
    "RunStateMachine",
    "RunStatus",
    "RunSupervisor",
]
