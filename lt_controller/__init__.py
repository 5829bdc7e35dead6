"""Controller side of the load tester: launches and supervises the driver."""

from lt_controller.api import ControllerSettings, RunOutcome, RunState, RunSupervisor

__all__ = ["ControllerSettings", "RunOutcome", "RunState", "RunSupervisor"]
