"""Public API surface for lt_driver."""

from lt_driver.args import DriverArgs, parse_flag_pairs
from lt_driver.cancellation import CancellationSignal
from lt_driver.helpers import HelperPaths, find_tools_root
from lt_driver.worker import DriverOutcome, DriverState, DriverTimings, DriverWorker

__all__ = [
    "CancellationSignal",
    "DriverArgs",
    "DriverOutcome",
    "DriverState",
    "DriverTimings",
    "DriverWorker",
    "HelperPaths",
    "find_tools_root",
    "parse_flag_pairs",
]
