"""Driver process: submits print jobs in batches for one run."""

from lt_driver.api import DriverOutcome, DriverState, DriverWorker

__all__ = ["DriverOutcome", "DriverState", "DriverWorker"]
