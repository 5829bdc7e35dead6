import asyncio
import time


async def wait_until(predicate, timeout: float = 3.0, interval: float = 0.02) -> bool:
    """Poll `predicate` until it is truthy or `timeout` elapses."""
    deadline = time.monotonic() + timeout
    while True:
        if predicate():
            return True
        if time.monotonic() >= deadline:
            return False
        await asyncio.sleep(interval)
