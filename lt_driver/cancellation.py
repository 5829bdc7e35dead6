"""Cooperative cancellation for the driver's submission loop."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class CancellationSignal:
    """
    Single-fire cancellation flag.

    It is tripped by a `cancel` line on the control channel or by a
    termination signal. Once fired it is never re-armed. Consumers check
    `is_set`, await `wait()` or use `sleep()` as a cancellation point.
    """

    def __init__(self, on_fire: Optional[Callable[[str], None]] = None) -> None:
        self._on_fire = on_fire
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def is_set(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    @property
    def event(self) -> asyncio.Event:
        return self._event

    def fire(self, reason: str = "cancel requested") -> bool:
        """Trip the signal; return False when it had already fired."""
        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()
        if self._on_fire:
            try:
                self._on_fire(reason)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Cancellation callback failed: %s", exc)
        return True

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, delay: float) -> bool:
        """Sleep up to `delay` seconds; return True when the signal fired meanwhile."""
        if self._event.is_set():
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(delay, 0))
        except asyncio.TimeoutError:
            return False
        return True
