"""Time source shared by the read loops and the idle sweeper."""

from __future__ import annotations

import asyncio
import time


class Clock:
    """Monotonic clock with a cancellable sleep.

    Every wait in the package goes through ``sleep()`` so that an outer
    ``asyncio.wait_for`` or task cancellation stops a polling loop at its
    next wait instead of leaving it running detached.
    """

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(seconds, 0.0))
