"""
Clock abstraction shared by the rate limiter and the retrying client.

Components never call time.monotonic() or asyncio.sleep() directly so that
tests can drive them with a manual clock.
"""

import asyncio
import time


class Clock:
    """Source of monotonic time plus an awaitable sleep."""

    def now(self) -> float:
        raise NotImplementedError

    async def sleep(self, seconds: float) -> None:
        raise NotImplementedError


class SystemClock(Clock):
    """Wall clock backed by time.monotonic() and asyncio.sleep()."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)
