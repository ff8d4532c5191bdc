"""
Send throttle
Enforces a fixed minimum gap between consecutive outbound emails.
"""
import asyncio
import time
from typing import Awaitable, Callable, Optional


class RateLimiter:
    """
    Minimum-interval limiter shared by every batch in a cycle.

    `clock` and `sleep` are injectable so tests can run on virtual time.
    """

    def __init__(
        self,
        min_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last: Optional[float] = None
        self._lock = asyncio.Lock()

    async def wait(self) -> float:
        """Block until the next send is allowed; returns seconds waited"""
        async with self._lock:
            waited = 0.0
            if self._last is not None:
                remaining = self.min_interval - (self._clock() - self._last)
                if remaining > 0:
                    await self._sleep(remaining)
                    waited = remaining
            self._last = self._clock()
            return waited

    def reset(self) -> None:
        self._last = None
