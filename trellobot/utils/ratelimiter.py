"""Outbound rate limiting for the Trello Slack bot.

Slack allows roughly one chat message per second per channel, so outbound
deliveries pass through a minimum-interval gate: a token bucket with
capacity 1 that refills once every ``interval`` seconds.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional

DEFAULT_INTERVAL_SECONDS = 1.1


class RateLimiter:
    """Gate that spaces successive ``acquire`` calls at least ``interval`` apart."""

    def __init__(
        self,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._last: Optional[float] = None
        self._lock = asyncio.Lock()

    async def acquire(self) -> float:
        """Wait until the next slot is free and return the time it was taken."""

        async with self._lock:
            if self._last is not None:
                # the event loop may wake a timer up to one clock tick early
                wait = self._last + self.interval - self._clock()
                while wait > 0:
                    await self._sleep(wait)
                    wait = self._last + self.interval - self._clock()
            self._last = self._clock()
            return self._last
