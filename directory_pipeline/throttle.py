# directory_pipeline/throttle.py
"""Minimum-interval rate limiting between calls to one external provider."""
from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable

log = logging.getLogger(__name__)

# Floors imposed by upstream quotas and anti-bot defenses. Configured delays
# below these are raised to them.
SEARCH_DELAY_FLOOR = 0.5
CRAWL_DELAY_FLOOR = 1.0
ENRICHMENT_DELAY_FLOOR = 1.0
GENERATION_DELAY_FLOOR = 1.5


class RateLimiter:
    """
    Enforces a minimum gap between consecutive `wait()` returns.

    With max_interval set, each gap is drawn uniformly from
    [min_interval, max_interval]. The first call never waits.
    """

    def __init__(
        self,
        min_interval: float,
        max_interval: float | None = None,
        *,
        floor: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if min_interval < floor:
            log.warning(
                "Requested delay %.2fs is below the %.2fs floor; using the floor.",
                min_interval,
                floor,
            )
        self.min_interval = max(min_interval, floor)
        self.max_interval = max(max_interval, self.min_interval) if max_interval else self.min_interval
        self._sleep = sleep
        self._clock = clock
        self._last: float | None = None

    def next_interval(self) -> float:
        if self.max_interval > self.min_interval:
            return random.uniform(self.min_interval, self.max_interval)
        return self.min_interval

    async def wait(self) -> None:
        now = self._clock()
        if self._last is not None:
            remaining = self.next_interval() - (now - self._last)
            if remaining > 0:
                log.debug("Rate limit: sleeping %.2fs", remaining)
                await self._sleep(remaining)
        self._last = self._clock()
