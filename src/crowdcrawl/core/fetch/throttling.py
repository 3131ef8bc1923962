"""
Request spacing and cancellable waits.

Provides:
- RequestThrottle: minimum interval between requests to the remote API
- cancellable_sleep: a wait that checks a stop predicate every tick
"""

from __future__ import annotations

import asyncio
import random
import time
from typing import Awaitable, Callable

SleepFn = Callable[[float], Awaitable[None]]

# Longest single wait between stop-flag checks
DEFAULT_TICK_SECONDS = 1.0


class RequestThrottle:
    """Keeps consecutive requests at least ``min_interval`` seconds apart.

    Features:
    - Optional jitter added on top of the minimum interval
    - Async-safe with a lock, so two callers never both skip the wait
    """

    def __init__(
        self,
        min_interval: float = 2.0,
        jitter: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: SleepFn = asyncio.sleep,
    ):
        """Initialize the throttle.

        Args:
            min_interval: Minimum seconds between request starts
            jitter: Maximum extra random seconds added to each wait
            clock: Monotonic time source
            sleep: Awaitable sleep function
        """
        self.min_interval = min_interval
        self.jitter = jitter
        self._clock = clock
        self._sleep = sleep
        self._last_request: float | None = None
        self._lock = asyncio.Lock()
        self.total_waited = 0.0

    def _wait_needed(self) -> float:
        if self._last_request is None:
            return 0.0
        elapsed = self._clock() - self._last_request
        if elapsed >= self.min_interval:
            return 0.0
        extra = random.uniform(0, self.jitter) if self.jitter > 0 else 0.0
        return self.min_interval - elapsed + extra

    async def acquire(self) -> None:
        """Block until it's safe to start the next request."""
        async with self._lock:
            wait = self._wait_needed()
            if wait > 0:
                self.total_waited += wait
                await self._sleep(wait)
            self._last_request = self._clock()

    async def __aenter__(self) -> "RequestThrottle":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        return None


async def cancellable_sleep(
    seconds: float,
    should_stop: Callable[[], bool],
    *,
    sleep: SleepFn = asyncio.sleep,
    tick: float = DEFAULT_TICK_SECONDS,
    on_tick: Callable[[float], None] | None = None,
) -> bool:
    """Sleep for ``seconds`` in ticks, giving up early once ``should_stop()``.

    Args:
        seconds: Total time to wait
        should_stop: Predicate checked before every tick
        sleep: Awaitable sleep function
        tick: Longest single wait between checks
        on_tick: Called with the remaining seconds before each tick

    Returns:
        True if the full wait elapsed, False if it was cancelled
    """
    remaining = max(0.0, seconds)
    while remaining > 0:
        if should_stop():
            return False
        if on_tick is not None:
            on_tick(remaining)
        step = min(tick, remaining)
        await sleep(step)
        remaining -= step
    return not should_stop()
