"""
Rate-limit backoff policy and state.

The delay schedule is tenacity's exponential wait (base * 2^(n-1), capped)
with a symmetric jitter applied on top. The state object is plain data so
the orchestrator can own and reset it.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Callable

from tenacity import RetryCallState, wait_exponential

DEFAULT_BASE_SECONDS = 60.0
DEFAULT_MAX_SECONDS = 600.0
DEFAULT_JITTER_RATIO = 0.1

# Windows after a rate limit during which item pacing is stretched
RECENT_WINDOW_SECONDS = 300.0
EXTENDED_WINDOW_SECONDS = 600.0


@dataclass
class BackoffState:
    """Rate-limit failures: the current streak and the recent history.

    A successful call ends the streak (``reset``) but the last rate limit
    stays on record for ``dynamic_delay``; ``clear`` forgets both.
    """

    consecutive_failures: int = 0
    last_failure_at: float | None = None
    total_failures: int = 0

    def record_failure(self, now: float) -> int:
        """Count one more failure and return the post-increment streak length."""
        self.consecutive_failures += 1
        self.total_failures += 1
        self.last_failure_at = now
        return self.consecutive_failures

    def reset(self) -> None:
        self.consecutive_failures = 0

    def clear(self) -> None:
        self.consecutive_failures = 0
        self.total_failures = 0
        self.last_failure_at = None

    def seconds_since_failure(self, now: float) -> float | None:
        if self.last_failure_at is None:
            return None
        return now - self.last_failure_at


class BackoffPolicy:
    """Computes how long to back off after the n-th consecutive rate limit.

    ``delay(n) = min(base * 2^(n-1), max)``, then multiplied by a factor
    drawn uniformly from ``[1 - jitter, 1 + jitter]``.
    """

    def __init__(
        self,
        base_seconds: float = DEFAULT_BASE_SECONDS,
        max_seconds: float = DEFAULT_MAX_SECONDS,
        jitter_ratio: float = DEFAULT_JITTER_RATIO,
        rand: Callable[[], float] = random.random,
    ):
        """Initialize the policy.

        Args:
            base_seconds: Delay for the first failure
            max_seconds: Cap applied before jitter
            jitter_ratio: Half-width of the jitter band as a fraction of the delay
            rand: Source of uniform floats in [0, 1); 0.5 means no jitter
        """
        if base_seconds <= 0 or max_seconds < base_seconds:
            raise ValueError("require 0 < base_seconds <= max_seconds")
        self.base_seconds = base_seconds
        self.max_seconds = max_seconds
        self.jitter_ratio = jitter_ratio
        self._rand = rand
        self._wait = wait_exponential(multiplier=base_seconds, max=max_seconds)

    def base_delay(self, failures: int) -> float:
        """Delay before jitter for the given post-increment failure count."""
        if failures < 1:
            raise ValueError(f"failure count must be >= 1, got {failures}")
        retry_state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
        retry_state.attempt_number = failures
        return float(self._wait(retry_state))

    def delay(self, failures: int) -> float:
        """Jittered delay in seconds for the given failure count."""
        delay = self.base_delay(failures)
        return delay * (1 + self.jitter_ratio * (self._rand() - 0.5) * 2)


def dynamic_delay(base: float, state: BackoffState, now: float) -> float:
    """Stretch the per-item delay while a rate limit is still recent.

    Three times the base within 5 minutes of the last rate limit, twice
    within 10 minutes, otherwise the base itself. A success ends the
    failure streak but not the stretch; only ``BackoffState.clear`` does.
    """
    if state.total_failures <= 0:
        return base

    elapsed = state.seconds_since_failure(now)
    if elapsed is None:
        return base
    if elapsed < RECENT_WINDOW_SECONDS:
        return base * 3
    if elapsed < EXTENDED_WINDOW_SECONDS:
        return base * 2
    return base
