"""
Retry budget for generic (non rate-limit, non auth) failures.

Generic page failures are retried after a fixed delay. The budget lets a
deployment cap how many of those happen back to back; without a cap the
crawl retries forever.
"""

from __future__ import annotations


class RetryBudget:
    """Tracks consecutive generic failures against an optional cap."""

    def __init__(self, max_consecutive: int | None = None):
        """Initialize retry budget.

        Args:
            max_consecutive: Failures allowed in a row, or None for no limit
        """
        if max_consecutive is not None and max_consecutive < 1:
            raise ValueError("max_consecutive must be >= 1 or None")
        self.max_consecutive = max_consecutive
        self._failures = 0

    @property
    def failures(self) -> int:
        return self._failures

    @property
    def exhausted(self) -> bool:
        """True once the cap has been reached."""
        if self.max_consecutive is None:
            return False
        return self._failures >= self.max_consecutive

    @property
    def remaining(self) -> int | None:
        """Failures still allowed, or None when unbounded."""
        if self.max_consecutive is None:
            return None
        return max(0, self.max_consecutive - self._failures)

    def record_failure(self) -> bool:
        """Record a failure.

        Returns:
            True if another retry is allowed, False if the budget is spent
        """
        self._failures += 1
        return not self.exhausted

    def reset(self) -> None:
        """Forget past failures after a success."""
        self._failures = 0
