"""Fetch utilities - backoff, retry budget, request spacing."""

from .backoff import BackoffPolicy, BackoffState, dynamic_delay
from .retries import RetryBudget
from .throttling import RequestThrottle, cancellable_sleep

__all__ = [
    "BackoffPolicy",
    "BackoffState",
    "dynamic_delay",
    "RetryBudget",
    "RequestThrottle",
    "cancellable_sleep",
]
