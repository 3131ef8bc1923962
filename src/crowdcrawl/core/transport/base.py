"""
Transport base classes and data structures.

Defines the interface contract between the crawl engine and whatever
talks to the remote API. Failures carry an ``ErrorKind`` tag; callers
branch on the tag, never on exception subclasses.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """How the crawl engine should react to a failed remote call."""

    AUTH = "auth"  # credentials rejected; ask for a new token
    RATE_LIMIT = "rate_limit"  # server throttle; back off, then retry
    OTHER = "other"  # network, timeout, unexpected payload


class TransportError(Exception):
    """A remote call failed."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        status_code: int | None = None,
        retry_after: float | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
        self.retry_after = retry_after
        self.cause = cause

    def __repr__(self) -> str:
        return f"TransportError(kind={self.kind.value}, status={self.status_code}, message={str(self)!r})"


@dataclass
class Page:
    """One page of listing results."""

    items: list[dict[str, Any]] = field(default_factory=list)
    next_cursor: str | None = None
    has_next: bool = False
    total_count: int | None = None

    def __len__(self) -> int:
        return len(self.items)


class Transport(ABC):
    """Abstract base class for remote API transports."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Transport identifier."""

    @abstractmethod
    async def fetch_page(self, cursor: str | None, limit: int) -> Page:
        """Fetch the page that follows ``cursor``.

        Raises:
            TransportError: Tagged with the failure kind
        """

    @abstractmethod
    async def fetch_details(self, item_id: str) -> dict[str, Any]:
        """Fetch the detail payload for one listing item.

        Raises:
            TransportError: Tagged with the failure kind
        """

    def set_token(self, token: str) -> None:
        """Use ``token`` for subsequent calls."""

    async def close(self) -> None:
        """Release network resources."""

    async def __aenter__(self) -> "Transport":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
