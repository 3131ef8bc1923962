"""
SQLAlchemy ORM models for crowdcrawl.

The crawl keeps its durable state as a handful of string key/value rows:
- last_cursor: pagination cursor of the next page to fetch
- has_more: whether another page exists ("true"/"false")
- auth_token: API token supplied by the operator
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Base Class
# =============================================================================


class Base(DeclarativeBase):
    """Base class for all ORM models."""


# =============================================================================
# Crawl State Model
# =============================================================================


class StateEntry(Base):
    """One durable key/value pair of crawl state."""

    __tablename__ = "crawl_state"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<StateEntry(key='{self.key}', value={self.value!r})>"
