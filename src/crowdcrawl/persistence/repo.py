"""
Repository for the crawl state key/value table.

Each public method is its own transaction; ``set_many`` writes several
keys atomically so related values never disagree after a crash.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Mapping

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from .db import session_scope
from .models import StateEntry


class StateRepository:
    """Repository for StateEntry CRUD operations."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._factory = session_factory

    def get(self, key: str, default: str | None = None) -> str | None:
        """Get a value, or ``default`` when the key is absent."""
        with session_scope(self._factory) as session:
            entry = session.get(StateEntry, key)
            if entry is None:
                return default
            return entry.value

    def set(self, key: str, value: str | None) -> None:
        """Insert or update a single key."""
        self.set_many({key: value})

    def set_many(self, values: Mapping[str, str | None]) -> None:
        """Insert or update several keys in one transaction."""
        now = datetime.now(timezone.utc)
        with session_scope(self._factory) as session:
            for key, value in values.items():
                entry = session.get(StateEntry, key)
                if entry is None:
                    session.add(StateEntry(key=key, value=value, updated_at=now))
                else:
                    entry.value = value
                    entry.updated_at = now

    def delete(self, key: str) -> bool:
        """Remove a key. Returns True if it existed."""
        with session_scope(self._factory) as session:
            result = session.execute(delete(StateEntry).where(StateEntry.key == key))
            return bool(result.rowcount)

    def all(self) -> dict[str, str | None]:
        """Return every stored key/value pair."""
        with session_scope(self._factory) as session:
            rows = session.execute(select(StateEntry).order_by(StateEntry.key)).scalars().all()
            return {row.key: row.value for row in rows}
