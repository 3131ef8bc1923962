"""Durable crawl state persistence."""

from .db import dispose_engines, get_engine, get_session_factory, init_db, session_scope
from .models import Base, StateEntry
from .repo import StateRepository
from .cursor import CursorStore

__all__ = [
    "dispose_engines",
    "get_engine",
    "get_session_factory",
    "init_db",
    "session_scope",
    "Base",
    "StateEntry",
    "StateRepository",
    "CursorStore",
]
