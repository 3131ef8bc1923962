"""
Database connection and session management.

Engines are cached per URL so the CLI and tests can point the state store
at different SQLite files within one process.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .models import Base

DEFAULT_STATE_URL = "sqlite:///data/crowdcrawl_state.db"


# =============================================================================
# Engine Registry
# =============================================================================

_engines: dict[str, Engine] = {}
_session_factories: dict[str, sessionmaker[Session]] = {}


# =============================================================================
# SQLite Configuration
# =============================================================================


def _configure_sqlite(engine: Engine) -> None:
    """Configure SQLite for durable single-writer use.

    Enables:
    - WAL mode so readers never block the writer
    - FULL synchronous mode so a committed cursor survives power loss
    """
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=FULL")
        cursor.close()


# =============================================================================
# Engine Creation
# =============================================================================


def get_engine(url: str = DEFAULT_STATE_URL, echo: bool = False) -> Engine:
    """Get or create the engine for a database URL.

    Args:
        url: SQLAlchemy database URL
        echo: Whether to log SQL statements

    Returns:
        SQLAlchemy Engine instance
    """
    if url in _engines:
        return _engines[url]

    if url.startswith("sqlite:///") and url != "sqlite:///:memory:":
        db_path = url.replace("sqlite:///", "", 1)
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
        )
        _configure_sqlite(engine)
    else:
        engine = create_engine(url, echo=echo, pool_pre_ping=True)

    _engines[url] = engine
    _session_factories[url] = sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )
    return engine


def get_session_factory(url: str = DEFAULT_STATE_URL) -> sessionmaker[Session]:
    """Get the session factory bound to ``url``'s engine."""
    if url not in _session_factories:
        get_engine(url)
    return _session_factories[url]


# =============================================================================
# Session Management
# =============================================================================


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Run a unit of work in one transaction.

    Usage:
        with session_scope(factory) as session:
            session.merge(...)

    Yields:
        SQLAlchemy Session instance
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# =============================================================================
# Database Initialization
# =============================================================================


def init_db(url: str = DEFAULT_STATE_URL, echo: bool = False) -> Engine:
    """Create the state tables if they don't exist and return the engine."""
    engine = get_engine(url, echo=echo)
    Base.metadata.create_all(bind=engine)
    return engine


def dispose_engines() -> None:
    """Dispose of all cached engines. Call on shutdown."""
    for engine in _engines.values():
        engine.dispose()
    _engines.clear()
    _session_factories.clear()
