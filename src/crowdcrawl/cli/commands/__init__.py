"""CLI command modules."""

from . import auth, config, crawl, schema, session

__all__ = [
    "auth",
    "config",
    "crawl",
    "schema",
    "session",
]
