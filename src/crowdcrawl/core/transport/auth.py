"""
API token storage.

The token lives in the crawl state table next to the cursor, with an
in-memory cache in front of it. A rejected token only drops the cache;
the stored value is replaced once the operator supplies a new one.
"""

from __future__ import annotations

import logging

from crowdcrawl.persistence.repo import StateRepository

logger = logging.getLogger(__name__)

AUTH_TOKEN_KEY = "auth_token"
TOKEN_PREFIX = "token "


def clean_token(token: str) -> str:
    """Strip whitespace and a leading ``token `` scheme prefix."""
    token = token.strip()
    if token.lower().startswith(TOKEN_PREFIX):
        token = token[len(TOKEN_PREFIX):]
    return token.strip()


class TokenStore:
    """Durable API token with a cache."""

    def __init__(self, repository: StateRepository | None = None):
        self._repo = repository
        self._cached: str | None = None

    def get(self) -> str | None:
        """Return the current token, loading it from storage if not cached."""
        if self._cached:
            return self._cached
        if self._repo is None:
            return None
        token = self._repo.get(AUTH_TOKEN_KEY)
        if token:
            self._cached = token
            logger.debug("Loaded auth token from state store")
            return token
        return None

    def set(self, token: str) -> str:
        """Store a new token and return its cleaned form."""
        token = clean_token(token)
        if not token:
            raise ValueError("token must not be empty")
        if self._repo is not None:
            self._repo.set(AUTH_TOKEN_KEY, token)
        self._cached = token
        logger.info("Auth token updated")
        return token

    def clear_cache(self) -> None:
        """Forget the cached token; the stored one is reloaded on next use."""
        self._cached = None

    def clear(self) -> None:
        """Remove the token entirely."""
        if self._repo is not None:
            self._repo.delete(AUTH_TOKEN_KEY)
        self._cached = None
        logger.info("Auth token cleared")

    def has_token(self) -> bool:
        return bool(self.get())
