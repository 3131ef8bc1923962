"""
Durable pagination cursor.

The cursor and the derived "has more" flag are written together in one
transaction and every operation holds a single-writer lock, so a stop or
reset issued from another thread can never interleave with a save.

A page whose items are still being exported is recorded as open along
with the cursor that fetched it. Until it is closed, ``resume_point``
points back at that page, so a crash mid-page refetches it on restart
instead of skipping its items.
"""

from __future__ import annotations

import logging
import threading

from .db import DEFAULT_STATE_URL, get_session_factory, init_db
from .repo import StateRepository

logger = logging.getLogger(__name__)

LAST_CURSOR_KEY = "last_cursor"
HAS_MORE_KEY = "has_more"
PAGE_CURSOR_KEY = "page_cursor"
PAGE_OPEN_KEY = "page_open"


def _flag(value: bool) -> str:
    return "true" if value else "false"


class CursorStore:
    """Key/value persistence of the pagination position."""

    def __init__(self, repository: StateRepository):
        self._repo = repository
        self._lock = threading.RLock()

    @classmethod
    def open(cls, url: str = DEFAULT_STATE_URL) -> "CursorStore":
        """Create the state tables if needed and return a store bound to them."""
        init_db(url)
        return cls(StateRepository(get_session_factory(url)))

    def save(
        self,
        cursor: str | None,
        has_more: bool | None = None,
        *,
        page_cursor: str | None = None,
        page_open: bool = False,
    ) -> None:
        """Persist the cursor of the next page.

        Args:
            cursor: Cursor to resume from, or None when the sequence ended
            has_more: Explicit "more pages" flag; defaults to ``cursor is not None``.
                Always False when the cursor is absent, since an absent cursor
                with more pages would mean restarting from the beginning.
            page_cursor: Cursor that fetched the page about to be processed
            page_open: Record that page as open until ``close_page``
        """
        if cursor == "":
            cursor = None
        more = cursor is not None if has_more is None else bool(has_more and cursor is not None)
        with self._lock:
            self._repo.set_many({
                LAST_CURSOR_KEY: cursor,
                HAS_MORE_KEY: _flag(more),
                PAGE_CURSOR_KEY: page_cursor if page_open else None,
                PAGE_OPEN_KEY: _flag(page_open),
            })
        logger.debug(f"Saved cursor={cursor!r} has_more={more} page_open={page_open}")

    def close_page(self) -> None:
        """Mark the open page as fully processed."""
        with self._lock:
            self._repo.set_many({PAGE_CURSOR_KEY: None, PAGE_OPEN_KEY: _flag(False)})

    def load(self) -> str | None:
        """Return the saved cursor, or None at the start of the sequence."""
        with self._lock:
            value = self._repo.get(LAST_CURSOR_KEY)
        return value or None

    def has_more(self) -> bool:
        """Whether another page is available. True if nothing was saved yet."""
        with self._lock:
            value = self._repo.get(HAS_MORE_KEY)
        return value != "false"

    def page_open(self) -> bool:
        with self._lock:
            return self._repo.get(PAGE_OPEN_KEY) == "true"

    def snapshot(self) -> tuple[str | None, bool]:
        """Read cursor and flag under one lock acquisition."""
        with self._lock:
            return self.load(), self.has_more()

    def resume_point(self) -> tuple[str | None, bool]:
        """Where the next crawl starts: the open page if any, else the saved cursor."""
        with self._lock:
            if self.page_open():
                return self._repo.get(PAGE_CURSOR_KEY) or None, True
            return self.snapshot()

    def reset(self) -> None:
        """Go back to the start of the sequence."""
        with self._lock:
            self._repo.set_many({
                LAST_CURSOR_KEY: None,
                HAS_MORE_KEY: _flag(True),
                PAGE_CURSOR_KEY: None,
                PAGE_OPEN_KEY: _flag(False),
            })
        logger.info("Pagination reset; next crawl starts from the beginning")
