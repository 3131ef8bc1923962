"""Shared fixtures and fakes for the crowdcrawl test suite."""

from __future__ import annotations

from typing import Any

import pytest

from crowdcrawl.core.transport.base import Page, Transport, TransportError
from crowdcrawl.persistence import CursorStore, StateRepository, dispose_engines, get_session_factory, init_db


@pytest.fixture
def state_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'state.db'}"


@pytest.fixture
def state_repo(state_url) -> StateRepository:
    init_db(state_url)
    yield StateRepository(get_session_factory(state_url))
    dispose_engines()


@pytest.fixture
def cursor_store(state_repo) -> "RecordingCursorStore":
    return RecordingCursorStore(state_repo)


class RecordingCursorStore(CursorStore):
    """CursorStore that remembers every save."""

    def __init__(self, repository: StateRepository):
        super().__init__(repository)
        self.saves: list[tuple[str | None, bool | None]] = []

    def save(self, cursor, has_more=None, **kwargs):
        self.saves.append((cursor, has_more))
        super().save(cursor, has_more, **kwargs)


def make_item(slug: str) -> dict[str, Any]:
    return {"id": f"id-{slug}", "slug": slug, "name": slug.title()}


def make_pages(*batches: list[str]) -> dict[str | None, Page]:
    """Chain listing pages: the first is fetched without a cursor, the next with c1, ..."""
    pages: dict[str | None, Page] = {}
    for index, slugs in enumerate(batches):
        cursor = None if index == 0 else f"c{index}"
        last = index == len(batches) - 1
        pages[cursor] = Page(
            items=[make_item(s) for s in slugs],
            next_cursor=None if last else f"c{index + 1}",
            has_next=not last,
        )
    return pages


class FakeTransport(Transport):
    """Scripted transport.

    ``page_errors`` are raised by successive page fetches before any page is
    served; ``detail_errors`` maps an item id to errors raised by its next
    detail fetches.
    """

    def __init__(
        self,
        pages: dict[str | None, Page],
        page_errors: list[TransportError] | None = None,
        detail_errors: dict[str, list[TransportError]] | None = None,
    ):
        self.pages = pages
        self.page_errors = list(page_errors or [])
        self.detail_errors = {k: list(v) for k, v in (detail_errors or {}).items()}
        self.page_calls: list[tuple[str | None, int]] = []
        self.detail_calls: list[str] = []
        self.tokens: list[str] = []
        self.closed = False

    @property
    def name(self) -> str:
        return "fake"

    async def fetch_page(self, cursor, limit):
        self.page_calls.append((cursor, limit))
        if self.page_errors:
            raise self.page_errors.pop(0)
        page = self.pages[cursor]
        return Page(items=page.items[:limit], next_cursor=page.next_cursor, has_next=page.has_next)

    async def fetch_details(self, item_id):
        self.detail_calls.append(item_id)
        errors = self.detail_errors.get(item_id)
        if errors:
            raise errors.pop(0)
        return {"slug": item_id, "story": f"story of {item_id}"}

    def set_token(self, token):
        self.tokens.append(token)

    async def close(self):
        self.closed = True


class FakeMapper:
    def item_id(self, raw_item):
        return raw_item["slug"]

    def map(self, raw_item, raw_detail):
        return {"slug": raw_item["slug"], "story": raw_detail["story"]}


class ListSink:
    """Exporter stand-in collecting records in memory."""

    def __init__(self, fail_on: set[str] | None = None):
        self.records: list[dict[str, Any]] = []
        self.fail_on = fail_on or set()

    def add_record(self, record):
        if record["slug"] in self.fail_on:
            raise ValueError(f"cannot export {record['slug']}")
        self.records.append(record)

    @property
    def slugs(self) -> list[str]:
        return [r["slug"] for r in self.records]


class FakeSleep:
    """Awaitable sleep that returns immediately and records requested waits."""

    def __init__(self, on_sleep=None):
        self.calls: list[float] = []
        self._on_sleep = on_sleep

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self._on_sleep is not None:
            self._on_sleep(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
