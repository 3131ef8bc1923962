"""Tests for the crawl state machine."""

from __future__ import annotations

import asyncio

import pytest

from conftest import (
    FakeClock,
    FakeMapper,
    FakeSleep,
    FakeTransport,
    ListSink,
    RecordingCursorStore,
    make_pages,
)
from crowdcrawl.core.fetch import BackoffPolicy, RetryBudget
from crowdcrawl.core.orchestrator import CrawlOrchestrator, CrawlState, StopReason
from crowdcrawl.core.transport import ErrorKind, TransportError


def auth_error() -> TransportError:
    return TransportError(ErrorKind.AUTH, "credentials rejected (401)", status_code=401)


def rate_limit() -> TransportError:
    return TransportError(ErrorKind.RATE_LIMIT, "rate limit exceeded", status_code=429)


def other_error() -> TransportError:
    return TransportError(ErrorKind.OTHER, "HTTP 500", status_code=500)


def build(transport, cursor_store, sink=None, **kwargs) -> CrawlOrchestrator:
    kwargs.setdefault("sleep", FakeSleep())
    kwargs.setdefault("clock", FakeClock())
    kwargs.setdefault("backoff_policy", BackoffPolicy(rand=lambda: 0.5))
    return CrawlOrchestrator(
        transport,
        FakeMapper(),
        sink if sink is not None else ListSink(),
        cursor_store,
        **kwargs,
    )


async def _yield(seconds: float) -> None:
    await asyncio.sleep(0)


# =============================================================================
# Pagination
# =============================================================================


def test_batch_of_two_with_goal_of_three(cursor_store):
    transport = FakeTransport(make_pages(["a", "b"], ["c"]))
    sink = ListSink()
    orch = build(transport, cursor_store, sink)

    stats = asyncio.run(orch.start(2, 3, 1.0))

    assert sink.slugs == ["a", "b", "c"]
    assert orch.state is CrawlState.STOPPED
    assert cursor_store.has_more() is False
    assert cursor_store.saves == [("c1", True), (None, False)]
    assert transport.page_calls == [(None, 2), ("c1", 1)]
    assert stats.processed == 3
    assert stats.stop_reason is StopReason.EXHAUSTED


def test_goal_reached_leaves_more_pages(cursor_store):
    transport = FakeTransport(make_pages(["a", "b"], ["c", "d"], ["e"]))
    sink = ListSink()
    orch = build(transport, cursor_store, sink)

    stats = asyncio.run(orch.start(2, 4, 1.0))

    assert sink.slugs == ["a", "b", "c", "d"]
    assert stats.stop_reason is StopReason.GOAL_REACHED
    assert cursor_store.snapshot() == ("c2", True)
    assert cursor_store.page_open() is False


def test_resumes_from_saved_cursor(cursor_store):
    cursor_store.save("c1", True)
    transport = FakeTransport(make_pages(["a", "b"], ["c"]))
    sink = ListSink()

    asyncio.run(build(transport, cursor_store, sink).start(15, 0, 1.0))

    assert transport.page_calls == [("c1", 15)]
    assert sink.slugs == ["c"]


def test_finished_crawl_does_not_fetch_again(cursor_store):
    cursor_store.save(None)
    transport = FakeTransport(make_pages(["a"]))

    stats = asyncio.run(build(transport, cursor_store).start(15, 0, 1.0))

    assert transport.page_calls == []
    assert stats.stop_reason is StopReason.EXHAUSTED


def test_delay_between_exported_items(cursor_store):
    sleep = FakeSleep()
    transport = FakeTransport(make_pages(["a", "b", "c"]))
    orch = build(transport, cursor_store, sleep=sleep)

    asyncio.run(orch.start(15, 2, 0.5))

    # no delay after the record that reaches the goal
    assert sleep.calls == [0.5]


# =============================================================================
# Auth escalation
# =============================================================================


def test_refused_token_stops_without_further_fetches(cursor_store):
    transport = FakeTransport(
        make_pages(["a", "b", "c"], ["d"]),
        detail_errors={"b": [auth_error()]},
    )
    sink = ListSink()
    orch = build(transport, cursor_store, sink)

    stats = asyncio.run(orch.start(15, 0, 1.0, lambda: None))

    assert orch.state is CrawlState.STOPPED
    assert stats.stop_reason is StopReason.TOKEN_REFUSED
    assert sink.slugs == ["a"]
    assert len(transport.page_calls) == 1
    assert transport.detail_calls == ["a", "b"]
    assert (CrawlState.RUNNING, CrawlState.AWAITING_TOKEN) in orch.transitions
    assert orch.transitions[-1] == (CrawlState.AWAITING_TOKEN, CrawlState.STOPPED)


def test_missing_token_provider_counts_as_refusal(cursor_store):
    transport = FakeTransport(make_pages(["a"]), page_errors=[auth_error()])

    stats = asyncio.run(build(transport, cursor_store).start(15, 0, 1.0))

    assert stats.stop_reason is StopReason.TOKEN_REFUSED
    assert stats.token_requests == 1


def test_new_token_retries_same_item(cursor_store):
    transport = FakeTransport(
        make_pages(["a", "b", "c"]),
        detail_errors={"b": [auth_error()]},
    )
    sink = ListSink()
    orch = build(transport, cursor_store, sink)

    asyncio.run(orch.start(15, 0, 1.0, lambda: "  fresh-token "))

    assert transport.tokens == ["fresh-token"]
    assert transport.detail_calls == ["a", "b", "b", "c"]
    assert sink.slugs == ["a", "b", "c"]
    assert (CrawlState.AWAITING_TOKEN, CrawlState.RUNNING) in orch.transitions


def test_async_token_provider(cursor_store):
    transport = FakeTransport(make_pages(["a"]), page_errors=[auth_error()])
    sink = ListSink()

    async def provide():
        return "async-token"

    asyncio.run(build(transport, cursor_store, sink).start(15, 0, 1.0, provide))

    assert transport.tokens == ["async-token"]
    assert transport.page_calls == [(None, 15), (None, 15)]
    assert sink.slugs == ["a"]


# =============================================================================
# Rate limits
# =============================================================================


def test_rate_limit_on_second_item_exports_each_once(cursor_store):
    sleep = FakeSleep()
    transport = FakeTransport(
        make_pages(["a", "b", "c"]),
        detail_errors={"b": [rate_limit()]},
    )
    sink = ListSink()
    orch = build(transport, cursor_store, sink, sleep=sleep)

    stats = asyncio.run(orch.start(15, 0, 1.0))

    assert sink.slugs == ["a", "b", "c"]
    assert transport.detail_calls == ["a", "b", "b", "c"]
    assert stats.rate_limits == 1
    assert (CrawlState.RUNNING, CrawlState.BACKOFF) in orch.transitions
    assert (CrawlState.BACKOFF, CrawlState.RUNNING) in orch.transitions
    # 1s after a, 60s backoff, then 3x pacing after b and c while the rate limit is recent
    assert sleep.total == pytest.approx(1 + 60 + 3 + 3)
    assert max(sleep.calls) <= 1.0
    assert orch.backoff.consecutive_failures == 0


def test_consecutive_page_rate_limits_grow_backoff(cursor_store):
    sleep = FakeSleep()
    transport = FakeTransport(
        make_pages(["a"]),
        page_errors=[rate_limit(), rate_limit(), rate_limit()],
    )
    orch = build(transport, cursor_store, sleep=sleep)

    asyncio.run(orch.start(15, 0, 1.0))

    assert sleep.total == pytest.approx(60 + 120 + 240 + 3)
    assert orch.backoff.consecutive_failures == 0


def test_stop_during_backoff(cursor_store):
    holder = {}
    sleep = FakeSleep(on_sleep=lambda s: holder["orch"].stop())
    transport = FakeTransport(make_pages(["a"]), page_errors=[rate_limit()])
    sink = ListSink()
    orch = build(transport, cursor_store, sink, sleep=sleep)
    holder["orch"] = orch

    stats = asyncio.run(orch.start(15, 0, 1.0))

    assert stats.stop_reason is StopReason.STOP_REQUESTED
    assert orch.transitions[-1] == (CrawlState.BACKOFF, CrawlState.STOPPED)
    assert len(sleep.calls) == 1
    assert sink.records == []


def test_dynamic_delay_windows(cursor_store):
    clock = FakeClock()
    orch = build(FakeTransport({}), cursor_store, clock=clock)

    assert orch.dynamic_delay(1.0) == 1.0

    orch.backoff.record_failure(clock())
    assert orch.dynamic_delay(1.0) == 3.0
    clock.advance(300)
    assert orch.dynamic_delay(1.0) == 2.0
    clock.advance(300)
    assert orch.dynamic_delay(1.0) == 1.0


# =============================================================================
# Generic errors
# =============================================================================


def test_page_error_retried_after_fixed_delay(cursor_store):
    sleep = FakeSleep()
    transport = FakeTransport(make_pages(["a"]), page_errors=[other_error(), other_error()])
    sink = ListSink()
    orch = build(transport, cursor_store, sink, sleep=sleep)

    stats = asyncio.run(orch.start(15, 0, 1.0))

    assert transport.page_calls == [(None, 15)] * 3
    assert stats.page_failures == 2
    assert sink.slugs == ["a"]
    assert sleep.total == pytest.approx(5 + 5 + 1)


def test_retry_budget_stops_crawl(cursor_store):
    transport = FakeTransport(make_pages(["a"]), page_errors=[other_error()] * 5)
    orch = build(transport, cursor_store, retry_budget=RetryBudget(2))

    stats = asyncio.run(orch.start(15, 0, 1.0))

    assert len(transport.page_calls) == 2
    assert stats.stop_reason is StopReason.RETRY_BUDGET_SPENT
    assert orch.state is CrawlState.STOPPED
    assert cursor_store.snapshot() == (None, True)


def test_item_error_skips_item(cursor_store):
    sleep = FakeSleep()
    transport = FakeTransport(make_pages(["a", "b", "c"]), detail_errors={"b": [other_error()]})
    sink = ListSink()
    orch = build(transport, cursor_store, sink, sleep=sleep)

    stats = asyncio.run(orch.start(15, 0, 1.0))

    assert sink.slugs == ["a", "c"]
    assert transport.detail_calls == ["a", "b", "c"]
    assert stats.skipped == 1
    assert stats.processed == 2
    assert sleep.total == pytest.approx(1 + 2 + 1)


def test_export_failure_skips_item(cursor_store):
    transport = FakeTransport(make_pages(["a", "b", "c"]))
    sink = ListSink(fail_on={"b"})

    stats = asyncio.run(build(transport, cursor_store, sink).start(15, 0, 1.0))

    assert sink.slugs == ["a", "c"]
    assert stats.skipped == 1


# =============================================================================
# Crash safety
# =============================================================================


class Crash(BaseException):
    """Simulates the process dying mid-crawl."""


class CrashingSink(ListSink):
    def __init__(self, crash_on: str):
        super().__init__()
        self.crash_on = crash_on

    def add_record(self, record):
        if record["slug"] == self.crash_on:
            raise Crash()
        super().add_record(record)


def test_crash_after_cursor_persist_refetches_page(state_repo):
    pages = make_pages(["a", "b"], ["c", "d"])
    first_store = RecordingCursorStore(state_repo)
    first_sink = CrashingSink(crash_on="c")

    with pytest.raises(Crash):
        asyncio.run(build(FakeTransport(pages), first_store, first_sink).start(15, 0, 1.0))

    assert first_sink.slugs == ["a", "b"]
    assert first_store.load() is None
    assert first_store.page_open() is True

    # restart with a fresh store on the same database
    transport = FakeTransport(pages)
    sink = ListSink()
    store = RecordingCursorStore(state_repo)
    asyncio.run(build(transport, store, sink).start(15, 0, 1.0))

    assert transport.page_calls == [("c1", 15)]
    assert sink.slugs == ["c", "d"]
    assert store.snapshot() == (None, False)
    assert store.page_open() is False


# =============================================================================
# Control
# =============================================================================


def test_invalid_arguments_raise_before_state_change(cursor_store):
    orch = build(FakeTransport({}), cursor_store)

    with pytest.raises(ValueError):
        asyncio.run(orch.start(0, 10, 1.0))
    with pytest.raises(ValueError):
        asyncio.run(orch.start(5, -1, 1.0))
    with pytest.raises(ValueError):
        asyncio.run(orch.start(5, 10, 0))

    assert orch.state is CrawlState.IDLE
    assert orch.transitions == []


def test_start_while_active_is_ignored(cursor_store):
    transport = FakeTransport(make_pages(["a", "b", "c"]))
    orch = build(transport, cursor_store, sleep=_yield)

    async def scenario():
        task = asyncio.create_task(orch.start(15, 0, 1.0))
        await asyncio.sleep(0)
        assert orch.is_active
        second = await orch.start(15, 0, 1.0)
        assert second is orch.stats
        orch.stop()
        return await task

    stats = asyncio.run(scenario())

    assert orch.transitions[0] == (CrawlState.IDLE, CrawlState.RUNNING)
    assert orch.transitions.count((CrawlState.IDLE, CrawlState.RUNNING)) == 1
    assert stats.stop_reason is StopReason.STOP_REQUESTED


def test_orchestrator_is_reusable(cursor_store):
    transport = FakeTransport(make_pages(["a", "b"], ["c"]))
    sink = ListSink()
    orch = build(transport, cursor_store, sink)

    asyncio.run(orch.start(2, 2, 1.0))
    asyncio.run(orch.start(2, 2, 1.0))

    assert sink.slugs == ["a", "b", "c"]
    assert (CrawlState.STOPPED, CrawlState.RUNNING) in orch.transitions
    assert orch.state is CrawlState.STOPPED


def test_reset_pagination_when_idle(cursor_store):
    clock = FakeClock()
    orch = build(FakeTransport({}), cursor_store, clock=clock)
    cursor_store.save("c7", True)
    orch.backoff.record_failure(clock())
    orch.backoff.record_failure(clock())

    orch.reset_pagination()

    assert cursor_store.snapshot() == (None, True)
    assert orch.backoff.consecutive_failures == 0
    assert orch.dynamic_delay(1.0) == 1.0


def test_reset_pagination_queued_while_active(cursor_store):
    transport = FakeTransport(make_pages(["a", "b"], ["c"]))
    sink = ListSink()
    orch = build(transport, cursor_store, sink, sleep=_yield)

    async def scenario():
        task = asyncio.create_task(orch.start(2, 4, 1.0))
        await asyncio.sleep(0)
        orch.reset_pagination()
        assert cursor_store.load() == "c1"
        return await task

    stats = asyncio.run(scenario())

    assert transport.page_calls == [(None, 2), (None, 2)]
    assert sink.slugs == ["a", "b", "a", "b"]
    assert stats.stop_reason is StopReason.GOAL_REACHED


def test_stop_between_items_leaves_page_open(cursor_store):
    holder = {}
    sleep = FakeSleep(on_sleep=lambda s: holder["orch"].stop())
    transport = FakeTransport(make_pages(["a", "b", "c"], ["d"]))
    sink = ListSink()
    orch = build(transport, cursor_store, sink, sleep=sleep)
    holder["orch"] = orch

    stats = asyncio.run(orch.start(15, 0, 1.0))

    assert sink.slugs == ["a"]
    assert stats.stop_reason is StopReason.STOP_REQUESTED
    assert cursor_store.resume_point() == (None, True)
