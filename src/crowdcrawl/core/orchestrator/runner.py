"""
Crawl orchestrator.

Drives the resumable crawl: fetch a page from the saved cursor, persist the
next cursor, then fetch details, map and export each item in page order.
Rate limits back off and retry the same call, auth failures ask for a new
token, anything else is retried (pages) or skipped (items) after a short
fixed delay.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol, Union

from crowdcrawl.core.fetch.backoff import BackoffPolicy, BackoffState, dynamic_delay
from crowdcrawl.core.fetch.retries import RetryBudget
from crowdcrawl.core.fetch.throttling import SleepFn, cancellable_sleep
from crowdcrawl.core.logging import get_contextual_logger
from crowdcrawl.core.transport.base import ErrorKind, Page, Transport, TransportError
from crowdcrawl.persistence.cursor import CursorStore

if TYPE_CHECKING:
    from crowdcrawl.core.config.models import AppConfig


logger = logging.getLogger(__name__)

DEFAULT_PAGE_ERROR_DELAY = 5.0
DEFAULT_ITEM_ERROR_DELAY = 2.0

# Backoff countdown is logged at this interval, then every second at the end
COUNTDOWN_LOG_INTERVAL = 30
COUNTDOWN_FINAL_SECONDS = 10


TokenProvider = Callable[[], Union[str, None, Awaitable[Union[str, None]]]]


class RecordMapper(Protocol):
    """Turns raw listing items and their details into exportable records."""

    def item_id(self, raw_item: dict[str, Any]) -> str: ...

    def map(self, raw_item: dict[str, Any], raw_detail: dict[str, Any]) -> Any: ...


class RecordSink(Protocol):
    """Durable destination for mapped records."""

    def add_record(self, record: Any) -> None: ...


class CrawlState(str, Enum):
    """Lifecycle of one orchestrator."""

    IDLE = "idle"
    RUNNING = "running"
    BACKOFF = "backoff"
    AWAITING_TOKEN = "awaiting_token"
    STOPPED = "stopped"


class StopReason(str, Enum):
    """Why the last crawl ended."""

    GOAL_REACHED = "goal_reached"
    EXHAUSTED = "exhausted"
    STOP_REQUESTED = "stop_requested"
    TOKEN_REFUSED = "token_refused"
    RETRY_BUDGET_SPENT = "retry_budget_spent"


ALLOWED_TRANSITIONS: dict[CrawlState, set[CrawlState]] = {
    CrawlState.IDLE: {CrawlState.RUNNING},
    CrawlState.RUNNING: {CrawlState.BACKOFF, CrawlState.AWAITING_TOKEN, CrawlState.STOPPED},
    CrawlState.BACKOFF: {CrawlState.RUNNING, CrawlState.STOPPED},
    CrawlState.AWAITING_TOKEN: {CrawlState.RUNNING, CrawlState.STOPPED},
    CrawlState.STOPPED: {CrawlState.RUNNING},
}

ACTIVE_STATES = {CrawlState.RUNNING, CrawlState.BACKOFF, CrawlState.AWAITING_TOKEN}


class _ItemOutcome(Enum):
    EXPORTED = "exported"
    SKIPPED = "skipped"
    ABORTED = "aborted"


@dataclass
class CrawlStats:
    """Statistics for one crawl."""

    processed: int = 0
    skipped: int = 0
    pages_fetched: int = 0
    page_failures: int = 0
    rate_limits: int = 0
    token_requests: int = 0
    last_cursor: str | None = None
    has_more: bool = True
    stop_reason: StopReason | None = None

    started_at: datetime = field(default_factory=datetime.now)
    finished_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        """Get crawl duration in seconds."""
        if self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "processed": self.processed,
            "skipped": self.skipped,
            "pages_fetched": self.pages_fetched,
            "page_failures": self.page_failures,
            "rate_limits": self.rate_limits,
            "token_requests": self.token_requests,
            "last_cursor": self.last_cursor,
            "has_more": self.has_more,
            "stop_reason": self.stop_reason.value if self.stop_reason else None,
            "duration_seconds": self.duration_seconds,
        }


class CrawlOrchestrator:
    """State machine driving pagination, item processing and recovery.

    Coordinates:
    - Cursor-based pagination with the cursor persisted before items are processed
    - Per-item detail fetch, mapping and export
    - Rate-limit backoff, auth token escalation and generic error retry
    - Cooperative cancellation through ``stop()``

    One orchestrator runs at most one crawl at a time; it can be started
    again once the previous crawl stopped.
    """

    def __init__(
        self,
        transport: Transport,
        mapper: RecordMapper,
        exporter: RecordSink,
        cursor_store: CursorStore,
        *,
        backoff_policy: BackoffPolicy | None = None,
        retry_budget: RetryBudget | None = None,
        page_error_delay: float = DEFAULT_PAGE_ERROR_DELAY,
        item_error_delay: float = DEFAULT_ITEM_ERROR_DELAY,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            transport: Remote API access
            mapper: Item id extraction and record mapping
            exporter: Destination for mapped records
            cursor_store: Durable pagination position
            backoff_policy: Rate-limit delay schedule
            retry_budget: Cap on consecutive generic page failures (default: none)
            page_error_delay: Wait before retrying a page after a generic error
            item_error_delay: Wait after skipping an item
            sleep: Awaitable sleep function
            clock: Wall-clock time source in seconds
        """
        self.transport = transport
        self.mapper = mapper
        self.exporter = exporter
        self.cursor_store = cursor_store
        self.backoff_policy = backoff_policy or BackoffPolicy()
        self.retry_budget = retry_budget or RetryBudget()
        self.page_error_delay = page_error_delay
        self.item_error_delay = item_error_delay
        self._sleep = sleep
        self._clock = clock

        self.backoff = BackoffState()
        self.stats = CrawlStats()
        self.transitions: list[tuple[CrawlState, CrawlState]] = []

        self._state = CrawlState.IDLE
        self._stop_requested = False
        self._reset_pending = False
        self._log = get_contextual_logger(
            __name__,
            session_id=getattr(exporter, "session_id", None),
        )

    @classmethod
    def from_config(
        cls,
        config: "AppConfig",
        transport: Transport,
        mapper: RecordMapper,
        exporter: RecordSink,
        cursor_store: CursorStore,
        **kwargs: Any,
    ) -> "CrawlOrchestrator":
        """Build an orchestrator with delays and backoff taken from app.yaml."""
        return cls(
            transport,
            mapper,
            exporter,
            cursor_store,
            backoff_policy=BackoffPolicy(
                base_seconds=config.backoff.base_seconds,
                max_seconds=config.backoff.max_seconds,
                jitter_ratio=config.backoff.jitter_ratio,
            ),
            retry_budget=RetryBudget(config.crawl.max_page_failures),
            page_error_delay=config.crawl.page_error_delay_seconds,
            item_error_delay=config.crawl.item_error_delay_seconds,
            **kwargs,
        )

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> CrawlState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state in ACTIVE_STATES

    def _transition(self, new_state: CrawlState, reason: str) -> None:
        """Move to ``new_state``, logging the event."""
        old_state = self._state
        if new_state not in ALLOWED_TRANSITIONS[old_state]:
            raise RuntimeError(f"invalid transition {old_state.value} -> {new_state.value}")
        self._state = new_state
        self.transitions.append((old_state, new_state))
        self._log.info(
            f"{old_state.value} -> {new_state.value}: {reason}",
            extra={"state": new_state.value},
        )

    def _should_stop(self) -> bool:
        return self._stop_requested

    # =========================================================================
    # Control
    # =========================================================================

    def stop(self) -> None:
        """Ask the running crawl to stop at the next check point.

        Does not interrupt a request already in flight. Safe to call from a
        signal handler or another thread.
        """
        self._stop_requested = True
        logger.info("Stop requested")

    def reset_pagination(self) -> None:
        """Restart pagination from the beginning.

        While a crawl is active the reset is applied after the current page.
        """
        if self.is_active:
            self._reset_pending = True
            logger.info("Pagination reset queued until the current page completes")
            return
        self._apply_reset()

    def _apply_reset(self) -> None:
        self._reset_pending = False
        self.cursor_store.reset()
        self.backoff.clear()
        self.retry_budget.reset()

    def dynamic_delay(self, base: float) -> float:
        """Per-item delay, stretched while a rate limit is recent."""
        return dynamic_delay(base, self.backoff, self._clock())

    # =========================================================================
    # Crawl
    # =========================================================================

    async def start(
        self,
        batch_size: int,
        max_records: int,
        base_delay: float,
        token_provider: TokenProvider | None = None,
    ) -> CrawlStats:
        """Run a crawl until the goal is met, the sequence ends, or it is stopped.

        Args:
            batch_size: Items requested per page (> 0)
            max_records: Stop after this many exported records (0 = unlimited)
            base_delay: Seconds between exported items (> 0)
            token_provider: Called for a new token when credentials are rejected

        Returns:
            CrawlStats for this crawl. If a crawl is already active, the
            running crawl's stats are returned and nothing else happens.
        """
        if batch_size <= 0:
            raise ValueError(f"batch_size must be > 0, got {batch_size}")
        if max_records < 0:
            raise ValueError(f"max_records must be >= 0, got {max_records}")
        if base_delay <= 0:
            raise ValueError(f"base_delay must be > 0, got {base_delay}")

        if self.is_active:
            logger.warning(f"Crawl already {self._state.value}; start ignored")
            return self.stats

        self._stop_requested = False
        self.backoff.clear()
        self.retry_budget.reset()
        self.stats = CrawlStats()
        self._transition(
            CrawlState.RUNNING,
            f"start batch_size={batch_size} max_records={max_records} base_delay={base_delay}",
        )

        try:
            await self._crawl(batch_size, max_records, base_delay, token_provider)
        finally:
            self.stats.finished_at = datetime.now()
            if self.stats.stop_reason is None and self._stop_requested:
                self.stats.stop_reason = StopReason.STOP_REQUESTED
            self._transition(
                CrawlState.STOPPED,
                self.stats.stop_reason.value if self.stats.stop_reason else "error",
            )

        self._log.info(
            f"Crawl finished: {self.stats.processed} exported, {self.stats.skipped} skipped, "
            f"{self.stats.pages_fetched} pages"
        )
        return self.stats

    async def _crawl(
        self,
        batch_size: int,
        max_records: int,
        base_delay: float,
        token_provider: TokenProvider | None,
    ) -> None:
        stats = self.stats
        if self.cursor_store.page_open():
            self._log.info("Previous crawl stopped mid-page; refetching that page")
        cursor, has_more = self.cursor_store.resume_point()
        stats.last_cursor, stats.has_more = cursor, has_more
        if cursor:
            self._log.info("Resuming from saved cursor", extra={"cursor": cursor})

        while has_more and (max_records == 0 or stats.processed < max_records):
            if self._stop_requested:
                return

            remaining = batch_size if max_records == 0 else min(batch_size, max_records - stats.processed)
            if remaining <= 0:
                break

            page = await self._fetch_page(cursor, remaining, token_provider)
            if page is None:
                return

            # Persist the position before items are processed. The page stays
            # open until its items are done, so a crash refetches it.
            page_cursor = cursor
            cursor = page.next_cursor or None
            has_more = page.has_next and cursor is not None
            self.cursor_store.save(cursor, has_more, page_cursor=page_cursor, page_open=True)
            stats.last_cursor, stats.has_more = cursor, has_more

            self._log.info(
                f"Page {stats.pages_fetched}: {len(page)} items, has_more={has_more}",
                extra={"operation": "fetch_page", "cursor": cursor},
            )

            for raw_item in page.items:
                if self._stop_requested:
                    return

                outcome = await self._process_item(raw_item, token_provider)
                if outcome is _ItemOutcome.ABORTED:
                    return
                if outcome is _ItemOutcome.SKIPPED:
                    continue

                stats.processed += 1
                if max_records and stats.processed >= max_records:
                    break
                await self._pause(self.dynamic_delay(base_delay))

            self.cursor_store.close_page()

            if self._reset_pending:
                self._apply_reset()
                cursor, has_more = None, True
                stats.last_cursor, stats.has_more = cursor, has_more
                self._log.info("Applied queued pagination reset")

        stats.stop_reason = StopReason.EXHAUSTED if not has_more else StopReason.GOAL_REACHED

    async def _fetch_page(
        self,
        cursor: str | None,
        limit: int,
        token_provider: TokenProvider | None,
    ) -> Page | None:
        """Fetch one page, retrying until it succeeds. None means the crawl must end."""
        attempt = 0
        while not self._stop_requested:
            attempt += 1
            try:
                page = await self.transport.fetch_page(cursor, limit)
            except TransportError as e:
                if not await self._handle_failure(e, "fetch_page", token_provider, attempt=attempt):
                    return None
                continue

            self.backoff.reset()
            self.retry_budget.reset()
            self.stats.pages_fetched += 1
            return page
        return None

    async def _process_item(
        self,
        raw_item: dict[str, Any],
        token_provider: TokenProvider | None,
    ) -> _ItemOutcome:
        """Fetch details for one item, map it and hand it to the exporter."""
        try:
            item_id = self.mapper.item_id(raw_item)
        except Exception as e:
            self._log.warning(f"Skipping item without id: {e}", extra={"operation": "item_id"})
            return await self._skip()

        attempt = 0
        while True:
            if self._stop_requested:
                return _ItemOutcome.ABORTED
            attempt += 1
            try:
                detail = await self.transport.fetch_details(item_id)
                break
            except TransportError as e:
                if not await self._handle_failure(
                    e, "fetch_details", token_provider, item_id=item_id, attempt=attempt
                ):
                    return _ItemOutcome.ABORTED
                if e.kind is ErrorKind.OTHER:
                    return await self._skip()

        self.backoff.reset()

        try:
            record = self.mapper.map(raw_item, detail)
            self.exporter.add_record(record)
        except Exception as e:
            self._log.error(
                f"Skipping {item_id}: {e}",
                extra={"operation": "export", "item_id": item_id, "attempt": attempt},
                exc_info=True,
            )
            return await self._skip()

        self._log.debug("Exported", extra={"operation": "export", "item_id": item_id})
        return _ItemOutcome.EXPORTED

    async def _skip(self) -> _ItemOutcome:
        self.stats.skipped += 1
        if not await self._pause(self.item_error_delay):
            return _ItemOutcome.ABORTED
        return _ItemOutcome.SKIPPED

    # =========================================================================
    # Recovery
    # =========================================================================

    async def _handle_failure(
        self,
        error: TransportError,
        operation: str,
        token_provider: TokenProvider | None,
        *,
        item_id: str | None = None,
        attempt: int = 1,
    ) -> bool:
        """React to a failed remote call.

        Returns:
            True if the crawl continues, False if it must end
        """
        context = {"operation": operation, "item_id": item_id, "attempt": attempt}

        if error.kind is ErrorKind.AUTH:
            self._log.warning(f"Credentials rejected: {error}", extra=context)
            return await self._request_token(token_provider)

        if error.kind is ErrorKind.RATE_LIMIT:
            self._log.warning(f"Rate limited: {error}", extra=context)
            return await self._back_off(error)

        if item_id is not None:
            self._log.warning(f"Skipping {item_id}: {error}", extra=context)
            return True

        self.stats.page_failures += 1
        if not self.retry_budget.record_failure():
            self._log.error(
                f"Giving up after {self.retry_budget.failures} consecutive page failures: {error}",
                extra=context,
            )
            self.stats.stop_reason = StopReason.RETRY_BUDGET_SPENT
            return False

        self._log.warning(
            f"Page fetch failed, retrying in {self.page_error_delay:.0f}s: {error}",
            extra=context,
        )
        return await self._pause(self.page_error_delay)

    async def _request_token(self, token_provider: TokenProvider | None) -> bool:
        self._transition(CrawlState.AWAITING_TOKEN, "credentials rejected")
        self.stats.token_requests += 1

        token: str | None = None
        if token_provider is not None:
            try:
                result = token_provider()
                token = await result if inspect.isawaitable(result) else result
            except Exception as e:
                self._log.error(f"Token provider failed: {e}", exc_info=True)
                token = None

        if not token or not token.strip():
            self._log.warning("No token provided; stopping")
            self.stats.stop_reason = StopReason.TOKEN_REFUSED
            return False

        self.transport.set_token(token.strip())
        self._transition(CrawlState.RUNNING, "token updated")
        return True

    async def _back_off(self, error: TransportError) -> bool:
        failures = self.backoff.record_failure(self._clock())
        self.stats.rate_limits += 1
        delay = self.backoff_policy.delay(failures)

        self._transition(
            CrawlState.BACKOFF,
            f"rate limit #{failures}, waiting {delay:.1f}s",
        )
        if error.retry_after is not None:
            self._log.info(f"Server suggested Retry-After {error.retry_after:.0f}s; waiting {delay:.0f}s")

        completed = await cancellable_sleep(
            delay,
            self._should_stop,
            sleep=self._sleep,
            on_tick=self._countdown(delay),
        )
        if not completed:
            return False

        self._transition(CrawlState.RUNNING, "backoff finished")
        return True

    def _countdown(self, total: float) -> Callable[[float], None]:
        """Build an on_tick callback that logs the remaining backoff time."""
        logged: set[int] = set()

        def on_tick(remaining: float) -> None:
            seconds = math.ceil(remaining)
            if seconds in logged or seconds >= math.ceil(total):
                return
            if seconds <= COUNTDOWN_FINAL_SECONDS or seconds % COUNTDOWN_LOG_INTERVAL == 0:
                logged.add(seconds)
                self._log.info(f"Resuming in {seconds}s", extra={"state": CrawlState.BACKOFF.value})

        return on_tick

    async def _pause(self, seconds: float) -> bool:
        """Cancellable wait. False if a stop was requested."""
        return await cancellable_sleep(seconds, self._should_stop, sleep=self._sleep)
