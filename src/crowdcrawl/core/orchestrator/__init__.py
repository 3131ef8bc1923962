"""Orchestrator - crawl state machine, pagination, recovery."""

from .runner import (
    CrawlOrchestrator,
    CrawlState,
    CrawlStats,
    RecordMapper,
    RecordSink,
    StopReason,
    TokenProvider,
)

__all__ = [
    "CrawlOrchestrator",
    "CrawlState",
    "CrawlStats",
    "RecordMapper",
    "RecordSink",
    "StopReason",
    "TokenProvider",
]
