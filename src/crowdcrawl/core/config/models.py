"""
Pydantic configuration models for crowdcrawl.

These models provide type-safe configuration with validation for:
- The remote GraphQL transport
- Crawl pacing and retry behavior
- Rate-limit backoff
- State database and dataset output locations
- Logging
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# Enums
# =============================================================================


class ProjectSort(str, Enum):
    """Sort orders accepted by the project listing query."""

    MAGIC = "MAGIC"
    NEWEST = "NEWEST"
    POPULARITY = "POPULARITY"
    END_DATE = "END_DATE"
    MOST_FUNDED = "MOST_FUNDED"
    MOST_BACKED = "MOST_BACKED"


# =============================================================================
# Transport Configuration
# =============================================================================


class TransportConfig(BaseModel):
    """Remote API connection settings."""

    endpoint: str = Field(
        default="https://www.kickstarter.com/graph",
        description="GraphQL endpoint URL",
    )
    timeout_seconds: float = Field(
        default=60.0,
        ge=1.0,
        le=600.0,
        description="Upper bound for every network call",
    )
    min_request_interval_seconds: float = Field(
        default=2.0,
        ge=0.0,
        description="Minimum spacing between consecutive requests",
    )
    client_id: str | None = Field(
        default=None,
        description="Value for the client identification header",
    )
    user_agent: str = Field(
        default="Kickstarter Android Mobile Variant/externalRelease Code/2014150939 Version/3.31.1",
        description="User-Agent header",
    )
    sort: ProjectSort = Field(
        default=ProjectSort.MAGIC,
        description="Listing sort order",
    )
    extra_headers: dict[str, str] = Field(
        default_factory=dict,
        description="Additional headers sent with every request",
    )


# =============================================================================
# Crawl Configuration
# =============================================================================


class CrawlConfig(BaseModel):
    """Pagination goals and fixed retry delays."""

    batch_size: int = Field(
        default=15,
        gt=0,
        le=100,
        description="Projects requested per page",
    )
    max_records: int = Field(
        default=100,
        ge=0,
        description="Stop after this many exported projects (0 = unlimited)",
    )
    base_delay_seconds: float = Field(
        default=1.0,
        gt=0.0,
        description="Delay between processed items before dynamic throttling",
    )
    page_error_delay_seconds: float = Field(
        default=5.0,
        ge=0.0,
        description="Fixed wait before retrying a page after a generic error",
    )
    item_error_delay_seconds: float = Field(
        default=2.0,
        ge=0.0,
        description="Fixed wait after skipping an item on a generic error",
    )
    max_page_failures: int | None = Field(
        default=None,
        ge=1,
        description="Stop after this many consecutive generic page failures (None = retry forever)",
    )


class BackoffConfig(BaseModel):
    """Rate-limit backoff schedule."""

    base_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Delay for the first consecutive rate-limit failure",
    )
    max_seconds: float = Field(
        default=600.0,
        gt=0.0,
        description="Upper bound before jitter",
    )
    jitter_ratio: float = Field(
        default=0.1,
        ge=0.0,
        lt=1.0,
        description="Symmetric jitter as a fraction of the delay",
    )

    @field_validator("max_seconds")
    @classmethod
    def max_gte_base(cls, v: float, info: Any) -> float:
        """Ensure the cap is at least the base delay."""
        base = info.data.get("base_seconds", 0.0)
        if v < base:
            raise ValueError("max_seconds must be >= base_seconds")
        return v


# =============================================================================
# Storage Configuration
# =============================================================================


class StorageConfig(BaseModel):
    """Durable state and dataset locations."""

    state_url: str = Field(
        default="sqlite:///data/crowdcrawl_state.db",
        description="SQLAlchemy URL of the key/value state database",
    )
    output_dir: Path = Field(
        default=Path("output"),
        description="Directory holding one subdirectory per export session",
    )
    session_marker: Path = Field(
        default=Path("output/current_session.txt"),
        description="File naming the active export session",
    )
    dataset_filename: str = Field(
        default="ml_dataset.csv",
        min_length=1,
        description="Dataset file name inside a session directory",
    )


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
    )
    file: Path | None = Field(
        default=Path("logs/crowdcrawl.log"),
        description="Log file path",
    )
    json_format: bool = Field(
        default=True,
        description="Use JSON format for file logs",
    )
    rich_console: bool = Field(
        default=True,
        description="Use Rich for console output",
    )

    @field_validator("level")
    @classmethod
    def known_level(cls, v: str) -> str:
        if v.upper() not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {v}")
        return v.upper()


# =============================================================================
# Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """Root application configuration, loaded from app.yaml."""

    transport: TransportConfig = Field(default_factory=TransportConfig)
    crawl: CrawlConfig = Field(default_factory=CrawlConfig)
    backoff: BackoffConfig = Field(default_factory=BackoffConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def ensure_directories(self) -> None:
        """Create output, marker and log directories if missing."""
        self.storage.output_dir.mkdir(parents=True, exist_ok=True)
        self.storage.session_marker.parent.mkdir(parents=True, exist_ok=True)
        if self.logging.file:
            self.logging.file.parent.mkdir(parents=True, exist_ok=True)
