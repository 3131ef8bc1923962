"""
Typed project records built from raw listing and detail payloads.

Provides a clean interface between the GraphQL payloads and the dataset
row builder. The listing node and the detail payload overlap; where both
carry a field the detail value wins.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

EARLY_BIRD_MARKER = "early bird"


class MappingError(ValueError):
    """A raw payload could not be turned into a ProjectRecord."""


@dataclass
class Money:
    """Amount with its currency."""

    amount: float
    currency: str = ""
    symbol: str = ""


@dataclass
class Reward:
    """One reward tier offered to backers."""

    id: str
    name: str | None
    description: str | None
    amount: Money
    backers_count: int = 0
    estimated_delivery: date | None = None
    is_limited: bool = False
    remaining_quantity: int | None = None
    limit: int | None = None
    has_shipping: bool = False
    shipping_countries_count: int = 0
    is_early_bird: bool = False
    starts_at: datetime | None = None
    ends_at: datetime | None = None


@dataclass
class ProjectRecord:
    """Normalized project data ready for feature extraction."""

    # Identifiers
    id: str
    slug: str
    name: str

    # Copy
    description: str = ""
    story: str = ""
    risks: str | None = None

    # Funding
    goal: Money = field(default_factory=lambda: Money(0.0))
    pledged: Money = field(default_factory=lambda: Money(0.0))
    backer_count: int = 0
    percent_funded: int | None = None
    state: str = ""

    # Creator
    creator_name: str = ""
    creator_backings_count: int | None = None
    creator_projects_count: int | None = None

    # Classification
    category: str = ""
    subcategory: str | None = None
    country: str = ""
    currency: str | None = None
    location: str | None = None

    # Dates
    launched_at: datetime | None = None
    deadline: datetime | None = None

    # Activity and content
    is_project_we_love: bool = False
    has_video: bool = False
    faq_count: int = 0
    comments_count: int = 0
    updates_count: int = 0
    rewards: list[Reward] = field(default_factory=list)
    environmental_commitments: list[str] = field(default_factory=list)

    @property
    def is_successful(self) -> bool:
        return self.state.lower() == "successful"

    @property
    def duration_days(self) -> int:
        """Whole days between launch and deadline, 0 when either is unknown."""
        if self.launched_at is None or self.deadline is None:
            return 0
        return (self.deadline - self.launched_at).days


# =============================================================================
# Payload helpers
# =============================================================================


def _money(node: Any) -> Money:
    if not isinstance(node, dict):
        return Money(0.0)
    try:
        amount = float(node.get("amount") or 0)
    except (TypeError, ValueError) as e:
        raise MappingError(f"invalid money amount: {node.get('amount')!r}") from e
    return Money(amount, node.get("currency") or "", node.get("symbol") or "")


def _epoch(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError) as e:
        raise MappingError(f"invalid epoch timestamp: {value!r}") from e


def _iso_date(value: Any) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _nested(node: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _reward(node: dict[str, Any]) -> Reward:
    name = node.get("name")
    shipping_rules = node.get("simpleShippingRulesExpanded") or []
    return Reward(
        id=str(node.get("id", "")),
        name=name,
        description=node.get("description"),
        amount=_money(node.get("amount")),
        backers_count=int(node.get("backersCount") or 0),
        estimated_delivery=_iso_date(node.get("estimatedDeliveryOn")),
        is_limited=node.get("limit") is not None or node.get("remainingQuantity") is not None,
        remaining_quantity=node.get("remainingQuantity"),
        limit=node.get("limit"),
        has_shipping=(node.get("shippingPreference") or "none") != "none",
        shipping_countries_count=len(shipping_rules),
        is_early_bird=bool(name) and EARLY_BIRD_MARKER in name.lower(),
        starts_at=_epoch(node.get("startsAt")),
        ends_at=_epoch(node.get("endsAt")),
    )


# =============================================================================
# Mapping
# =============================================================================


def map_project(raw_item: dict[str, Any], raw_detail: dict[str, Any] | None = None) -> ProjectRecord:
    """Merge a listing node and its detail payload into a ProjectRecord.

    Raises:
        MappingError: If identifiers are missing or values are malformed
    """
    merged: dict[str, Any] = {**(raw_item or {}), **(raw_detail or {})}

    project_id = merged.get("id")
    slug = merged.get("slug")
    if not project_id or not slug:
        raise MappingError("project payload lacks id or slug")

    category_node = merged.get("category") or {}
    parent_name = _nested(category_node, "parentCategory", "name")
    own_name = category_node.get("name") or ""

    goal = _money(merged.get("goal"))
    creator = merged.get("creator") or {}

    commitments = [
        f"{c.get('commitmentCategory')}: {c.get('description')}"
        for c in merged.get("environmentalCommitments") or []
        if isinstance(c, dict)
    ]

    return ProjectRecord(
        id=str(project_id),
        slug=str(slug),
        name=merged.get("name") or "",
        description=merged.get("description") or "",
        story=merged.get("story") or "",
        risks=merged.get("risks"),
        goal=goal,
        pledged=_money(merged.get("pledged")),
        backer_count=int(merged.get("backersCount") or 0),
        percent_funded=merged.get("percentFunded"),
        state=merged.get("state") or "",
        creator_name=creator.get("name") or "",
        creator_backings_count=creator.get("backingsCount"),
        creator_projects_count=_nested(creator, "launchedProjects", "totalCount"),
        category=parent_name or own_name,
        subcategory=own_name if parent_name else None,
        country=_nested(merged, "country", "name") or "",
        currency=merged.get("currency") or goal.currency or None,
        location=_nested(merged, "location", "displayableName"),
        launched_at=_epoch(merged.get("launchedAt")),
        deadline=_epoch(merged.get("deadlineAt")),
        is_project_we_love=bool(merged.get("isProjectWeLove")),
        has_video=_nested(merged, "video", "videoSources", "high", "src") is not None,
        faq_count=len(_nested(merged, "faqs", "nodes") or []),
        comments_count=int(merged.get("commentsCount") or 0),
        updates_count=int(_nested(merged, "posts", "totalCount") or 0),
        rewards=[_reward(n) for n in _nested(merged, "rewards", "nodes") or [] if isinstance(n, dict)],
        environmental_commitments=commitments,
    )


class ProjectMapper:
    """RecordMapper for the project API: identifies and maps listing items."""

    def item_id(self, raw_item: dict[str, Any]) -> str:
        """Detail calls are keyed by slug."""
        slug = raw_item.get("slug") if isinstance(raw_item, dict) else None
        if not slug:
            raise MappingError("listing item lacks a slug")
        return str(slug)

    def map(self, raw_item: dict[str, Any], raw_detail: dict[str, Any] | None) -> ProjectRecord:
        return map_project(raw_item, raw_detail)
