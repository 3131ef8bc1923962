"""
Dataset row construction.

Turns a ProjectRecord into the fixed, ordered set of dataset columns:
targets, cleaned text, text metrics and structured features.
"""

from __future__ import annotations

import math

from .records import ProjectRecord
from .text import clean_text, count_words, readability_score, text_quality_score

TARGET_COLUMNS = (
    "is_successful",
    "funding_ratio",
    "backer_count",
)

TEXT_COLUMNS = (
    "story",
    "description",
    "risks",
    "name",
)

TEXT_METRIC_COLUMNS = (
    "story_length",
    "description_length",
    "title_length",
    "description_word_count",
    "title_word_count",
    "risks_word_count",
    "story_readability_score",
    "description_readability_score",
    "text_quality_score",
)

STRUCTURED_COLUMNS = (
    "goal_amount",
    "goal_amount_log",
    "funding_per_backer",
    "category",
    "subcategory",
    "country",
    "duration_days",
    "creator_projects_count",
    "creator_backings_count",
    "creator_experience_score",
    "has_video",
    "rewards_count",
    "avg_reward_amount",
    "reward_price_range",
    "has_early_bird_rewards",
    "has_limited_rewards",
    "has_risks",
    "faq_count",
    "updates_count",
    "is_project_we_love",
    "has_location",
)

COLUMN_GROUPS: dict[str, tuple[str, ...]] = {
    "Targets": TARGET_COLUMNS,
    "Text": TEXT_COLUMNS,
    "Text metrics": TEXT_METRIC_COLUMNS,
    "Structured features": STRUCTURED_COLUMNS,
}

DATASET_COLUMNS: tuple[str, ...] = TARGET_COLUMNS + TEXT_COLUMNS + TEXT_METRIC_COLUMNS + STRUCTURED_COLUMNS


def creator_experience_score(projects_count: int, backings_count: int) -> float:
    """Weighted creator experience on a 0-1 scale.

    Launched projects contribute up to 5 points, backings up to 3.
    """
    project_score = min(projects_count * 0.7, 5.0)
    backing_score = min(backings_count * 0.1, 3.0)
    return (project_score + backing_score) / 8.0


def _bool(value: bool) -> str:
    return "true" if value else "false"


def _fixed(value: float, places: int) -> str:
    return f"{value:.{places}f}"


def build_row(record: ProjectRecord) -> list[str]:
    """Build one dataset row in DATASET_COLUMNS order."""
    story = clean_text(record.story)
    description = clean_text(record.description)
    risks = clean_text(record.risks or "")
    name = clean_text(record.name)

    goal = record.goal.amount
    pledged = record.pledged.amount
    funding_ratio = pledged / goal if goal > 0 else 0.0
    goal_log = math.log10(goal) if goal > 0 else 0.0
    per_backer = pledged / record.backer_count if record.backer_count > 0 else 0.0

    projects_count = record.creator_projects_count or 0
    backings_count = record.creator_backings_count or 0

    prices = sorted(r.amount.amount for r in record.rewards)
    avg_reward = sum(prices) / len(prices) if prices else 0.0
    price_range = prices[-1] - prices[0] if prices else 0.0

    row = [
        # Targets
        _bool(record.is_successful),
        _fixed(funding_ratio, 6),
        str(record.backer_count),
        # Text
        story,
        description,
        risks,
        name,
        # Text metrics
        str(len(story)),
        str(len(description)),
        str(len(name)),
        str(count_words(description)),
        str(count_words(name)),
        str(count_words(risks)),
        _fixed(readability_score(story), 3),
        _fixed(readability_score(description), 3),
        _fixed(text_quality_score(story, description, risks), 3),
        # Structured features
        _fixed(goal, 2),
        _fixed(goal_log, 6),
        _fixed(per_backer, 2),
        record.category,
        record.subcategory or "",
        record.country,
        str(record.duration_days),
        str(projects_count),
        str(backings_count),
        _fixed(creator_experience_score(projects_count, backings_count), 3),
        _bool(record.has_video),
        str(len(record.rewards)),
        _fixed(avg_reward, 2),
        _fixed(price_range, 2),
        _bool(any(r.is_early_bird for r in record.rewards)),
        _bool(any(r.is_limited for r in record.rewards)),
        _bool(bool(record.risks and record.risks.strip())),
        str(record.faq_count),
        str(record.updates_count),
        _bool(record.is_project_we_love),
        _bool(bool(record.location and record.location.strip())),
    ]
    return row
