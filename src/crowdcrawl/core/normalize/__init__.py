"""Project record mapping and dataset feature extraction."""

from .features import (
    COLUMN_GROUPS,
    DATASET_COLUMNS,
    build_row,
    creator_experience_score,
)
from .records import MappingError, Money, ProjectMapper, ProjectRecord, Reward, map_project
from .text import (
    clean_text,
    count_syllables,
    count_words,
    normalize_whitespace,
    readability_score,
    text_quality_score,
)

__all__ = [
    "COLUMN_GROUPS",
    "DATASET_COLUMNS",
    "MappingError",
    "Money",
    "ProjectMapper",
    "ProjectRecord",
    "Reward",
    "build_row",
    "clean_text",
    "count_syllables",
    "count_words",
    "creator_experience_score",
    "map_project",
    "normalize_whitespace",
    "readability_score",
    "text_quality_score",
]
