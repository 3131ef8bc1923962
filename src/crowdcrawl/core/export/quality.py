"""
Dataset quality report.

Reads a session dataset back and counts what a model-training run would
trip over: empty fields, rows whose width does not match the header, and
duplicate projects. Duplicates are expected after a crawl resumed an
interrupted page, since that page's rows are written again.
"""

from __future__ import annotations

import csv
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from crowdcrawl.core.normalize.features import DATASET_COLUMNS

# The dataset has no id column; a project's name and goal identify it
DEFAULT_KEY_COLUMNS = ("name", "goal_amount")

# Share of empty fields per row above which the dataset needs attention
EMPTY_FIELD_RATIO = 0.1


@dataclass
class DatasetReport:
    """Quality summary of one dataset file."""

    path: Path
    row_count: int = 0
    column_count: int = 0
    header_matches: bool = True
    empty_fields: int = 0
    empty_by_column: dict[str, int] = field(default_factory=dict)
    malformed_rows: int = 0
    duplicate_rows: int = 0
    duplicate_keys: list[tuple[str, ...]] = field(default_factory=list)

    @property
    def is_good(self) -> bool:
        """Header intact, no malformed rows, and at most one empty field per ten rows."""
        return (
            self.header_matches
            and self.malformed_rows == 0
            and self.empty_fields <= self.row_count * EMPTY_FIELD_RATIO
        )


def check_dataset(
    path: Path | str,
    *,
    columns: Sequence[str] = DATASET_COLUMNS,
    key_columns: Sequence[str] = DEFAULT_KEY_COLUMNS,
) -> DatasetReport:
    """Read ``path`` and build a DatasetReport.

    Rows are keyed on ``key_columns``; every occurrence of a key after the
    first counts as a duplicate row. If the header lacks a key column the
    whole row is used as the key.

    Raises:
        FileNotFoundError: If the dataset does not exist
    """
    path = Path(path)
    report = DatasetReport(path=path)

    with open(path, newline="", encoding="utf-8") as f:
        reader = csv.reader(f)
        header = next(reader, None)
        if header is None:
            report.header_matches = False
            return report

        report.column_count = len(header)
        report.header_matches = tuple(header) == tuple(columns)

        if all(c in header for c in key_columns):
            key_index = [header.index(c) for c in key_columns]
        else:
            key_index = list(range(len(header)))

        seen: Counter[tuple[str, ...]] = Counter()
        for row in reader:
            if not row:
                continue
            report.row_count += 1
            if len(row) != len(header):
                report.malformed_rows += 1
                continue

            for name, value in zip(header, row):
                if not value.strip():
                    report.empty_fields += 1
                    report.empty_by_column[name] = report.empty_by_column.get(name, 0) + 1

            key = tuple(row[i] for i in key_index)
            seen[key] += 1
            if seen[key] == 2:
                report.duplicate_keys.append(key)

    report.duplicate_rows = sum(count - 1 for count in seen.values() if count > 1)
    return report
