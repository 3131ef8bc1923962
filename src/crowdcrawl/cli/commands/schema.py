"""
Dataset schema command.
"""

from __future__ import annotations

from rich.console import Console
from rich.table import Table

from crowdcrawl.core.normalize import COLUMN_GROUPS, DATASET_COLUMNS

console = Console()


def show_schema() -> None:
    """List the dataset columns, grouped by section."""
    table = Table(
        title=f"Dataset Columns ({len(DATASET_COLUMNS)})",
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("#", justify="right", style="dim")
    table.add_column("Column", style="cyan")
    table.add_column("Group")

    position = 0
    for group, columns in COLUMN_GROUPS.items():
        for column in columns:
            position += 1
            table.add_row(str(position), column, group)

    console.print(table)
