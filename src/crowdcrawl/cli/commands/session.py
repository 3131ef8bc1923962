"""
Export session commands.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from crowdcrawl.core.export import check_dataset, clear_marker, current_session

from ._common import CONFIG_OPTION, load_config

console = Console()

app = typer.Typer(
    help="Inspect and rotate export sessions",
    no_args_is_help=True,
)


@app.command("info")
def session_info(
    config_path: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Show the active export session."""
    config = load_config(config_path)
    storage = config.storage
    info = current_session(storage.output_dir, storage.session_marker, storage.dataset_filename)

    if info is None:
        console.print("[dim]No active session. The next crawl starts a new one.[/dim]")
        return

    table = Table(title="Export Session", show_header=False)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("Session", info.session_id)
    table.add_row("Rows", str(info.row_count))
    table.add_row("File", str(info.output_path))
    console.print(table)


@app.command("new")
def new_session(
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Skip confirmation",
    ),
    config_path: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Start a new dataset file on the next crawl.

    Existing session directories are left untouched.
    """
    config = load_config(config_path)

    if not yes:
        confirm = typer.confirm("Start a new session? The next crawl writes a new dataset file")
        if not confirm:
            console.print("Cancelled.")
            raise typer.Exit()

    if clear_marker(config.storage.session_marker):
        console.print("[green]A new session will be created on the next crawl.[/green]")
    else:
        console.print("[dim]No active session; the next crawl already starts a new one.[/dim]")


@app.command("check")
def check_session(
    config_path: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Report rows, columns, empty fields and duplicates in the active dataset.

    Duplicates are keyed on project name and goal amount. Rows of a page
    that was interrupted and refetched show up here.
    """
    config = load_config(config_path)
    storage = config.storage
    info = current_session(storage.output_dir, storage.session_marker, storage.dataset_filename)

    if info is None:
        console.print("[dim]No active session to check.[/dim]")
        raise typer.Exit(1)

    report = check_dataset(info.output_path)

    table = Table(title=f"Data Quality: {info.session_id}", show_header=False)
    table.add_column("Check", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Records", str(report.row_count))
    table.add_row("Columns", str(report.column_count))
    table.add_row("Header", "[green]ok[/green]" if report.header_matches else "[red]mismatch[/red]")
    table.add_row("Empty values", str(report.empty_fields))
    table.add_row(
        "Malformed rows",
        f"[red]{report.malformed_rows}[/red]" if report.malformed_rows else "0",
    )
    table.add_row(
        "Duplicate rows",
        f"[yellow]{report.duplicate_rows}[/yellow]" if report.duplicate_rows else "0",
    )
    console.print(table)

    if report.empty_by_column:
        worst = sorted(report.empty_by_column.items(), key=lambda kv: kv[1], reverse=True)[:5]
        console.print("Most empty columns: " + ", ".join(f"{name} ({count})" for name, count in worst))

    for key in report.duplicate_keys[:10]:
        console.print(f"[yellow]Duplicate:[/yellow] {escape(' / '.join(key))}")
    if len(report.duplicate_keys) > 10:
        console.print(f"[dim]... and {len(report.duplicate_keys) - 10} more[/dim]")

    verdict = "[green]Good[/green]" if report.is_good else "[yellow]Needs attention[/yellow]"
    console.print(f"Data quality: {verdict}")
