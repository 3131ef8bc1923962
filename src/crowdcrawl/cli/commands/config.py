"""
Configuration check command.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from crowdcrawl.core.config import validate_config_file
from crowdcrawl.core.config.loader import DEFAULT_CONFIG_PATH

console = Console()


def check_config(
    path: Path = typer.Argument(DEFAULT_CONFIG_PATH, help="Path to app.yaml"),
) -> None:
    """Validate a configuration file without running anything."""
    errors = validate_config_file(path)
    if errors:
        console.print(f"[red]{path} has {len(errors)} problem(s):[/red]")
        for error in errors:
            console.print(f"  [red]✗[/red] {error}")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] {path} is valid")
