"""Helpers shared by the command modules."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from crowdcrawl.core.config import AppConfig, ConfigError, load_app_config
from crowdcrawl.persistence import CursorStore, StateRepository, get_session_factory, init_db

err_console = Console(stderr=True)

CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to app.yaml (default: configs/app.yaml)",
)


def load_config(path: Optional[Path]) -> AppConfig:
    """Load app.yaml or exit with a readable error."""
    try:
        return load_app_config(path)
    except ConfigError as e:
        err_console.print(f"[red]Error loading config:[/red] {e}")
        if e.details:
            err_console.print(f"[dim]{e.details}[/dim]")
        raise typer.Exit(1)


def open_state(config: AppConfig) -> StateRepository:
    """Create the state tables if needed and return a repository on them."""
    init_db(config.storage.state_url)
    return StateRepository(get_session_factory(config.storage.state_url))


def open_cursor_store(config: AppConfig) -> CursorStore:
    return CursorStore(open_state(config))
