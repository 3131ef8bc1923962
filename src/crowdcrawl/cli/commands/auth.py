"""
API token commands.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from crowdcrawl.core.transport import TokenStore

from ._common import CONFIG_OPTION, err_console, load_config, open_state

console = Console()

app = typer.Typer(
    help="Manage the API token",
    no_args_is_help=True,
)


@app.command("set")
def set_token(
    token: str = typer.Argument(..., help="API token, with or without the 'token ' prefix"),
    config_path: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Store the token used for authenticated requests."""
    config = load_config(config_path)
    try:
        TokenStore(open_state(config)).set(token)
    except ValueError as e:
        err_console.print(f"[red]Invalid token:[/red] {e}")
        raise typer.Exit(1)
    console.print("[green]Token saved.[/green]")


@app.command("clear")
def clear_token(
    config_path: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Remove the stored token."""
    config = load_config(config_path)
    TokenStore(open_state(config)).clear()
    console.print("Token cleared.")
