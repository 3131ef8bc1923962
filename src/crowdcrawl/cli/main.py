"""
crowdcrawl CLI - Main entry point.

Resumable crawler that turns a crowdfunding project API into an
ML-ready CSV dataset.
"""

from __future__ import annotations

import os
import sys
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.traceback import install as install_rich_traceback

from crowdcrawl import __app_name__, __version__

# Load environment variables from .env (if present)
load_dotenv()

# Install rich traceback for better error display
install_rich_traceback(show_locals=False, width=120)

# Force UTF-8 on Windows to avoid encoding issues
if sys.platform == "win32":
    os.environ.setdefault("PYTHONIOENCODING", "utf-8")
    if hasattr(sys.stdout, "reconfigure"):
        try:
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        except (AttributeError, OSError):
            pass

console = Console()

# Create main app
app = typer.Typer(
    name=__app_name__,
    help="Resumable crowdfunding project crawler with ML dataset export",
    rich_markup_mode="rich",
    no_args_is_help=True,
    pretty_exceptions_show_locals=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold cyan]{__app_name__}[/bold cyan] version [green]{__version__}[/green]")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """crowdcrawl - resumable project crawler."""
    pass


# =============================================================================
# Import and register subcommand modules
# =============================================================================

from .commands import auth, config, crawl, schema, session  # noqa: E402

app.add_typer(crawl.app, name="crawl", help="Run and control the crawl")
app.add_typer(session.app, name="session", help="Inspect and rotate export sessions")
app.add_typer(auth.app, name="token", help="Manage the API token")
app.command("schema")(schema.show_schema)
app.command("check-config")(config.check_config)


# =============================================================================
# Entry Point
# =============================================================================


def run() -> None:
    """Run the CLI application."""
    app()


if __name__ == "__main__":
    run()
