"""
Crawl commands: run, reset and inspect the pagination position.
"""

from __future__ import annotations

import asyncio
import os
import signal
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from ._common import CONFIG_OPTION, err_console, load_config, open_cursor_store, open_state

console = Console()

app = typer.Typer(
    help="Run and control the crawl",
    no_args_is_help=True,
)

TOKEN_ENV_VAR = "CROWDCRAWL_TOKEN"


def prompt_token_provider(no_prompt: bool = False):
    """Token provider that asks on the terminal. Empty input means no token."""

    def provide() -> str | None:
        if no_prompt:
            return None
        console.print()
        console.print("[yellow]Authentication required.[/yellow] Enter a new API token (empty to stop).")
        token = Prompt.ask("Token", default="", show_default=False, password=True, console=console)
        return token.strip() or None

    return provide


@app.command("run")
def run_crawl(
    batch_size: Optional[int] = typer.Option(
        None,
        "--batch-size",
        "-b",
        help="Projects per page (default from config: 15)",
    ),
    max_records: Optional[int] = typer.Option(
        None,
        "--max-records",
        "-n",
        help="Stop after this many exported projects, 0 for unlimited (default from config: 100)",
    ),
    delay: Optional[float] = typer.Option(
        None,
        "--delay",
        "-d",
        help="Seconds between projects (default from config: 1.0)",
    ),
    no_prompt: bool = typer.Option(
        False,
        "--no-prompt",
        help="Stop instead of asking for a token when credentials are rejected",
    ),
    config_path: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Crawl projects and append them to the current dataset.

    Resumes from the saved cursor and the current export session. Press
    Ctrl+C once to stop after the current request.

    Examples:
        crowdcrawl crawl run
        crowdcrawl crawl run --batch-size 25 --max-records 0
        crowdcrawl crawl run -n 500 --no-prompt
    """
    from crowdcrawl.core.export import ExportError, SessionExporter
    from crowdcrawl.core.logging import setup_logging
    from crowdcrawl.core.normalize import ProjectMapper
    from crowdcrawl.core.orchestrator import CrawlOrchestrator
    from crowdcrawl.core.transport import GraphQLTransport, TokenStore
    from crowdcrawl.persistence import CursorStore

    config = load_config(config_path)

    batch_size = batch_size if batch_size is not None else config.crawl.batch_size
    max_records = max_records if max_records is not None else config.crawl.max_records
    delay = delay if delay is not None else config.crawl.base_delay_seconds
    problems = _check_parameters(batch_size, max_records, delay)
    if problems:
        for problem in problems:
            err_console.print(f"[red]Invalid crawl parameters:[/red] {problem}")
        raise typer.Exit(1)

    config.ensure_directories()
    setup_logging(
        level=config.logging.level,
        log_file=config.logging.file,
        json_format=config.logging.json_format,
        rich_console=config.logging.rich_console,
    )

    repo = open_state(config)
    tokens = TokenStore(repo)
    env_token = os.environ.get(TOKEN_ENV_VAR)
    if env_token:
        tokens.set(env_token)

    try:
        exporter = SessionExporter.from_config(config.storage)
    except (ExportError, OSError) as e:
        err_console.print(f"[red]Cannot open export session:[/red] {e}")
        raise typer.Exit(1)

    transport = GraphQLTransport.from_config(config.transport, token_store=tokens)
    orchestrator = CrawlOrchestrator.from_config(
        config,
        transport,
        ProjectMapper(),
        exporter,
        CursorStore(repo),
    )

    info = exporter.session_info()
    verb = "Resuming" if exporter.resumed else "Started"
    console.print(f"[bold]{verb} session[/bold] {info.session_id} ({info.row_count} rows)")
    console.print(f"[dim]Writing to {info.output_path}[/dim]")
    console.print(
        f"batch size [cyan]{batch_size}[/cyan], max records [cyan]{max_records or 'unlimited'}[/cyan], "
        f"delay [cyan]{delay}s[/cyan]"
    )
    console.print()

    async def _crawl():
        async with transport:
            return await orchestrator.start(
                batch_size,
                max_records,
                delay,
                prompt_token_provider(no_prompt),
            )

    def _on_interrupt(signum, frame):
        # A second Ctrl+C falls through to the default handler
        signal.signal(signal.SIGINT, previous_handler)
        console.print("\n[yellow]Stopping after the current request...[/yellow]")
        orchestrator.stop()

    previous_handler = signal.signal(signal.SIGINT, _on_interrupt)
    try:
        stats = asyncio.run(_crawl())
    except ValueError as e:
        err_console.print(f"[red]Invalid crawl parameters:[/red] {e}")
        raise typer.Exit(1)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    _show_summary(stats, exporter.session_info())


def _check_parameters(batch_size: int, max_records: int, delay: float) -> list[str]:
    problems = []
    if batch_size <= 0:
        problems.append(f"batch size must be > 0, got {batch_size}")
    if max_records < 0:
        problems.append(f"max records must be >= 0, got {max_records}")
    if delay <= 0:
        problems.append(f"delay must be > 0, got {delay}")
    return problems


def _show_summary(stats, info) -> None:
    """Print the end-of-crawl summary table."""
    table = Table(title="Crawl Summary", show_header=True, header_style="bold magenta")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Exported", f"[green]{stats.processed}[/green]")
    table.add_row("Skipped", f"[yellow]{stats.skipped}[/yellow]" if stats.skipped else "0")
    table.add_row("Pages", str(stats.pages_fetched))
    table.add_row("Page failures", str(stats.page_failures))
    table.add_row("Rate limits", str(stats.rate_limits))
    table.add_row("Stop reason", stats.stop_reason.value if stats.stop_reason else "-")
    table.add_row("More pages", "yes" if stats.has_more else "no")
    if stats.duration_seconds is not None:
        table.add_row("Duration", f"{stats.duration_seconds:.1f}s")
    table.add_row("Session rows", str(info.row_count))

    console.print()
    console.print(table)


@app.command("reset")
def reset_pagination(
    config_path: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Start the next crawl from the first page again."""
    config = load_config(config_path)
    open_cursor_store(config).reset()
    console.print("[green]Pagination reset.[/green] The next crawl starts from the beginning.")


@app.command("status")
def show_status(
    config_path: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Show where the next crawl starts and whether more pages are available."""
    from crowdcrawl.core.transport import TokenStore

    config = load_config(config_path)
    repo = open_state(config)
    store = open_cursor_store(config)
    cursor, has_more = store.resume_point()
    page_open = store.page_open()

    table = Table(title="Crawl State", show_header=False)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("Next fetch", cursor or "[dim](start)[/dim]")
    table.add_row(
        "Page open",
        "[yellow]yes, the interrupted page is fetched again[/yellow]" if page_open else "no",
    )
    table.add_row("More pages", "[green]yes[/green]" if has_more else "[red]no[/red]")
    table.add_row("Token", "set" if TokenStore(repo).has_token() else "[dim]not set[/dim]")
    table.add_row("State DB", config.storage.state_url)
    console.print(table)
