"""lectern status — list a bot's sources with processing status and progress."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from lectern.cli.errors import err_no_db
from lectern.config import load_config
from lectern.db.connection import Database
from lectern.db.migrations import initialize
from lectern.db.models import SourceStatus
from lectern.db.repository import Repository

console = Console()

_STATUS_STYLE = {
    SourceStatus.PENDING: "[dim]pending[/]",
    SourceStatus.PROCESSING: "[yellow]processing[/]",
    SourceStatus.COMPLETED: "[green]completed[/]",
    SourceStatus.FAILED: "[red]failed[/]",
}


def status_cmd(
    bot: Annotated[str, typer.Option("--bot", "-b", help="Bot whose sources to list.")],
    db: Annotated[
        Path | None, typer.Option("--db", help="Path to the database (default from config).")
    ] = None,
) -> None:
    """Show a bot's sources: type, status, progress, embedded/total chunks and errors."""
    db_path = db if db is not None else Path(load_config().storage.db_path)
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    with Database(db_path).connection() as conn:
        initialize(conn)
        repo = Repository(conn)
        sources = repo.list_sources(bot)
        counts = {
            s.id: (repo.count_embedded_chunks_by_source(s.id), repo.count_chunks_by_source(s.id))
            for s in sources
        }

    if not sources:
        console.print(
            Panel(
                f"[dim]No sources for bot '{bot}'.[/]\n"
                f"  Run:  lectern add --bot {bot} --url <url>",
                title="[bold]Sources[/]",
                expand=False,
            )
        )
        return

    table = Table(title=f"Sources of {bot}")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Type")
    table.add_column("Source")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Embedded", justify="right")
    table.add_column("Error", style="red")

    for source in sources:
        embedded, total = counts[source.id]
        table.add_row(
            source.id,
            source.source_type.value,
            source.display_name,
            _STATUS_STYLE[source.status],
            f"{source.progress}%",
            _embedded_cell(embedded, total),
            source.error_message,
        )

    done = sum(1 for s in sources if s.status is SourceStatus.COMPLETED)
    console.print(table)
    console.print(f"[dim]{done}/{len(sources)} completed[/]")


def _embedded_cell(embedded: int, total: int) -> str:
    if embedded < total:
        return f"[yellow]{embedded}/{total}[/]"
    return f"{embedded}/{total}"
