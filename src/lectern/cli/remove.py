"""lectern remove — remove a source from a bot's knowledge base.

The source is soft-deleted (its chunks stop appearing in search), its
vectors are cleared and its stored file is deleted.

Usage:
  lectern remove 3f0c... --bot docs-bot
  lectern remove 3f0c... --bot docs-bot --yes
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from lectern.cli.errors import (
    err_config,
    err_dimension_mismatch,
    err_no_db,
    err_source_not_found,
)
from lectern.cli.runtime import load_runtime
from lectern.config import ConfigError
from lectern.db.repository import Repository
from lectern.errors import DimensionMismatchError, SourceNotFound

console = Console()


def remove_cmd(
    source_id: Annotated[str, typer.Argument(help="ID of the source to remove.")],
    bot: Annotated[str, typer.Option("--bot", "-b", help="Bot that owns the source.")],
    db: Annotated[
        Path | None, typer.Option("--db", help="Path to the database (default from config).")
    ] = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt.")] = False,
) -> None:
    """Remove a source and its vectors from a bot's knowledge base."""
    if db is not None and not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)
    try:
        rt = load_runtime(db)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)
    except DimensionMismatchError as exc:
        console.print(err_dimension_mismatch(str(exc)))
        raise typer.Exit(1)

    with rt.db.connection() as conn:
        repo = Repository(conn)
        existing = repo.get_source(source_id)
        chunk_count = repo.count_chunks_by_source(source_id) if existing else 0

    if existing is None or existing.bot_id != bot:
        console.print(err_source_not_found(source_id, bot))
        raise typer.Exit(1)

    console.print(f"\nRemove source: [bold]{existing.display_name}[/]")
    console.print(f"  Chunks: {chunk_count}  |  Status: {existing.status.value}")
    if not yes:
        if not typer.confirm("Confirm removal?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

    try:
        rt.registrar().remove_source(bot, source_id)
    except SourceNotFound:
        console.print(err_source_not_found(source_id, bot))
        raise typer.Exit(1)

    console.print(f"\n[green]✓[/] Removed: {existing.display_name}")
