"""lectern search / lectern chat — query a bot's knowledge base.

``chat`` streams tokens as they arrive; ``--sse`` prints the raw
Server-Sent Events frames instead. Without a MESSAGE argument, ``chat``
opens an interactive session that ends on an empty line or EOF.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from lectern.cli.errors import (
    err_config,
    err_dimension_mismatch,
    err_no_api_key,
    err_search_failed,
)
from lectern.cli.runtime import Runtime, load_runtime
from lectern.config import ConfigError
from lectern.errors import DimensionMismatchError, SearchError, SessionError
from lectern.rag.chat import ChatOrchestrator
from lectern.rag.llm_client import validate_api_key

console = Console()


def search_cmd(
    query: Annotated[str, typer.Argument(help="Search query.")],
    bot: Annotated[str, typer.Option("--bot", "-b", help="Bot to search.")],
    limit: Annotated[int, typer.Option("--limit", "-n", min=1, help="Maximum results.")] = 5,
    db: Annotated[
        Path | None, typer.Option("--db", help="Path to the database (default from config).")
    ] = None,
) -> None:
    """Semantic search over a bot's indexed chunks."""
    rt = _runtime(db, check_models=("embedding",))
    try:
        results = rt.search().search(query, bot, limit)
    except SearchError as exc:
        console.print(err_search_failed(str(exc)))
        raise typer.Exit(1)

    if not results:
        console.print(f"[dim]No results for bot '{bot}'.[/]")
        return

    table = Table(title=f"Results for {query!r}")
    table.add_column("#", justify="right")
    table.add_column("Distance", justify="right")
    table.add_column("Source")
    table.add_column("Chunk", justify="right")
    table.add_column("Content")
    for i, result in enumerate(results, start=1):
        preview = result.content if len(result.content) <= 120 else result.content[:117] + "..."
        table.add_row(
            str(i),
            f"{result.distance:.4f}",
            result.source_url,
            str(result.chunk_index),
            preview,
        )
    console.print(table)


def chat_cmd(
    bot: Annotated[str, typer.Option("--bot", "-b", help="Bot to chat with.")],
    message: Annotated[
        str | None, typer.Argument(help="Message to send (omit for an interactive session).")
    ] = None,
    system: Annotated[str, typer.Option("--system", help="Bot system prompt.")] = "",
    sse: Annotated[bool, typer.Option("--sse", help="Print raw SSE frames.")] = False,
    db: Annotated[
        Path | None, typer.Option("--db", help="Path to the database (default from config).")
    ] = None,
) -> None:
    """Ask a bot a question and stream the answer."""
    rt = _runtime(db, check_models=("embedding", "generation"))
    orchestrator = rt.chat()

    if message is not None:
        if not _turn(orchestrator, bot, message, system, sse):
            raise typer.Exit(1)
        return

    sessions = rt.sessions()
    sessions.start_sweeper()
    session = sessions.create(bot)
    console.print(f"[dim]Session {session.id} (empty line to quit)[/]")
    try:
        while True:
            try:
                line = console.input("[bold]> [/]")
            except EOFError:
                break
            if not line.strip():
                break
            try:
                sessions.touch(session.id)
            except SessionError as exc:
                console.print(f"[yellow]{exc}[/] Start a new chat to continue.")
                break
            _turn(orchestrator, bot, line, system, sse)
    finally:
        sessions.delete(session.id)
        sessions.stop()


def _turn(orchestrator: ChatOrchestrator, bot: str, message: str, system: str, sse: bool) -> bool:
    """Run one chat turn; returns False if the stream ended with an error."""
    stream = orchestrator.start(bot, message, system_prompt=system)
    ok = True
    try:
        for event in stream:
            if sse:
                typer.echo(event.to_sse(), nl=False)
            elif event.type == "token":
                typer.echo(event.content, nl=False)
            elif event.type == "error":
                typer.echo("")
                console.print(f"[red]Error:[/] {event.error}")
            if event.type == "error":
                ok = False
    except KeyboardInterrupt:
        stream.close()
        typer.echo("")
        return False
    if not sse and ok:
        typer.echo("")
    return ok


def _runtime(db: Path | None, check_models: tuple[str, ...]) -> Runtime:
    try:
        rt = load_runtime(db)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)
    except DimensionMismatchError as exc:
        console.print(err_dimension_mismatch(str(exc)))
        raise typer.Exit(1)

    for section in check_models:
        model = getattr(rt.config, section).model
        try:
            validate_api_key(model)
        except EnvironmentError:
            console.print(err_no_api_key(model.split("/")[0] if "/" in model else "openai"))
            raise typer.Exit(1)
    return rt
