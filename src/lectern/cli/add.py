"""lectern add — register a source and ingest it with the worker pool.

Exactly one of --url, --file or --text is required. The command starts the
workers, registers the source, waits until the queue is idle, then prints the
source's final status.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from lectern.cli.errors import (
    err_config,
    err_dimension_mismatch,
    err_invalid_input,
    err_no_api_key,
    err_queue_unavailable,
    err_unsupported_file,
)
from lectern.cli.runtime import load_runtime
from lectern.config import ConfigError
from lectern.db.models import Source, SourceStatus
from lectern.db.repository import Repository
from lectern.errors import DimensionMismatchError, EnqueueError, UnsupportedFileError
from lectern.rag.llm_client import validate_api_key

console = Console()


def add_cmd(
    bot: Annotated[str, typer.Option("--bot", "-b", help="Bot (tenant) the source belongs to.")],
    url: Annotated[str | None, typer.Option("--url", help="Web page to ingest.")] = None,
    file: Annotated[
        Path | None,
        typer.Option("--file", exists=True, dir_okay=False, help="File to upload and ingest."),
    ] = None,
    text: Annotated[str | None, typer.Option("--text", help="Raw text to ingest.")] = None,
    db: Annotated[
        Path | None, typer.Option("--db", help="Path to the database (default from config).")
    ] = None,
    no_embed: Annotated[
        bool,
        typer.Option("--no-embed", help="Store chunks without embeddings (not searchable)."),
    ] = False,
) -> None:
    """Add a URL, file or text source to a bot's knowledge base."""
    given = [v for v in (url, file, text) if v is not None]
    if len(given) != 1:
        console.print(err_invalid_input("Give exactly one of --url, --file or --text."))
        raise typer.Exit(1)

    try:
        rt = load_runtime(db)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)
    except DimensionMismatchError as exc:
        console.print(err_dimension_mismatch(str(exc)))
        raise typer.Exit(1)

    if not no_embed:
        try:
            validate_api_key(rt.config.embedding.model)
        except EnvironmentError:
            console.print(err_no_api_key(_provider(rt.config.embedding.model)))
            raise typer.Exit(1)

    jobs = rt.job_queue()
    registrar = rt.registrar(jobs)
    jobs.start(rt.worker(embed=not no_embed))
    try:
        if url is not None:
            source = registrar.register_url(bot, url)
        elif file is not None:
            source = registrar.register_file(bot, file.name, file.read_bytes())
        else:
            source = registrar.register_text(bot, text or "")
        console.print(f"[dim]Queued source {source.id}[/]")
        jobs.wait_idle()
    except UnsupportedFileError as exc:
        console.print(err_unsupported_file(str(exc)))
        raise typer.Exit(1)
    except ValueError as exc:
        console.print(err_invalid_input(str(exc)))
        raise typer.Exit(1)
    except EnqueueError:
        console.print(err_queue_unavailable())
        raise typer.Exit(1)
    finally:
        jobs.stop()

    with rt.db.connection() as conn:
        repo = Repository(conn)
        final = repo.get_source(source.id) or source
        chunks = repo.count_chunks_by_source(final.id)
        embedded = repo.count_embedded_chunks_by_source(final.id)
    _print_result(final, chunks, embedded)
    if final.status is not SourceStatus.COMPLETED:
        raise typer.Exit(1)


def _print_result(source: Source, chunks: int, embedded: int) -> None:
    name = source.display_name
    if source.status is SourceStatus.COMPLETED and embedded < chunks:
        console.print(
            f"[yellow]![/] {name}: {chunks} chunks stored, only {embedded} embedded  "
            f"[dim]({source.id})[/]\n"
            "  Chunks without embeddings are not searchable until the source is re-added with embeddings."
        )
    elif source.status is SourceStatus.COMPLETED:
        console.print(f"[green]✓[/] {name}: {chunks} chunks indexed  [dim]({source.id})[/]")
    elif source.status is SourceStatus.FAILED:
        console.print(f"[red]✗[/] {name}: {source.error_message}  [dim]({source.id})[/]")
    else:
        console.print(
            f"[yellow]…[/] {name}: {source.status.value} ({source.progress}%)  [dim]({source.id})[/]"
        )


def _provider(model: str) -> str:
    return model.split("/")[0] if "/" in model else "openai"
