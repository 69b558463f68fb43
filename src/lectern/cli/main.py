"""Lectern CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from lectern.cli.add import add_cmd
from lectern.cli.query import chat_cmd, search_cmd
from lectern.cli.remove import remove_cmd
from lectern.cli.status import status_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("lectern")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"lectern {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="lectern",
    help=(
        "Lectern — retrieval-augmented knowledge bases for chat bots.\n\n"
        "  lectern add     Ingest a URL, file or text for a bot.\n"
        "  lectern chat    Ask a bot a question, streaming the answer."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """Lectern — retrieval-augmented knowledge bases for chat bots."""


app.command("add")(add_cmd)
app.command("status")(status_cmd)
app.command("search")(search_cmd)
app.command("chat")(chat_cmd)
app.command("remove")(remove_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed Lectern version."""
    typer.echo(f"lectern {_installed_version()}")


if __name__ == "__main__":
    app()
