"""Lectern rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from lectern.cli.errors import err_no_api_key
    console.print(err_no_api_key("openai"))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_map = {
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "cohere": "COHERE_API_KEY",
        "gemini": "GEMINI_API_KEY",
        "mistral": "MISTRAL_API_KEY",
        "azure": "AZURE_API_KEY",
    }
    env_var = env_map.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-...\n"
        "  Or skip embeddings for now:  lectern add --no-embed ..."
    )


def err_config(message: str) -> str:
    """lectern.yaml or the global config is invalid."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {message}\n"
        "  Fix lectern.yaml (or ~/.lectern/config.yaml) and retry."
    )


def err_no_db(db_path: str = ".lectern.db") -> str:
    """No database at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  lectern add --bot <bot> --url <url>  to create one."
    )


def err_dimension_mismatch(message: str) -> str:
    """Configured embedding dimensions differ from the stored vectors."""
    return (
        f"[red]Error:[/] Embedding dimension mismatch.\n"
        f"  {message}\n"
        "  Restore embedding.dimensions in lectern.yaml or use a fresh --db."
    )


def err_unsupported_file(message: str) -> str:
    return (
        f"[red]Error:[/] {message}\n"
        "  Supported: .txt .md .pdf .xlsx .csv (up to ingest.max_upload_mb)."
    )


def err_invalid_input(message: str) -> str:
    return f"[red]Error:[/] {message}"


def err_queue_unavailable() -> str:
    """The job could not be queued; the source was marked failed."""
    return (
        "[red]Error:[/] Processing could not be queued; the source was marked failed.\n"
        "  Retry the command, or raise queue.buffer_size in lectern.yaml."
    )


def err_search_failed(message: str) -> str:
    return (
        f"[red]Error:[/] Search failed: {message}\n"
        "  Check your API key and network, then retry."
    )


def err_source_not_found(source_id: str, bot_id: str) -> str:
    """Source not found for this bot."""
    return (
        f"[yellow]Source not found:[/] '{source_id}' is not a source of bot '{bot_id}'.\n"
        f"  Run:  lectern status --bot {bot_id}  to see all sources."
    )
