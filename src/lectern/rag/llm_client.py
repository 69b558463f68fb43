"""LiteLLM client wrapper with retry, backoff, and API key validation.

All embedding and chat calls in the ingestion and query pipelines route
through this module. LiteLLM's built-in retry is used (num_retries=3,
exponential backoff). Provider failures are normalised to
:class:`ProviderError` so callers can report a status code and a message.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Iterator
from typing import Any

import litellm

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "google": "GOOGLE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


class ProviderError(Exception):
    """A provider call failed after retries.

    Attributes:
        status: HTTP status reported by the provider, or None if unknown.
        message: The provider's structured error message when it sent one,
            otherwise the raw error text.
    """

    def __init__(self, status: int | None, message: str) -> None:
        super().__init__(f"({status if status is not None else 'unknown'}): {message}")
        self.status = status
        self.message = message


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider, "OPENAI_API_KEY")

    if env_var is None:
        return  # No key required (e.g. ollama)

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def _to_provider_error(exc: Exception) -> ProviderError:
    status = getattr(exc, "status_code", None)
    message = getattr(exc, "message", None) or str(exc)
    return ProviderError(status if isinstance(status, int) else None, message)


def embed_batch(
    model: str,
    texts: list[str],
    num_retries: int = 3,
    timeout: float | None = None,
) -> list[Any]:
    """Call litellm.embedding() once for *texts*. Returns the response items.

    Each item carries ``index`` and ``embedding``; ordering is not assumed.

    Raises:
        ProviderError: On persistent API failure after retries.
    """
    try:
        response = litellm.embedding(
            model=model,
            input=texts,
            num_retries=num_retries,
            timeout=timeout,
        )
    except Exception as exc:  # litellm maps every provider failure to its own hierarchy
        raise _to_provider_error(exc) from exc
    return list(response.data or [])


def stream_completion(
    model: str,
    messages: list[dict],
    temperature: float = 0.7,
    max_tokens: int | None = None,
    timeout: float | None = None,
    num_retries: int = 3,
) -> Any:
    """Open a streaming litellm.completion(). Returns the provider stream.

    Iterate it with :func:`iter_deltas` and release it with :func:`close_stream`.

    Raises:
        ProviderError: If the request cannot be started.
    """
    kwargs: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "stream": True,
        "num_retries": num_retries,
    }
    if max_tokens is not None:
        kwargs["max_tokens"] = max_tokens
    if timeout is not None:
        kwargs["timeout"] = timeout
    try:
        return litellm.completion(**kwargs)
    except Exception as exc:
        raise _to_provider_error(exc) from exc


def iter_deltas(stream: Iterable[Any]) -> Iterator[str]:
    """Yield the text content of each streamed chunk (possibly empty).

    Raises:
        ProviderError: If the stream fails part-way.
    """
    iterator = iter(stream)
    while True:
        try:
            chunk = next(iterator)
        except StopIteration:
            return
        except ProviderError:
            raise
        except Exception as exc:
            raise _to_provider_error(exc) from exc
        choices = getattr(chunk, "choices", None) or []
        if not choices:
            continue
        delta = getattr(choices[0], "delta", None)
        yield (getattr(delta, "content", None) or "") if delta is not None else ""


def close_stream(stream: Any) -> None:
    """Release a provider stream if it exposes a close hook."""
    close = getattr(stream, "close", None)
    if callable(close):
        close()
