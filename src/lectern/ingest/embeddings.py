"""Embedding generation through LiteLLM.

One provider call per batch of at most 2048 texts. Response items are placed
by their declared index, so the output order always matches the input order.
"""

from __future__ import annotations

from collections.abc import Sequence

from lectern.config import MAX_EMBEDDING_BATCH, EmbeddingCfg
from lectern.errors import EmbeddingError
from lectern.log import get_logger
from lectern.rag import llm_client

log = get_logger(__name__)


class EmbeddingGenerator:
    """Turn texts into fixed-length vectors with the configured model.

    Args:
        config: Embedding model, expected dimensions, batch size and retries.
    """

    def __init__(self, config: EmbeddingCfg | None = None) -> None:
        self._config = config or EmbeddingCfg()

    @property
    def dimensions(self) -> int:
        return self._config.dimensions

    @property
    def model(self) -> str:
        return self._config.model

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed up to 2048 *texts* in a single provider call.

        Returns:
            One vector per input text, in input order. Empty input gives [].

        Raises:
            EmbeddingError: Too many texts, a provider failure, or a response
                with a bad index, a missing vector or a wrong dimension.
        """
        texts = list(texts)
        if not texts:
            return []
        if len(texts) > MAX_EMBEDDING_BATCH:
            raise EmbeddingError(
                f"too many texts: {len(texts)} (max {MAX_EMBEDDING_BATCH})"
            )

        try:
            items = llm_client.embed_batch(
                self._config.model,
                texts,
                num_retries=self._config.num_retries,
                timeout=self._config.timeout,
            )
        except llm_client.ProviderError as exc:
            status = exc.status if exc.status is not None else "unknown"
            raise EmbeddingError(f"embedding API error ({status}): {exc.message}") from exc

        vectors: list[list[float] | None] = [None] * len(texts)
        for item in items:
            index = _field(item, "index")
            if not isinstance(index, int) or not 0 <= index < len(texts):
                raise EmbeddingError(f"invalid embedding index: {index}")
            embedding = _field(item, "embedding")
            if embedding is None:
                raise EmbeddingError(f"no embedding returned for input {index}")
            vectors[index] = list(embedding)

        for i, vector in enumerate(vectors):
            if vector is None:
                raise EmbeddingError(f"no embedding returned for input {i}")
            if len(vector) != self._config.dimensions:
                raise EmbeddingError(
                    f"embedding for input {i} has {len(vector)} dimensions, "
                    f"expected {self._config.dimensions}"
                )
        return vectors  # type: ignore[return-value]

    def embed_one(self, text: str) -> list[float]:
        """Embed a single text."""
        return self.embed([text])[0]

    def embed_all(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed any number of texts in batches of ``config.batch_size``."""
        texts = list(texts)
        size = min(self._config.batch_size, MAX_EMBEDDING_BATCH)
        vectors: list[list[float]] = []
        for start in range(0, len(texts), size):
            vectors.extend(self.embed(texts[start : start + size]))
        log.debug("embedded %d texts with %s", len(texts), self._config.model)
        return vectors


def _field(item, name: str):
    """Read *name* from a response item, whether a plain dict or a LiteLLM object."""
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)
