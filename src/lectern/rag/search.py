"""Tenant-scoped semantic search over the vector store.

The vector index is shared by all bots, so nearest-neighbour retrieval
over-fetches and filters by bot afterwards. A bot whose chunks are crowded
out by other tenants can therefore get fewer than ``limit`` results.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Sequence

from lectern.db.connection import Database
from lectern.db.models import SearchResult, SourceStatus, VectorMatch
from lectern.db.repository import Repository
from lectern.db.vectors import VectorStore
from lectern.errors import EmbeddingError, SearchError, VectorStoreError
from lectern.ingest.embeddings import EmbeddingGenerator
from lectern.log import get_logger

log = get_logger(__name__)


class SearchService:
    """Embed a query and return the closest chunks belonging to a bot.

    Args:
        db: Database holding chunks, sources and vectors.
        embedder: Generator for query embeddings (same model as ingest).
        over_fetch_factor: Candidates requested per result slot.
    """

    def __init__(
        self, db: Database, embedder: EmbeddingGenerator, over_fetch_factor: int = 2
    ) -> None:
        self._db = db
        self._embedder = embedder
        self._over_fetch = max(1, over_fetch_factor)

    def search(self, query: str, bot_id: str, limit: int) -> list[SearchResult]:
        """Return up to *limit* chunks of *bot_id* closest to *query*.

        Raises:
            SearchError: If the query cannot be embedded or the store read fails.
        """
        return self.search_by_embedding(self._embed_query(query), bot_id, limit)

    def search_by_embedding(
        self, embedding: Sequence[float], bot_id: str, limit: int
    ) -> list[SearchResult]:
        """Like :meth:`search`, with a pre-computed query vector."""
        if limit < 1:
            return []
        return self._search(embedding, limit * self._over_fetch, limit, lambda b: b == bot_id)

    def search_many_bots(
        self, query: str, bot_ids: Sequence[str], limit: int
    ) -> list[SearchResult]:
        """Search across several bots at once (admin use)."""
        wanted = set(bot_ids)
        if limit < 1 or not wanted:
            return []
        embedding = self._embed_query(query)
        return self._search(embedding, limit * len(wanted), limit, lambda b: b in wanted)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _embed_query(self, query: str) -> list[float]:
        try:
            return self._embedder.embed_one(query)
        except EmbeddingError as exc:
            raise SearchError(f"failed to generate query embedding: {exc}") from exc

    def _search(
        self,
        embedding: Sequence[float],
        k: int,
        limit: int,
        bot_matches: Callable[[str], bool],
    ) -> list[SearchResult]:
        try:
            with self._db.connection() as conn:
                matches = VectorStore(conn, self._embedder.dimensions).search_nearest(embedding, k)
                if not matches:
                    return []
                rows = Repository(conn).fetch_search_rows([m.chunk_id for m in matches])
        except (VectorStoreError, sqlite3.Error) as exc:
            raise SearchError(f"failed to search vectors: {exc}") from exc

        results: list[SearchResult] = []
        for match in matches:
            row = rows.get(match.chunk_id)
            if row is None or row["deleted_at"] is not None or not bot_matches(row["bot_id"]):
                continue
            results.append(_to_result(match, row))
            if len(results) >= limit:
                break
        log.debug("search returned %d of %d candidates", len(results), len(matches))
        return results


def _to_result(match: VectorMatch, row: sqlite3.Row) -> SearchResult:
    return SearchResult(
        chunk_id=match.chunk_id,
        source_id=row["source_id"],
        content=row["content"],
        distance=match.distance,
        chunk_index=row["chunk_index"],
        source_url=row["url"] or row["original_filename"],
        source_status=SourceStatus(row["status"]),
        bot_id=row["bot_id"],
    )
