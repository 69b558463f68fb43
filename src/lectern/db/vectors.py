"""sqlite-vec vector store: chunk ↔ embedding associations and cosine search.

Layout:
  vec_items      vec0 virtual table, one row per embedded chunk
  vec_chunk_map  rowid ↔ chunk_id (vec0 rows are keyed by integer rowid)

A chunk without a map row simply has no embedding (degraded mode).
"""

from __future__ import annotations

import json
import re
import sqlite3
from collections.abc import Iterable, Sequence

from lectern.db.models import VectorData, VectorMatch
from lectern.errors import DimensionMismatchError, VectorStoreError

VEC_TABLE = "vec_items"

# sqlite-vec rejects KNN queries with k above this.
MAX_KNN_K = 4096

_DIMENSION_RE = re.compile(r"float\[(\d+)\]")


def existing_dimensions(conn: sqlite3.Connection) -> int | None:
    """Return the dimension vec_items was created with, or None if absent."""
    row = conn.execute(
        "SELECT sql FROM sqlite_master WHERE type='table' AND name=?", (VEC_TABLE,)
    ).fetchone()
    if row is None:
        return None
    match = _DIMENSION_RE.search(row[0] or "")
    return int(match.group(1)) if match else None


def ensure_vec_table(conn: sqlite3.Connection, dimensions: int) -> str:
    """Create the vec_items virtual table if it doesn't already exist.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        dimensions: Embedding vector dimensions (e.g. 1536 for text-embedding-3-small).

    Returns:
        The table name.

    Raises:
        ValueError: If *dimensions* is not positive.
        DimensionMismatchError: If the table exists with another dimension.
    """
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    current = existing_dimensions(conn)
    if current is None:
        conn.execute(
            f"CREATE VIRTUAL TABLE {VEC_TABLE} USING "
            f"vec0(embedding float[{dimensions}] distance_metric=cosine)"
        )
        conn.commit()
    elif current != dimensions:
        raise DimensionMismatchError(
            f"Vector store was created with {current} dimensions, "
            f"but {dimensions} are configured."
        )
    return VEC_TABLE


class VectorStore:
    """Upsert, search and clear chunk embeddings.

    Args:
        conn: Open connection with sqlite-vec loaded and migrations applied.
        dimensions: Fixed vector length; every write is checked against it.
    """

    def __init__(self, conn: sqlite3.Connection, dimensions: int) -> None:
        self._conn = conn
        self.dimensions = dimensions
        ensure_vec_table(conn, dimensions)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, chunk_id: str, embedding: Sequence[float]) -> None:
        """Store *embedding* for *chunk_id*, replacing any previous vector."""
        self.bulk_upsert([VectorData(chunk_id=chunk_id, embedding=list(embedding))])

    def bulk_upsert(self, items: Iterable[VectorData]) -> None:
        """Store many vectors in one transaction; nothing commits if any fails."""
        items = list(items)
        if not items:
            return
        for item in items:
            self._check_dimensions(item.embedding, item.chunk_id)

        try:
            with self._conn:
                for item in items:
                    rowid = self._map_rowid(item.chunk_id)
                    self._conn.execute(f"DELETE FROM {VEC_TABLE} WHERE rowid = ?", (rowid,))
                    self._conn.execute(
                        f"INSERT INTO {VEC_TABLE}(rowid, embedding) VALUES (?, ?)",
                        (rowid, json.dumps(list(item.embedding))),
                    )
        except sqlite3.Error as exc:
            raise VectorStoreError(f"Failed to store embeddings: {exc}") from exc

    def unset(self, chunk_ids: Iterable[str]) -> int:
        """Remove the vectors of *chunk_ids*; chunk rows are left untouched.

        Returns:
            Number of vectors removed.
        """
        chunk_ids = list(chunk_ids)
        if not chunk_ids:
            return 0
        placeholders = ",".join("?" * len(chunk_ids))
        try:
            with self._conn:
                rowids = [
                    r[0]
                    for r in self._conn.execute(
                        f"SELECT rowid FROM vec_chunk_map WHERE chunk_id IN ({placeholders})",
                        chunk_ids,
                    ).fetchall()
                ]
                if not rowids:
                    return 0
                rowid_marks = ",".join("?" * len(rowids))
                self._conn.execute(
                    f"DELETE FROM {VEC_TABLE} WHERE rowid IN ({rowid_marks})", rowids
                )
                self._conn.execute(
                    f"DELETE FROM vec_chunk_map WHERE rowid IN ({rowid_marks})", rowids
                )
        except sqlite3.Error as exc:
            raise VectorStoreError(f"Failed to remove embeddings: {exc}") from exc
        return len(rowids)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def search_nearest(self, embedding: Sequence[float], k: int) -> list[VectorMatch]:
        """Return up to *k* chunks ordered by ascending cosine distance.

        *k* is clamped to :data:`MAX_KNN_K`.
        """
        if k < 1:
            return []
        k = min(k, MAX_KNN_K)
        self._check_dimensions(embedding, "query")
        try:
            rows = self._conn.execute(
                f"""
                WITH knn AS (
                    SELECT rowid, distance FROM {VEC_TABLE}
                    WHERE embedding MATCH ? AND k = ?
                )
                SELECT m.chunk_id AS chunk_id, knn.distance AS distance
                FROM knn
                JOIN vec_chunk_map m ON m.rowid = knn.rowid
                ORDER BY knn.distance
                """,
                (json.dumps(list(embedding)), k),
            ).fetchall()
        except sqlite3.Error as exc:
            raise VectorStoreError(f"Vector search failed: {exc}") from exc
        return [VectorMatch(chunk_id=r["chunk_id"], distance=float(r["distance"])) for r in rows]

    def has_embedding(self, chunk_id: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM vec_chunk_map WHERE chunk_id = ?", (chunk_id,)
        ).fetchone()
        return row is not None

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM vec_chunk_map").fetchone()[0]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _map_rowid(self, chunk_id: str) -> int:
        row = self._conn.execute(
            "SELECT rowid FROM vec_chunk_map WHERE chunk_id = ?", (chunk_id,)
        ).fetchone()
        if row is not None:
            return row[0]
        cur = self._conn.execute("INSERT INTO vec_chunk_map (chunk_id) VALUES (?)", (chunk_id,))
        return cur.lastrowid

    def _check_dimensions(self, embedding: Sequence[float], label: str) -> None:
        if len(embedding) != self.dimensions:
            raise DimensionMismatchError(
                f"Vector for {label} has {len(embedding)} dimensions, expected {self.dimensions}."
            )
