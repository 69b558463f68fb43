"""Repository pattern for source and chunk persistence.

Single interface for: sources (status/progress lifecycle, soft delete),
document chunks, and the chunk+source join used at search time. Vector
rows are owned by VectorStore.
"""

from __future__ import annotations

import sqlite3
import uuid
from collections.abc import Sequence

from lectern.db.models import DocumentChunk, Source, SourceStatus, SourceType
from lectern.errors import SourceNotFound

_SOURCE_COLUMNS = (
    "id, bot_id, source_type, url, original_filename, content_type, file_path, "
    "status, progress, error_message, processed_at, created_at, updated_at, deleted_at"
)


class Repository:
    """Data access layer for sources and document chunks.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see lectern.db.migrations.initialize).
        """
        self._conn = conn

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def add_source(self, source: Source) -> None:
        """Insert a new source record."""
        self._conn.execute(
            """
            INSERT INTO sources (
                id, bot_id, source_type, url, original_filename, content_type,
                file_path, status, progress, error_message
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                source.id,
                source.bot_id,
                SourceType(source.source_type).value,
                source.url,
                source.original_filename,
                source.content_type,
                source.file_path,
                SourceStatus(source.status).value,
                source.progress,
                source.error_message,
            ),
        )
        self._conn.commit()

    def get_source(self, source_id: str, include_deleted: bool = False) -> Source | None:
        """Return a source by ID, or None if not found (or soft-deleted)."""
        sql = f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE id = ?"
        if not include_deleted:
            sql += " AND deleted_at IS NULL"
        row = self._conn.execute(sql, (source_id,)).fetchone()
        return _row_to_source(row) if row else None

    def list_sources(self, bot_id: str) -> list[Source]:
        """Return the live sources of *bot_id*, oldest first."""
        rows = self._conn.execute(
            f"""
            SELECT {_SOURCE_COLUMNS} FROM sources
            WHERE bot_id = ? AND deleted_at IS NULL
            ORDER BY created_at, rowid
            """,
            (bot_id,),
        ).fetchall()
        return [_row_to_source(r) for r in rows]

    def set_file_path(self, source_id: str, file_path: str) -> None:
        self._conn.execute(
            "UPDATE sources SET file_path = ?, updated_at = datetime('now') WHERE id = ?",
            (file_path, source_id),
        )
        self._conn.commit()

    def update_status(
        self, source_id: str, status: SourceStatus, error_message: str = ""
    ) -> None:
        """Move a source forward to *status*.

        Terminal statuses stamp ``processed_at``.

        Raises:
            SourceNotFound: If the source does not exist.
            ValueError: If the transition would move the status backwards.
        """
        status = SourceStatus(status)
        current = self.get_source(source_id, include_deleted=True)
        if current is None:
            raise SourceNotFound(f"Source '{source_id}' not found.")
        if current.status is not status and not current.status.can_transition_to(status):
            raise ValueError(
                f"Source '{source_id}' cannot move from {current.status.value} to {status.value}."
            )
        processed = "datetime('now')" if status.is_terminal else "processed_at"
        self._conn.execute(
            f"""
            UPDATE sources
            SET status = ?, error_message = ?, processed_at = {processed},
                updated_at = datetime('now')
            WHERE id = ?
            """,
            (status.value, error_message, source_id),
        )
        self._conn.commit()

    def update_progress(self, source_id: str, progress: int) -> None:
        """Record processing progress, clamped to 0–100."""
        progress = max(0, min(100, int(progress)))
        self._conn.execute(
            "UPDATE sources SET progress = ?, updated_at = datetime('now') WHERE id = ?",
            (progress, source_id),
        )
        self._conn.commit()

    def soft_delete_source(self, source_id: str) -> None:
        """Mark a source deleted; its chunks stay but are excluded from search."""
        self._conn.execute(
            """
            UPDATE sources SET deleted_at = datetime('now'), updated_at = datetime('now')
            WHERE id = ? AND deleted_at IS NULL
            """,
            (source_id,),
        )
        self._conn.commit()

    def delete_source(self, source_id: str) -> None:
        """Hard-delete a source row; chunks cascade via the foreign key."""
        self._conn.execute("DELETE FROM sources WHERE id = ?", (source_id,))
        self._conn.commit()

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def add_chunks(self, source_id: str, contents: Sequence[str]) -> list[DocumentChunk]:
        """Insert *contents* as chunks 0..n-1 of *source_id* in one transaction.

        Returns:
            The stored chunks, in chunk_index order.
        """
        chunks = [
            DocumentChunk(id=str(uuid.uuid4()), source_id=source_id, content=text, chunk_index=i)
            for i, text in enumerate(contents)
        ]
        with self._conn:
            self._conn.executemany(
                """
                INSERT INTO document_chunks (id, source_id, content, chunk_index)
                VALUES (?, ?, ?, ?)
                """,
                [(c.id, c.source_id, c.content, c.chunk_index) for c in chunks],
            )
        return chunks

    def list_chunks(self, source_id: str) -> list[DocumentChunk]:
        rows = self._conn.execute(
            """
            SELECT id, source_id, content, chunk_index, created_at
            FROM document_chunks WHERE source_id = ? ORDER BY chunk_index
            """,
            (source_id,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def list_chunk_ids(self, source_id: str) -> list[str]:
        rows = self._conn.execute(
            "SELECT id FROM document_chunks WHERE source_id = ? ORDER BY chunk_index",
            (source_id,),
        ).fetchall()
        return [r[0] for r in rows]

    def count_chunks_by_source(self, source_id: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM document_chunks WHERE source_id = ?", (source_id,)
        ).fetchone()[0]

    def count_embedded_chunks_by_source(self, source_id: str) -> int:
        """Chunks of *source_id* that have a vector and are therefore searchable."""
        return self._conn.execute(
            """
            SELECT COUNT(*) FROM document_chunks c
            JOIN vec_chunk_map m ON m.chunk_id = c.id
            WHERE c.source_id = ?
            """,
            (source_id,),
        ).fetchone()[0]

    def fetch_search_rows(self, chunk_ids: Sequence[str]) -> dict[str, sqlite3.Row]:
        """Return chunk + source metadata for *chunk_ids*, keyed by chunk ID.

        Rows carry: chunk_id, source_id, content, chunk_index, bot_id, url,
        original_filename, status, deleted_at. Unknown IDs are absent.
        """
        if not chunk_ids:
            return {}
        placeholders = ",".join("?" * len(chunk_ids))
        rows = self._conn.execute(
            f"""
            SELECT c.id AS chunk_id, c.source_id, c.content, c.chunk_index,
                   s.bot_id, s.url, s.original_filename, s.status, s.deleted_at
            FROM document_chunks c
            JOIN sources s ON s.id = c.source_id
            WHERE c.id IN ({placeholders})
            """,
            list(chunk_ids),
        ).fetchall()
        return {r["chunk_id"]: r for r in rows}


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        bot_id=row["bot_id"],
        source_type=SourceType(row["source_type"]),
        url=row["url"],
        original_filename=row["original_filename"],
        content_type=row["content_type"],
        file_path=row["file_path"],
        status=SourceStatus(row["status"]),
        progress=row["progress"],
        error_message=row["error_message"],
        processed_at=row["processed_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        deleted_at=row["deleted_at"],
    )


def _row_to_chunk(row: sqlite3.Row) -> DocumentChunk:
    return DocumentChunk(
        id=row["id"],
        source_id=row["source_id"],
        content=row["content"],
        chunk_index=row["chunk_index"],
        created_at=row["created_at"],
    )
