"""Ingestion worker: acquire → chunk → persist → embed one Source.

Progress milestones written to ``sources.progress``:
  10 processing started, 30 content acquired, 50 chunked,
  70 chunks stored, 90 embeddings done, 100 completed.

Embedding failures do not fail the Source: its chunks are stored without
vectors and are simply invisible to search (degraded mode).
"""

from __future__ import annotations

import threading

from lectern.db.connection import Database
from lectern.db.models import Source, SourceStatus, SourceType, VectorData
from lectern.db.repository import Repository
from lectern.db.vectors import VectorStore
from lectern.errors import (
    AcquisitionError,
    EmbeddingError,
    JobCancelled,
    SourceNotFound,
    VectorStoreError,
)
from lectern.ingest import files
from lectern.ingest.chunker import ParagraphChunker
from lectern.ingest.embeddings import EmbeddingGenerator
from lectern.ingest.storage import LocalBlobStore
from lectern.ingest.web import WebAcquirer
from lectern.jobs.queue import Job
from lectern.log import get_logger

log = get_logger(__name__)


class IngestWorker:
    """Process ingestion jobs; an instance is shared by all worker threads.

    Every job opens its own database connection.

    Args:
        db: Database holding sources, chunks and vectors.
        blobs: Blob store holding uploaded files and text sources.
        web: Acquirer for URL sources.
        chunker: Chunker used for every source.
        embedder: Embedding generator, or None to store chunks without vectors.
    """

    def __init__(
        self,
        db: Database,
        blobs: LocalBlobStore,
        web: WebAcquirer | None = None,
        chunker: ParagraphChunker | None = None,
        embedder: EmbeddingGenerator | None = None,
    ) -> None:
        self._db = db
        self._blobs = blobs
        self._web = web or WebAcquirer()
        self._chunker = chunker or ParagraphChunker()
        self._embedder = embedder

    def __call__(self, job: Job, cancel: threading.Event) -> None:
        self.process_job(job, cancel)

    def process_job(self, job: Job, cancel: threading.Event | None = None) -> None:
        """Run the full pipeline for *job*.

        Raises:
            SourceNotFound: If the Source no longer exists.
            AcquisitionError: If no text could be extracted (Source failed).
            JobCancelled: If *cancel* fired between stages (status left as is).
        """
        cancel = cancel or threading.Event()
        ctx = {"ctx_source_id": job.source_id, "ctx_bot_id": job.bot_id}

        with self._db.connection() as conn:
            repo = Repository(conn)
            source = repo.get_source(job.source_id)
            if source is None:
                raise SourceNotFound(f"Source '{job.source_id}' not found.")

            _check_cancel(cancel)
            repo.update_status(source.id, SourceStatus.PROCESSING)
            repo.update_progress(source.id, 10)
            log.info("processing %s source", source.source_type.value, extra=ctx)

            try:
                self._run(repo, conn, source, cancel, ctx)
            except (JobCancelled, AcquisitionError):
                raise
            except Exception as exc:
                repo.update_status(source.id, SourceStatus.FAILED, str(exc))
                raise

    def _run(self, repo: Repository, conn, source: Source, cancel, ctx: dict) -> None:
        try:
            text = self._acquire(source)
        except AcquisitionError as exc:
            repo.update_status(source.id, SourceStatus.FAILED, f"Failed to extract content: {exc}")
            log.warning("acquisition failed: %s", exc, extra=ctx)
            raise

        _check_cancel(cancel)
        repo.update_progress(source.id, 30)
        contents = self._chunker.split(text)
        if not contents:
            repo.update_status(source.id, SourceStatus.FAILED, "no content to index")
            raise AcquisitionError("no content to index")

        _check_cancel(cancel)
        repo.update_progress(source.id, 50)
        chunks = repo.add_chunks(source.id, contents)
        repo.update_progress(source.id, 70)
        log.info("stored %d chunks", len(chunks), extra=ctx)

        _check_cancel(cancel)
        if self._embedder is not None:
            try:
                vectors = self._embedder.embed_all(contents)
                store = VectorStore(conn, self._embedder.dimensions)
                store.bulk_upsert(
                    VectorData(chunk_id=c.id, embedding=v) for c, v in zip(chunks, vectors)
                )
            except (EmbeddingError, VectorStoreError) as exc:
                log.warning("embedding skipped, chunks stored without vectors: %s", exc, extra=ctx)
        repo.update_progress(source.id, 90)

        repo.update_status(source.id, SourceStatus.COMPLETED)
        repo.update_progress(source.id, 100)
        log.info("source completed", extra=ctx)

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    def _acquire(self, source: Source) -> str:
        if source.source_type is SourceType.URL:
            return self._web.fetch_and_clean(source.url)

        try:
            data = self._blobs.get(source.file_path)
        except (OSError, ValueError) as exc:
            raise AcquisitionError(f"stored file unavailable: {exc}") from exc

        if source.source_type is SourceType.TEXT:
            return files.read_text(data)
        kind = files.resolve_kind(source.original_filename, source.content_type)
        return files.extract_text(data, kind)


def _check_cancel(cancel: threading.Event) -> None:
    if cancel.is_set():
        raise JobCancelled("job cancelled")
