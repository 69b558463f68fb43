"""Source registration: persist a pending Source, store its blob, queue it.

This is the contract the HTTP layer relies on: a registered Source is either
queued for processing or already marked failed, never silently stuck.
"""

from __future__ import annotations

import os
import urllib.parse
import uuid

from lectern.db.connection import Database
from lectern.db.models import Source, SourceStatus, SourceType
from lectern.db.repository import Repository
from lectern.db.vectors import VectorStore
from lectern.errors import EnqueueError, QueueError, SourceNotFound
from lectern.ingest.files import FileKind, object_name, validate_upload
from lectern.ingest.storage import LocalBlobStore
from lectern.jobs.queue import Job, JobQueue
from lectern.log import get_logger

log = get_logger(__name__)

ENQUEUE_FAILED_MESSAGE = "Failed to queue processing job"
TEXT_SOURCE_FILENAME = "text-source.txt"


class SourceRegistrar:
    """Create Sources for a bot and hand them to the job queue.

    Args:
        db: Database holding the sources table.
        blobs: Blob store for uploaded files and pasted text.
        jobs: Queue the ingestion workers consume.
        max_upload_mb: Upload size limit for files.
        dimensions: Embedding dimensions of the vector store.
    """

    def __init__(
        self,
        db: Database,
        blobs: LocalBlobStore,
        jobs: JobQueue,
        max_upload_mb: int = 100,
        dimensions: int = 1536,
    ) -> None:
        self._db = db
        self._blobs = blobs
        self._jobs = jobs
        self._max_upload_mb = max_upload_mb
        self._dimensions = dimensions

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_url(self, bot_id: str, url: str) -> Source:
        """Register a web page for ingestion.

        Raises:
            ValueError: If *url* is not an absolute http(s) URL.
            EnqueueError: If the job could not be queued (Source is failed).
        """
        parsed = urllib.parse.urlparse(url.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Invalid URL '{url}': only absolute http(s) URLs are accepted.")

        source = Source(id=str(uuid.uuid4()), bot_id=bot_id, source_type=SourceType.URL,
                        url=url.strip())
        with self._db.connection() as conn:
            repo = Repository(conn)
            repo.add_source(source)
            return self._enqueue(repo, source)

    def register_file(
        self, bot_id: str, filename: str, data: bytes, content_type: str = ""
    ) -> Source:
        """Register an uploaded file for ingestion.

        Raises:
            UnsupportedFileError: Unsupported extension, empty or oversized file.
            EnqueueError: If the job could not be queued (Source is failed).
        """
        filename = os.path.basename(filename)
        kind = validate_upload(filename, len(data), self._max_upload_mb)
        return self._register_blob(
            bot_id,
            SourceType.FILE,
            filename,
            content_type or kind.content_type,
            data,
        )

    def register_text(self, bot_id: str, text: str) -> Source:
        """Register pasted text; it is stored as ``text-source.txt``.

        Raises:
            ValueError: If *text* is blank.
            EnqueueError: If the job could not be queued (Source is failed).
        """
        if not text.strip():
            raise ValueError("Text source is empty.")
        return self._register_blob(
            bot_id,
            SourceType.TEXT,
            TEXT_SOURCE_FILENAME,
            FileKind.PLAIN_TEXT.content_type,
            text.encode("utf-8"),
        )

    def _register_blob(
        self,
        bot_id: str,
        source_type: SourceType,
        filename: str,
        content_type: str,
        data: bytes,
    ) -> Source:
        source = Source(
            id=str(uuid.uuid4()),
            bot_id=bot_id,
            source_type=source_type,
            original_filename=filename,
            content_type=content_type,
        )
        with self._db.connection() as conn:
            repo = Repository(conn)
            repo.add_source(source)

            name = object_name(source.id, filename)
            try:
                self._blobs.put(name, data)
            except (OSError, ValueError):
                repo.delete_source(source.id)
                raise
            repo.set_file_path(source.id, name)
            source.file_path = name
            return self._enqueue(repo, source)

    def _enqueue(self, repo: Repository, source: Source) -> Source:
        try:
            self._jobs.enqueue(Job(source_id=source.id, bot_id=source.bot_id, url=source.url))
        except QueueError as exc:
            repo.update_status(source.id, SourceStatus.FAILED, ENQUEUE_FAILED_MESSAGE)
            log.error(
                "could not queue source: %s",
                exc,
                extra={"ctx_source_id": source.id, "ctx_bot_id": source.bot_id},
            )
            raise EnqueueError("processing could not be queued") from exc
        log.info(
            "queued %s source",
            source.source_type.value,
            extra={"ctx_source_id": source.id, "ctx_bot_id": source.bot_id},
        )
        return repo.get_source(source.id) or source

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def remove_source(self, bot_id: str, source_id: str) -> None:
        """Soft-delete a bot's source and drop its vectors and blob.

        Raises:
            SourceNotFound: If the source does not exist or belongs to another bot.
        """
        with self._db.connection() as conn:
            repo = Repository(conn)
            source = repo.get_source(source_id)
            if source is None or source.bot_id != bot_id:
                raise SourceNotFound(f"Source '{source_id}' not found.")

            repo.soft_delete_source(source.id)
            removed = VectorStore(conn, self._dimensions).unset(repo.list_chunk_ids(source.id))
            if source.file_path:
                self._blobs.delete(source.file_path)
        log.info(
            "removed source (%d vectors cleared)",
            removed,
            extra={"ctx_source_id": source_id, "ctx_bot_id": bot_id},
        )
