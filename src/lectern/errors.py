"""Exception taxonomy shared by the ingestion and query pipelines.

Acquisition errors end up verbatim in ``sources.error_message``, so their
messages are written for the person who registered the source.
"""

from __future__ import annotations


class LecternError(Exception):
    """Base class for all Lectern errors."""


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


class AcquisitionError(LecternError):
    """Raised when a URL or file cannot be turned into text."""


class SsrfError(AcquisitionError):
    """Raised when a URL resolves to a private or reserved address."""


class UnsupportedFileError(AcquisitionError):
    """Raised for uploads outside the extension allow-list or size limits."""


class EmbeddingError(LecternError):
    """Raised when the embedding provider fails or returns a malformed batch."""


class VectorStoreError(LecternError):
    """Raised when a vector write or read fails in the sqlite-vec store."""


class DimensionMismatchError(VectorStoreError):
    """Raised when a vector does not have the store's configured dimension."""


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


class QueueError(LecternError):
    """Base class for job queue failures."""


class QueueFullError(QueueError):
    """Raised by enqueue() when the buffer is at capacity."""


class QueueStoppedError(QueueError):
    """Raised by enqueue() after the queue has been stopped."""


class EnqueueError(LecternError):
    """Raised to the registering caller when processing could not be queued."""


class JobCancelled(LecternError):
    """Raised inside a worker when the cancellation signal fires mid-job."""


class SourceNotFound(LecternError, LookupError):
    """Raised when a source does not exist or belongs to another bot."""


# ---------------------------------------------------------------------------
# Query time
# ---------------------------------------------------------------------------


class SearchError(LecternError):
    """Raised when a search cannot embed the query or read the store."""


class SessionError(LecternError):
    """Base class for anonymous chat session lookups."""


class SessionNotFound(SessionError):
    """Raised when a session ID is unknown."""


class SessionExpired(SessionError):
    """Raised when a session exists but is past its expiry time."""
