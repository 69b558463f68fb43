"""Domain models for the Lectern database layer."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SourceStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SourceStatus.COMPLETED, SourceStatus.FAILED)

    def can_transition_to(self, target: SourceStatus) -> bool:
        """Statuses only move forward; terminal states are final."""
        if self.is_terminal:
            return False
        if self is SourceStatus.PENDING:
            return target is not SourceStatus.PENDING
        return target.is_terminal


class SourceType(str, Enum):
    URL = "url"
    FILE = "file"
    TEXT = "text"


@dataclass
class Source:
    id: str
    bot_id: str
    source_type: SourceType = SourceType.URL
    url: str = ""
    original_filename: str = ""
    content_type: str = ""
    file_path: str = ""
    status: SourceStatus = SourceStatus.PENDING
    progress: int = 0
    error_message: str = ""
    processed_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    deleted_at: str | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def display_name(self) -> str:
        return self.url or self.original_filename or self.id


@dataclass
class DocumentChunk:
    id: str
    source_id: str
    content: str
    chunk_index: int
    embedding: list[float] | None = None  # never loaded from the DB; see VectorStore
    created_at: str | None = None


@dataclass(frozen=True)
class VectorData:
    """A chunk ID paired with the vector to store for it."""

    chunk_id: str
    embedding: list[float]


@dataclass(frozen=True)
class VectorMatch:
    """A nearest-neighbour hit; lower distance = more similar."""

    chunk_id: str
    distance: float


@dataclass
class SearchResult:
    chunk_id: str
    source_id: str
    content: str
    distance: float
    chunk_index: int
    source_url: str
    source_status: SourceStatus
    bot_id: str = ""
