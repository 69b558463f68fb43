"""Lectern ingest pipeline: acquisition, chunking, embedding, blob storage."""

from lectern.ingest.chunker import ParagraphChunker, chunk_text
from lectern.ingest.embeddings import EmbeddingGenerator
from lectern.ingest.files import FileKind, extract_text, validate_upload
from lectern.ingest.storage import LocalBlobStore
from lectern.ingest.web import WebAcquirer

__all__ = [
    "EmbeddingGenerator",
    "FileKind",
    "LocalBlobStore",
    "ParagraphChunker",
    "WebAcquirer",
    "chunk_text",
    "extract_text",
    "validate_upload",
]
