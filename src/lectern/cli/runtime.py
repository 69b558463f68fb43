"""Shared wiring for CLI commands: config, logging, database and services."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from lectern.config import LecternConfig, load_config
from lectern.db.connection import Database
from lectern.db.migrations import initialize
from lectern.db.vectors import ensure_vec_table
from lectern.ingest.chunker import ParagraphChunker
from lectern.ingest.embeddings import EmbeddingGenerator
from lectern.ingest.storage import LocalBlobStore
from lectern.ingest.web import WebAcquirer
from lectern.jobs.queue import JobQueue
from lectern.jobs.registration import SourceRegistrar
from lectern.jobs.worker import IngestWorker
from lectern.log import configure_logging
from lectern.rag.chat import ChatOrchestrator
from lectern.rag.search import SearchService
from lectern.rag.sessions import SessionStore


@dataclass
class Runtime:
    """Everything a command needs, built from the merged configuration."""

    config: LecternConfig
    db: Database
    blobs: LocalBlobStore

    def embedder(self) -> EmbeddingGenerator:
        return EmbeddingGenerator(self.config.embedding)

    def job_queue(self) -> JobQueue:
        return JobQueue(self.config.queue.buffer_size, self.config.queue.workers)

    def worker(self, embed: bool = True) -> IngestWorker:
        return IngestWorker(
            self.db,
            self.blobs,
            web=WebAcquirer(self.config.scraper),
            chunker=ParagraphChunker(self.config.ingest.max_chunk_tokens),
            embedder=self.embedder() if embed else None,
        )

    def registrar(self, jobs: JobQueue | None = None) -> SourceRegistrar:
        return SourceRegistrar(
            self.db,
            self.blobs,
            jobs if jobs is not None else self.job_queue(),
            max_upload_mb=self.config.ingest.max_upload_mb,
            dimensions=self.config.embedding.dimensions,
        )

    def search(self) -> SearchService:
        return SearchService(
            self.db, self.embedder(), over_fetch_factor=self.config.retrieval.over_fetch_factor
        )

    def chat(self) -> ChatOrchestrator:
        return ChatOrchestrator(self.search(), self.config.generation)

    def sessions(self) -> SessionStore:
        return SessionStore(
            ttl=timedelta(hours=self.config.sessions.ttl_hours),
            sweep_interval=self.config.sessions.sweep_interval_seconds,
        )


def load_runtime(db_path: Path | None = None) -> Runtime:
    """Load config, configure logging on stderr, and open (initialising) the DB.

    Raises:
        ConfigError: From load_config().
        DimensionMismatchError: If the vector store was built with other dimensions.
    """
    cfg = load_config()
    if db_path is not None:
        cfg.storage.db_path = str(db_path)
    configure_logging(cfg.logging.level, cfg.logging.json, stream=sys.stderr)

    db = Database(cfg.storage.db_path)
    with db.connection() as conn:
        initialize(conn)
        ensure_vec_table(conn, cfg.embedding.dimensions)
    return Runtime(config=cfg, db=db, blobs=LocalBlobStore(cfg.storage.blob_dir))
