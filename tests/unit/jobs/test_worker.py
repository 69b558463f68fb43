"""Tests for IngestWorker: acquire → chunk → persist → embed."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock, patch

import pytest

from lectern.config import EmbeddingCfg
from lectern.db.models import SourceStatus, SourceType
from lectern.db.vectors import VectorStore
from lectern.errors import AcquisitionError, JobCancelled, SourceNotFound
from lectern.ingest.chunker import ParagraphChunker
from lectern.ingest.embeddings import EmbeddingGenerator
from lectern.ingest.storage import LocalBlobStore
from lectern.jobs.queue import Job
from lectern.jobs.worker import IngestWorker
from lectern.rag.llm_client import ProviderError

DIMS = 4
_EMBED = "lectern.rag.llm_client.embed_batch"


def _fake_embed(model, texts, **kwargs):
    return [{"index": i, "embedding": [1.0, float(i), 0.0, 0.5]} for i in range(len(texts))]


@pytest.fixture
def blobs(tmp_path):
    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture
def web():
    acquirer = MagicMock()
    acquirer.fetch_and_clean.return_value = "First paragraph.\n\nSecond paragraph."
    return acquirer


@pytest.fixture
def embedder():
    return EmbeddingGenerator(EmbeddingCfg(dimensions=DIMS))


@pytest.fixture
def worker(db, blobs, web, embedder):
    return IngestWorker(db, blobs, web=web, chunker=ParagraphChunker(8), embedder=embedder)


def _blob_source(make_source, repo, blobs, source_type, filename, data, content_type=""):
    source = make_source(
        source_type=source_type, url="", original_filename=filename, content_type=content_type
    )
    name = f"sources/{source.id}/{filename}"
    blobs.put(name, data)
    repo.set_file_path(source.id, name)
    return source


# ------------------------------------------------------------------
# Happy paths
# ------------------------------------------------------------------


def test_url_source_completed_with_vectors(worker, web, make_source, repo, tmp_db):
    source = make_source(url="https://example.com/guide")

    with patch(_EMBED, side_effect=_fake_embed):
        worker.process_job(Job(source.id, source.bot_id, source.url))

    web.fetch_and_clean.assert_called_once_with("https://example.com/guide")
    done = repo.get_source(source.id)
    assert done.status is SourceStatus.COMPLETED
    assert done.progress == 100
    assert done.processed_at is not None
    chunks = repo.list_chunks(source.id)
    assert [c.content for c in chunks] == ["First paragraph.\n\nSecond paragraph."]
    store = VectorStore(tmp_db, DIMS)
    assert all(store.has_embedding(c.id) for c in chunks)


def test_text_source_read_from_blob(worker, make_source, repo, blobs):
    source = _blob_source(
        make_source, repo, blobs, SourceType.TEXT, "text-source.txt",
        b"one two three four five\n\nsix seven eight",
    )
    with patch(_EMBED, side_effect=_fake_embed):
        worker.process_job(Job(source.id, source.bot_id))

    assert repo.get_source(source.id).status is SourceStatus.COMPLETED
    assert [c.content for c in repo.list_chunks(source.id)] == [
        "one two three four five",
        "six seven eight",
    ]


def test_csv_file_source_uses_extractor(worker, make_source, repo, blobs):
    source = _blob_source(
        make_source, repo, blobs, SourceType.FILE, "parts.csv", b"name,qty\nbolt,10\n", "text/csv"
    )
    with patch(_EMBED, side_effect=_fake_embed):
        worker(Job(source.id, source.bot_id), threading.Event())

    assert [c.content for c in repo.list_chunks(source.id)] == ["name\tqty\n\nbolt\t10"]


def test_without_embedder_chunks_stored_without_vectors(db, blobs, web, make_source, repo, tmp_db):
    worker = IngestWorker(db, blobs, web=web)
    source = make_source()
    with patch(_EMBED) as mock_embed:
        worker.process_job(Job(source.id, source.bot_id, source.url))

    mock_embed.assert_not_called()
    assert repo.get_source(source.id).status is SourceStatus.COMPLETED
    assert repo.count_chunks_by_source(source.id) == 1
    assert VectorStore(tmp_db, DIMS).count() == 0


def test_embedding_failure_degrades_but_completes(worker, make_source, repo, tmp_db):
    source = make_source()
    with patch(_EMBED, side_effect=ProviderError(503, "overloaded")):
        worker.process_job(Job(source.id, source.bot_id, source.url))

    done = repo.get_source(source.id)
    assert done.status is SourceStatus.COMPLETED
    assert done.error_message == ""
    assert repo.count_chunks_by_source(source.id) == 1
    assert VectorStore(tmp_db, DIMS).count() == 0


# ------------------------------------------------------------------
# Failures
# ------------------------------------------------------------------


def test_missing_source_raises(worker):
    with pytest.raises(SourceNotFound):
        worker.process_job(Job("nope", "bot-a"))


def test_acquisition_failure_marks_failed(worker, web, make_source, repo):
    web.fetch_and_clean.side_effect = AcquisitionError("failed to fetch URL: timed out")
    source = make_source()

    with pytest.raises(AcquisitionError):
        worker.process_job(Job(source.id, source.bot_id, source.url))

    failed = repo.get_source(source.id)
    assert failed.status is SourceStatus.FAILED
    assert failed.error_message == "Failed to extract content: failed to fetch URL: timed out"
    assert repo.count_chunks_by_source(source.id) == 0


def test_missing_blob_marks_failed(worker, make_source, repo):
    source = make_source(source_type=SourceType.FILE, url="", original_filename="gone.txt",
                         file_path="sources/x/gone.txt")

    with pytest.raises(AcquisitionError):
        worker.process_job(Job(source.id, source.bot_id))

    failed = repo.get_source(source.id)
    assert failed.status is SourceStatus.FAILED
    assert failed.error_message.startswith("Failed to extract content: stored file unavailable")


def test_nothing_to_chunk_marks_failed(db, blobs, web, make_source, repo):
    chunker = MagicMock()
    chunker.split.return_value = []
    worker = IngestWorker(db, blobs, web=web, chunker=chunker)
    source = make_source()

    with pytest.raises(AcquisitionError, match="no content to index"):
        worker.process_job(Job(source.id, source.bot_id, source.url))

    failed = repo.get_source(source.id)
    assert failed.status is SourceStatus.FAILED
    assert failed.error_message == "no content to index"


def test_unexpected_error_marks_failed_and_propagates(db, blobs, web, make_source, repo):
    chunker = MagicMock()
    chunker.split.side_effect = RuntimeError("chunker exploded")
    worker = IngestWorker(db, blobs, web=web, chunker=chunker)
    source = make_source()

    with pytest.raises(RuntimeError):
        worker.process_job(Job(source.id, source.bot_id, source.url))

    failed = repo.get_source(source.id)
    assert failed.status is SourceStatus.FAILED
    assert failed.error_message == "chunker exploded"


# ------------------------------------------------------------------
# Cancellation
# ------------------------------------------------------------------


def test_cancel_before_start_leaves_source_pending(worker, make_source, repo):
    source = make_source()
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(JobCancelled):
        worker.process_job(Job(source.id, source.bot_id, source.url), cancel)

    assert repo.get_source(source.id).status is SourceStatus.PENDING


def test_cancel_after_acquisition_stores_nothing(worker, web, make_source, repo):
    cancel = threading.Event()

    def _fetch(url):
        cancel.set()
        return "Some text."

    web.fetch_and_clean.side_effect = _fetch
    source = make_source()

    with pytest.raises(JobCancelled):
        worker.process_job(Job(source.id, source.bot_id, source.url), cancel)

    current = repo.get_source(source.id)
    assert current.status is SourceStatus.PROCESSING
    assert current.progress == 10
    assert repo.count_chunks_by_source(source.id) == 0
