"""Tests for the forward-only migration runner."""

from __future__ import annotations

import sqlite3

import pytest

import lectern.db.migrations as mod
from lectern.db.connection import Database
from lectern.db.migrations import MIGRATIONS, initialize, run_migrations


def _fresh_conn(tmp_path):
    """Open a new connection without running migrations."""
    db = Database(tmp_path / "test.db")
    return db.connect()


def _table_exists(conn, name: str) -> bool:
    return conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,)
    ).fetchone() is not None


# --- Bootstrap ---

def test_run_migrations_records_version(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert _table_exists(conn, "schema_version")
    version = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    assert version == MIGRATIONS[-1][0]
    conn.close()


def test_run_migrations_idempotent(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    run_migrations(conn)
    count = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert count == len(MIGRATIONS)
    conn.close()


# --- Tables created ---

@pytest.mark.parametrize("table", ["sources", "document_chunks", "vec_chunk_map"])
def test_run_migrations_creates_tables(tmp_path, table):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert _table_exists(conn, table)
    conn.close()


def test_run_migrations_does_not_create_vec_table(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert not _table_exists(conn, "vec_items")
    conn.close()


def test_chunk_index_unique_per_source(tmp_path):
    conn = _fresh_conn(tmp_path)
    initialize(conn)
    conn.execute("INSERT INTO sources (id, bot_id) VALUES ('s1', 'b1')")
    conn.execute(
        "INSERT INTO document_chunks (id, source_id, content, chunk_index) VALUES ('c1', 's1', 'a', 0)"
    )
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(
            "INSERT INTO document_chunks (id, source_id, content, chunk_index) "
            "VALUES ('c2', 's1', 'b', 0)"
        )
    conn.close()


def test_deleting_source_cascades_to_chunks(tmp_path):
    conn = _fresh_conn(tmp_path)
    initialize(conn)
    conn.execute("INSERT INTO sources (id, bot_id) VALUES ('s1', 'b1')")
    conn.execute(
        "INSERT INTO document_chunks (id, source_id, content, chunk_index) VALUES ('c1', 's1', 'a', 0)"
    )
    conn.execute("INSERT INTO vec_chunk_map (chunk_id) VALUES ('c1')")
    conn.execute("DELETE FROM sources WHERE id = 's1'")
    assert conn.execute("SELECT COUNT(*) FROM document_chunks").fetchone()[0] == 0
    assert conn.execute("SELECT COUNT(*) FROM vec_chunk_map").fetchone()[0] == 0
    conn.close()


# --- Incremental application ---

def test_run_migrations_applies_only_pending(tmp_path, monkeypatch):
    """Simulate a DB already at version 1; a hypothetical v2 migration applies."""
    conn = _fresh_conn(tmp_path)
    conn.execute(
        "CREATE TABLE IF NOT EXISTS schema_version "
        "(version INTEGER NOT NULL, applied_at DATETIME NOT NULL DEFAULT (datetime('now')))"
    )
    conn.execute("INSERT INTO schema_version (version) VALUES (1)")
    conn.commit()

    monkeypatch.setattr(
        mod,
        "MIGRATIONS",
        [(1, "SELECT 1;"), (2, "CREATE TABLE IF NOT EXISTS v2_marker (x INTEGER);")],
    )
    run_migrations(conn)

    assert _table_exists(conn, "v2_marker")
    assert not _table_exists(conn, "sources")  # v1 not re-applied
    versions = [
        r[0] for r in conn.execute("SELECT version FROM schema_version ORDER BY version")
    ]
    assert versions == [1, 2]
    conn.close()
