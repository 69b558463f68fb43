"""Shared pytest fixtures."""

from __future__ import annotations

import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from types import SimpleNamespace

import pytest

from lectern.db.connection import Database
from lectern.db.migrations import initialize
from lectern.db.models import Source, SourceType
from lectern.db.repository import Repository


@pytest.fixture
def db(tmp_path):
    """File-based Database in tmp_path with schema initialized."""
    database = Database(tmp_path / ".lectern.db")
    with database.connection() as conn:
        initialize(conn)
    return database


@pytest.fixture
def tmp_db(db):
    """Open connection to the initialized database, closed after test."""
    conn = db.connect()
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture
def make_source(repo):
    """Insert a Source and return it; keyword args override the defaults."""

    counter = iter(range(1, 10_000))

    def _make(**kwargs) -> Source:
        n = next(counter)
        fields = {
            "id": f"src-{n}",
            "bot_id": "bot-a",
            "source_type": SourceType.URL,
            "url": f"https://example.com/page-{n}",
        }
        fields.update(kwargs)
        source = Source(**fields)
        repo.add_source(source)
        return source

    return _make


@pytest.fixture(autouse=True)
def _clean_lectern_env(monkeypatch):
    """Keep LECTERN_* overrides from the developer's shell out of tests."""
    for name in ("LECTERN_EMBEDDING_MODEL", "LECTERN_CHAT_MODEL", "LECTERN_DB_PATH", "LECTERN_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def web_server():
    """Local HTTP server; tests register responses in ``server.routes[path]``.

    Each route is ``(status, headers, body)``. Unknown paths answer 404.
    """
    routes: dict[str, tuple[int, dict[str, str], bytes]] = {}

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            status, headers, body = routes.get(
                self.path, (404, {"Content-Type": "text/plain"}, b"not found")
            )
            self.send_response(status)
            for name, value in headers.items():
                self.send_header(name, value)
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format, *args):
            pass

    server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield SimpleNamespace(url=f"http://127.0.0.1:{server.server_address[1]}", routes=routes)
    server.shutdown()
    server.server_close()
