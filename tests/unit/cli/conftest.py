"""Fixtures for CLI tests: an isolated project directory and fake providers."""

from __future__ import annotations

import logging
from pathlib import Path
from types import SimpleNamespace

import pytest
import yaml
from rich.console import Console

DIMS = 4


@pytest.fixture
def project(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """cwd with a lectern.yaml tuned for tests; no global config; OpenAI key set."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("lectern.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    for module in ("add", "status", "query", "remove"):
        monkeypatch.setattr(f"lectern.cli.{module}.console", Console(width=200))
    (tmp_path / "lectern.yaml").write_text(
        yaml.dump(
            {
                "storage": {"db_path": "kb.db", "blob_dir": "blobs"},
                "embedding": {"dimensions": DIMS},
                "scraper": {"allow_private_addresses": True, "random_delay": 0},
                "queue": {"workers": 1},
                "logging": {"level": "WARNING"},
            }
        ),
        encoding="utf-8",
    )
    yield tmp_path
    logging.getLogger("lectern").handlers = []


@pytest.fixture
def fake_embedding():
    """Stand-in for litellm.embedding: every text maps to the same unit vector."""

    def _embedding(model, input, **kwargs):
        return SimpleNamespace(
            data=[{"index": i, "embedding": [1.0, 0.0, 0.0, 0.0]} for i in range(len(input))]
        )

    return _embedding


def completion_stream(*tokens: str) -> list:
    """Fake litellm streaming response yielding *tokens*."""
    return [
        SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=t))])
        for t in tokens
    ]


@pytest.fixture
def fake_completion():
    return completion_stream
