"""Tests for lectern search and lectern chat."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from lectern.cli.main import app
from lectern.errors import SessionExpired
from lectern.rag.llm_client import ProviderError
from lectern.rag.sessions import SessionStore

runner = CliRunner()

_EMBED = "lectern.rag.llm_client.litellm.embedding"
_COMPLETE = "lectern.rag.llm_client.litellm.completion"


@pytest.fixture
def indexed(project, fake_embedding):
    with patch(_EMBED, side_effect=fake_embedding):
        result = runner.invoke(
            app, ["add", "--bot", "bot-a", "--text", "Shipping is free over 50 euros."]
        )
    assert result.exit_code == 0, result.output
    return project


# ------------------------------------------------------------------
# search
# ------------------------------------------------------------------


def test_search_finds_chunk(indexed, fake_embedding):
    with patch(_EMBED, side_effect=fake_embedding):
        result = runner.invoke(app, ["search", "shipping cost", "--bot", "bot-a"])

    assert result.exit_code == 0, result.output
    assert "Results for" in result.output
    assert "Shipping" in result.output


def test_search_other_bot_has_no_results(indexed, fake_embedding):
    with patch(_EMBED, side_effect=fake_embedding):
        result = runner.invoke(app, ["search", "shipping", "--bot", "bot-b"])

    assert result.exit_code == 0
    assert "No results for bot 'bot-b'" in result.output


def test_search_embedding_failure(indexed):
    with patch(_EMBED, side_effect=RuntimeError("network down")):
        result = runner.invoke(app, ["search", "shipping", "--bot", "bot-a"])

    assert result.exit_code == 1
    assert "Search failed" in result.output


# ------------------------------------------------------------------
# chat
# ------------------------------------------------------------------


def test_chat_streams_answer(indexed, fake_embedding, fake_completion):
    with patch(_EMBED, side_effect=fake_embedding), patch(
        _COMPLETE, return_value=fake_completion("Shipping ", "is free.")
    ) as mock_complete:
        result = runner.invoke(app, ["chat", "--bot", "bot-a", "Is shipping free?"])

    assert result.exit_code == 0, result.output
    assert "Shipping is free." in result.output
    messages = mock_complete.call_args.kwargs["messages"]
    assert "Shipping is free over 50 euros." in messages[0]["content"]
    assert messages[-1] == {"role": "user", "content": "Is shipping free?"}


def test_chat_sse_frames(indexed, fake_embedding, fake_completion):
    with patch(_EMBED, side_effect=fake_embedding), patch(
        _COMPLETE, return_value=fake_completion("Yes.")
    ):
        result = runner.invoke(app, ["chat", "--bot", "bot-a", "--sse", "Free shipping?"])

    assert result.exit_code == 0, result.output
    assert 'data: {"type": "token", "content": "Yes."}\n\n' in result.output
    assert 'data: {"type": "done"}\n\n' in result.output


def test_chat_provider_error_exits_nonzero(indexed, fake_embedding):
    with patch(_EMBED, side_effect=fake_embedding), patch(
        _COMPLETE, side_effect=ProviderError(429, "rate limited")
    ):
        result = runner.invoke(app, ["chat", "--bot", "bot-a", "--sse", "hello"])

    assert result.exit_code == 1
    assert '"type": "error"' in result.output
    assert "streaming error" in result.output


def test_chat_interactive_session(indexed, fake_embedding, fake_completion):
    with patch(_EMBED, side_effect=fake_embedding), patch(
        _COMPLETE, side_effect=lambda **kw: fake_completion("Answer.")
    ) as mock_complete:
        result = runner.invoke(app, ["chat", "--bot", "bot-a"], input="first?\nsecond?\n\n")

    assert result.exit_code == 0, result.output
    assert "Session" in result.output
    assert result.output.count("Answer.") == 2
    assert mock_complete.call_count == 2


def test_chat_interactive_runs_session_sweeper(indexed, fake_embedding, fake_completion):
    with patch(_EMBED, side_effect=fake_embedding), patch(
        _COMPLETE, side_effect=lambda **kw: fake_completion("Answer.")
    ), patch.object(
        SessionStore, "start_sweeper", autospec=True, side_effect=SessionStore.start_sweeper
    ) as start, patch.object(
        SessionStore, "stop", autospec=True, side_effect=SessionStore.stop
    ) as stop:
        result = runner.invoke(app, ["chat", "--bot", "bot-a"], input="hi\n\n")

    assert result.exit_code == 0, result.output
    start.assert_called_once()
    stop.assert_called_once()
    assert start.call_args.args[0] is stop.call_args.args[0]


def test_chat_interactive_ends_on_expired_session(indexed, fake_embedding):
    with patch(_EMBED, side_effect=fake_embedding), patch(_COMPLETE) as mock_complete, patch.object(
        SessionStore, "touch", side_effect=SessionExpired("session has expired: s1")
    ):
        result = runner.invoke(app, ["chat", "--bot", "bot-a"], input="hello?\n")

    assert result.exit_code == 0, result.output
    assert "session has expired" in result.output
    mock_complete.assert_not_called()


def test_chat_requires_generation_key(project, monkeypatch):
    (project / "lectern.yaml").write_text(
        "storage:\n  db_path: kb.db\nembedding:\n  dimensions: 4\n"
        "generation:\n  model: anthropic/claude-3-5-haiku-20241022\n",
        encoding="utf-8",
    )
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    result = runner.invoke(app, ["chat", "--bot", "bot-a", "hi"])

    assert result.exit_code == 1
    assert "ANTHROPIC_API_KEY" in result.output
