"""Streaming chat: retrieve context for a bot, then stream the model's answer.

A stream emits zero or more ``token`` events followed by exactly one
terminal event, ``done`` or ``error``. Tokens already emitted are never
retracted. Cancelling closes the provider stream; nothing more is emitted.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from enum import Enum

from lectern.config import GenerationCfg
from lectern.db.models import SearchResult
from lectern.errors import SearchError
from lectern.log import get_logger
from lectern.rag import llm_client
from lectern.rag.search import SearchService

log = get_logger(__name__)

_CONTEXT_HEADER = "Here is relevant information from the knowledge base:\n\n"
_CONTEXT_FOOTER = "Please use this information to answer the user's question accurately."


class ChatState(str, Enum):
    RETRIEVING = "retrieving"
    GENERATING = "generating"
    DONE = "done"
    ERRORED = "errored"


@dataclass(frozen=True)
class ChatEvent:
    """One frame of a chat stream: ``token``, ``done`` or ``error``."""

    type: str
    content: str = ""
    error: str = ""

    def to_dict(self) -> dict[str, str]:
        payload = {"type": self.type}
        if self.content:
            payload["content"] = self.content
        if self.error:
            payload["error"] = self.error
        return payload

    def to_sse(self) -> str:
        """Render as a Server-Sent Events frame."""
        return f"data: {json.dumps(self.to_dict())}\n\n"


def build_messages(
    system_prompt: str, context: Sequence[SearchResult], user_message: str
) -> list[dict]:
    """Assemble the prompt: bot prompt, retrieved context, then the question."""
    messages: list[dict] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    if context:
        parts = [_CONTEXT_HEADER]
        for i, result in enumerate(context, start=1):
            parts.append(f"--- Context {i} ---\n{result.content}\nSource: {result.source_url}\n\n")
        parts.append(_CONTEXT_FOOTER)
        messages.append({"role": "system", "content": "".join(parts)})
    messages.append({"role": "user", "content": user_message})
    return messages


class ChatStream:
    """Iterable of ChatEvents for a single chat turn.

    Iterating drives the work: retrieval happens on the first ``next()``.
    """

    def __init__(
        self,
        search: SearchService,
        config: GenerationCfg,
        bot_id: str,
        message: str,
        system_prompt: str = "",
    ) -> None:
        self._search = search
        self._config = config
        self.bot_id = bot_id
        self.message = message
        self.system_prompt = system_prompt
        self.state = ChatState.RETRIEVING
        self.context: list[SearchResult] = []
        self._parts: list[str] = []
        self._cancel = threading.Event()
        self._stream = None
        self._stream_lock = threading.Lock()
        self._events = self._run()

    def __iter__(self) -> Iterator[ChatEvent]:
        return self

    def __next__(self) -> ChatEvent:
        return next(self._events)

    @property
    def reply(self) -> str:
        """Assistant text streamed so far."""
        return "".join(self._parts)

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        """Stop generating and close the provider stream.

        Safe to call from another thread: a consumer blocked waiting for the
        next delta wakes up and the stream ends without a terminal event.
        """
        self._cancel.set()
        self._release_stream()

    def close(self) -> None:
        """Cancel and finalize the stream; call from the consuming thread."""
        self.cancel()
        self._events.close()

    def _release_stream(self) -> None:
        with self._stream_lock:
            stream, self._stream = self._stream, None
        if stream is not None:
            llm_client.close_stream(stream)

    def _fail(self, message: str) -> ChatEvent:
        self.state = ChatState.ERRORED
        log.warning("chat failed: %s", message, extra={"ctx_bot_id": self.bot_id})
        return ChatEvent(type="error", error=message)

    def _run(self) -> Iterator[ChatEvent]:
        try:
            self.context = self._search.search(
                self.message, self.bot_id, self._config.max_context_chunks
            )
        except SearchError as exc:
            yield self._fail(f"failed to search context: {exc}")
            return
        if self._cancel.is_set():
            return

        messages = build_messages(self.system_prompt, self.context, self.message)
        self.state = ChatState.GENERATING
        try:
            stream = llm_client.stream_completion(
                self._config.model,
                messages,
                temperature=self._config.temperature,
                max_tokens=self._config.max_tokens,
                timeout=self._config.timeout,
            )
        except llm_client.ProviderError as exc:
            yield self._fail(f"streaming error: {exc}")
            return

        with self._stream_lock:
            self._stream = stream
        if self._cancel.is_set():
            self._release_stream()
            return

        try:
            for delta in llm_client.iter_deltas(stream):
                if self._cancel.is_set():
                    return
                if not delta:
                    continue
                self._parts.append(delta)
                yield ChatEvent(type="token", content=delta)
        except llm_client.ProviderError as exc:
            # Reads on a stream closed by cancel() fail; that is a silent stop.
            if self._cancel.is_set():
                return
            yield self._fail(f"streaming error: {exc}")
            return
        finally:
            self._release_stream()

        if self._cancel.is_set():
            return
        self.state = ChatState.DONE
        log.info(
            "chat completed (%d context chunks, %d chars)",
            len(self.context),
            len(self.reply),
            extra={"ctx_bot_id": self.bot_id},
        )
        yield ChatEvent(type="done")


class ChatOrchestrator:
    """Create chat streams for bots.

    Args:
        search: Search service used for context retrieval.
        config: Chat model, temperature and context size.
    """

    def __init__(self, search: SearchService, config: GenerationCfg | None = None) -> None:
        self._search = search
        self._config = config or GenerationCfg()

    def start(self, bot_id: str, message: str, system_prompt: str = "") -> ChatStream:
        return ChatStream(self._search, self._config, bot_id, message, system_prompt)
