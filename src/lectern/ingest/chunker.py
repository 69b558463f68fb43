"""Paragraph-first chunker with a word-count token approximation.

1 token ≈ 0.75 words, so a chunk holds at most ``int(max_tokens * 0.75)``
words. Paragraphs are packed greedily; a paragraph that is too large on its
own is broken into sentences which are packed the same way. A single
sentence longer than the limit is emitted whole.
"""

from __future__ import annotations

import re

from lectern.db.models import DocumentChunk

DEFAULT_MAX_TOKENS = 800

# Break after ". ", "! " or "? "; the punctuation stays with its sentence.
_SENTENCE_BREAK = re.compile(r"(?<=[.!?]) ")


class ParagraphChunker:
    """Split cleaned text into chunks of roughly *max_tokens* tokens."""

    def __init__(self, max_tokens: int = DEFAULT_MAX_TOKENS) -> None:
        max_words = int(max_tokens * 0.75)
        if max_words < 1:
            raise ValueError(f"max_tokens={max_tokens} leaves no room for a single word")
        self.max_tokens = max_tokens
        self.max_words = max_words

    @staticmethod
    def count_words(text: str) -> int:
        return len(text.split())

    def split(self, text: str) -> list[str]:
        """Return the chunk texts for *text*, in document order."""
        chunks: list[str] = []
        current = ""
        words = 0

        for line in text.split("\n"):
            para = line.strip()
            if not para:
                continue
            para_words = self.count_words(para)

            if words > 0 and words + para_words > self.max_words:
                chunks.append(current)
                current, words = "", 0

            if para_words <= self.max_words:
                current = f"{current}\n\n{para}" if current else para
                words += para_words
                continue

            for sentence in _split_sentences(para):
                sentence_words = self.count_words(sentence)
                if words > 0 and words + sentence_words > self.max_words:
                    chunks.append(current)
                    current, words = "", 0
                current = f"{current} {sentence}" if current else sentence
                words += sentence_words

        if current:
            chunks.append(current)
        return chunks

    def chunk(self, source_id: str, text: str) -> list[DocumentChunk]:
        """Split *text* into DocumentChunks numbered 0..n-1 for *source_id*."""
        return [
            DocumentChunk(id="", source_id=source_id, content=content, chunk_index=i)
            for i, content in enumerate(self.split(text))
        ]


def _split_sentences(paragraph: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_BREAK.split(paragraph) if s.strip()]


def chunk_text(text: str, max_tokens: int = DEFAULT_MAX_TOKENS) -> list[str]:
    """Convenience wrapper: ``ParagraphChunker(max_tokens).split(text)``."""
    return ParagraphChunker(max_tokens).split(text)
