"""Sentence-aware text chunking."""

import re

from .config import config

logger = config.get_logger(__name__)

SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")
CLAUSE_BOUNDARY = re.compile(r"(?<=[,;:])\s+")


def _split(text: str, boundary: re.Pattern[str]) -> list[str]:
    return [part.strip() for part in boundary.split(text) if part.strip()]


class TextChunker:
    """Splits text into bounded chunks along sentence and clause boundaries."""

    def __init__(self, max_size: int = config.AUDIO_CHUNK_SIZE) -> None:
        """Initialize the TextChunker with a maximum chunk size.

        Args:
            max_size: Maximum number of characters per chunk.

        Raises:
            ValueError: If max_size is smaller than one character.
        """
        if max_size < 1:
            msg = f"max_size must be at least 1, got {max_size}"
            raise ValueError(msg)
        self.max_size = max_size

    def chunk(self, text: str) -> list[str]:
        """Split text into chunks of at most ``max_size`` characters.

        Sentences are packed greedily. A sentence longer than the limit is
        split at clause punctuation and packed the same way; a clause that is
        still too long is emitted as a single oversized chunk.

        Returns:
            Non-empty chunks in text order.
        """
        chunks: list[str] = []
        buffer = ""

        for sentence in _split(text, SENTENCE_BOUNDARY):
            if len(sentence) <= self.max_size:
                buffer = self._append(buffer, sentence, chunks)
                continue

            if buffer:
                chunks.append(buffer)
                buffer = ""
            for clause in _split(sentence, CLAUSE_BOUNDARY):
                buffer = self._append(buffer, clause, chunks)

        if buffer:
            chunks.append(buffer)

        logger.debug(
            "Text split into %d chunks (max_size=%d)", len(chunks), self.max_size
        )
        return chunks

    def _append(self, buffer: str, piece: str, chunks: list[str]) -> str:
        """Add piece to the running buffer, flushing it first if it would overflow.

        Returns:
            The new running buffer.
        """
        if not buffer:
            return piece
        candidate = f"{buffer} {piece}"
        if len(candidate) > self.max_size:
            chunks.append(buffer)
            return piece
        return candidate


def chunk_text(text: str, max_size: int) -> list[str]:
    """Split text into bounded chunks. See ``TextChunker.chunk``."""  # noqa: DOC201
    return TextChunker(max_size).chunk(text)
