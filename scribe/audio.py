"""Narration pipeline: markdown cleanup, chunking and per-chunk speech synthesis."""

from __future__ import annotations

import re
from collections.abc import AsyncIterator

from .chunking import TextChunker
from .config import config
from .engine import ModelEngine
from .exceptions import SynthesisError
from .models import AudioSegment

logger = config.get_logger(__name__)

# Applied in order; later patterns assume earlier ones already ran.
_CLEANUP_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"<think>.*?</think>", re.DOTALL), ""),
    (re.compile(r"!\[[^\]]*\]\([^)]*\)"), ""),  # images
    (re.compile(r"\[([^\]]+)\]\([^)]*\)"), r"\1"),  # links
    (re.compile(r"(\*\*|__)(.+?)\1"), r"\2"),  # bold
    (re.compile(r"(?<!\w)([*_])(?!\s)(.+?)(?<!\s)\1(?!\w)"), r"\2"),  # italic
    (re.compile(r"```.*?```", re.DOTALL), ""),  # fenced code
    (re.compile(r"`([^`]+)`"), r"\1"),  # inline code
    (re.compile(r"^#{1,6}\s+", re.MULTILINE), ""),
    (re.compile(r"^\s*[-+*]\s+", re.MULTILINE), ""),
    (re.compile(r"^\s*\d+\.\s+", re.MULTILINE), ""),
    (re.compile(r"^\s*>\s*", re.MULTILINE), ""),
    (re.compile(r"\n{2,}"), "\n"),
]

_SYMBOL_WORDS = {
    "&": " and ",
    "%": " percent ",
    "$": " dollars ",
    "+": " plus ",
    "=": " equals ",
    "@": " at ",
}
_SYMBOL_RE = re.compile("|".join(re.escape(symbol) for symbol in _SYMBOL_WORDS))
_WHITESPACE_RE = re.compile(r"\s+")


def clean_text(text: str) -> str:
    """Strip markdown and reasoning blocks, keeping readable text."""  # noqa: DOC201
    for pattern, replacement in _CLEANUP_RULES:
        text = pattern.sub(replacement, text)
    return text.strip()


def normalize_text(text: str) -> str:
    """Spell out symbols a speech synthesizer mispronounces."""  # noqa: DOC201
    text = _SYMBOL_RE.sub(lambda match: _SYMBOL_WORDS[match.group()], text)
    return _WHITESPACE_RE.sub(" ", text).strip()


class AudioPipeline:
    """Turns article text into a stream of synthesized audio segments."""

    def __init__(
        self,
        engine: ModelEngine,
        chunk_size: int | None = None,
        media_type: str | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            engine: Model engine used for speech synthesis.
            chunk_size: Max characters per synthesized chunk. If None, uses
                config.AUDIO_CHUNK_SIZE.
            media_type: MIME type stamped on produced segments. If None, taken
                from the engine when it has one.
        """
        self.engine = engine
        self.chunker = TextChunker(
            chunk_size if chunk_size is not None else config.AUDIO_CHUNK_SIZE
        )
        self.media_type = media_type or getattr(engine, "media_type", "audio/wav")

    def prepare_chunks(self, text: str) -> list[str]:
        """Clean, normalize and chunk text for synthesis."""  # noqa: DOC201
        return self.chunker.chunk(normalize_text(clean_text(text)))

    async def generate_speech(self, text: str, voice: str | None = None) -> bytes:
        """Synthesize the whole text in a single request.

        Returns:
            Encoded audio bytes.

        Raises:
            SynthesisError: If the text has nothing to speak or synthesis fails.
        """
        prepared = normalize_text(clean_text(text))
        if not prepared:
            msg = "Content is empty"
            raise SynthesisError(msg)
        return await self.engine.synthesize(prepared, voice=voice)

    async def synthesize(
        self, text: str, voice: str | None = None
    ) -> AsyncIterator[AudioSegment]:
        """Yield one audio segment per chunk, strictly in chunk order.

        Chunks whose synthesis fails are skipped. Closing the generator stops
        further synthesis requests.

        Yields:
            AudioSegment for each chunk that synthesized successfully.

        Raises:
            SynthesisError: If there were chunks and every one of them failed.
        """
        chunks = self.prepare_chunks(text)
        logger.info("Synthesizing %d chunks", len(chunks))

        produced = 0
        last_error: SynthesisError | None = None
        for index, chunk in enumerate(chunks):
            try:
                audio = await self.engine.synthesize(chunk, voice=voice)
            except SynthesisError as exc:
                logger.warning(
                    "Skipping chunk %d/%d after synthesis failure: %s",
                    index + 1,
                    len(chunks),
                    exc,
                )
                last_error = exc
                continue

            produced += 1
            logger.debug("Synthesized chunk %d/%d", index + 1, len(chunks))
            yield AudioSegment(
                index=index, text=chunk, audio=audio, media_type=self.media_type
            )

        if chunks and not produced:
            msg = f"Speech synthesis failed for all {len(chunks)} chunks"
            raise SynthesisError(msg) from last_error
