"""Embedding-based re-ranking of retrieved passages."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

import numpy as np

from .chunking import TextChunker
from .config import config
from .engine import ModelEngine
from .exceptions import EmbeddingError
from .models import ScoredPassage

logger = config.get_logger(__name__)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity of two vectors; 0.0 if either has zero norm."""  # noqa: DOC201
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    denominator = np.linalg.norm(a) * np.linalg.norm(b)
    if denominator == 0:
        return 0.0
    return float(np.dot(a, b) / denominator)


class RelevanceReranker:
    """Orders passages by how similar their embeddings are to the query's."""

    def __init__(self, engine: ModelEngine, chunk_size: int | None = None) -> None:
        self.engine = engine
        self.chunker = TextChunker(
            chunk_size if chunk_size is not None else config.RERANK_CHUNK_SIZE
        )

    def segment(self, passages: Sequence[str]) -> list[str]:
        """Re-chunk passages into segments small enough to embed."""  # noqa: DOC201
        return [piece for passage in passages for piece in self.chunker.chunk(passage)]

    async def score(self, query: str, passages: Sequence[str]) -> list[ScoredPassage]:
        """Score every passage segment against the query.

        Returns:
            Segments with their scores, highest first; ties keep input order.

        Raises:
            EmbeddingError: If any embedding request fails.
        """
        segments = self.segment(passages)
        if not segments:
            return []

        query_embedding, *segment_embeddings = await asyncio.gather(
            self.engine.embed(query),
            *(self.engine.embed(segment) for segment in segments),
        )

        scored = [
            ScoredPassage(text=segment, score=cosine_similarity(query_embedding, emb))
            for segment, emb in zip(segments, segment_embeddings, strict=True)
        ]
        return sorted(scored, key=lambda passage: passage.score, reverse=True)

    async def rerank(self, query: str, passages: Sequence[str]) -> list[str]:
        """Return passage segments ordered by descending relevance.

        Falls back to the unscored segments in their original order when
        embeddings are unavailable.

        Returns:
            Ordered segment texts.
        """
        if not passages:
            return []

        try:
            scored = await self.score(query, passages)
        except EmbeddingError:
            logger.warning("Embedding failed; keeping retrieval order", exc_info=True)
            return self.segment(passages)

        for rank, passage in enumerate(scored[:5], start=1):
            logger.debug(
                "Rank %d (score: %.4f): %s...", rank, passage.score, passage.text[:80]
            )
        return [passage.text for passage in scored]
