"""Concurrent context retrieval across external passage sources."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

from .config import config
from .sources import PassageSource, default_sources

logger = config.get_logger(__name__)


class ContextRetriever:
    """Queries every passage source at once and pools what comes back."""

    def __init__(
        self,
        sources: Sequence[PassageSource] | None = None,
        results_per_source: int | None = None,
    ) -> None:
        """Initialize the retriever.

        Args:
            sources: Passage sources to query. If None, uses Europe PMC and
                Wikipedia.
            results_per_source: Results requested from each source. If None,
                uses config.SEARCH_RESULTS_PER_SOURCE.
        """
        self.sources = list(sources) if sources is not None else default_sources()
        self.results_per_source = (
            results_per_source
            if results_per_source is not None
            else config.SEARCH_RESULTS_PER_SOURCE
        )

    async def retrieve(self, query: str) -> list[str]:
        """Retrieve raw passages for a query.

        A failing source contributes nothing; it never fails the retrieval.

        Returns:
            Passages from all sources, concatenated in source order.
        """
        if not query.strip():
            return []

        results = await asyncio.gather(
            *(self._search_source(source, query) for source in self.sources)
        )
        passages = [passage for batch in results for passage in batch]
        logger.info(
            "Retrieved %d passages from %d sources", len(passages), len(self.sources)
        )
        return passages

    async def _search_source(self, source: PassageSource, query: str) -> list[str]:
        try:
            passages = await source.search(query, self.results_per_source)
        except Exception:  # noqa: BLE001
            logger.warning(
                "Passage source %s failed for query %r",
                getattr(source, "name", type(source).__name__),
                query,
                exc_info=True,
            )
            return []
        return [p.strip() for p in passages if p and p.strip()]
