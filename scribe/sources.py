"""External passage sources: Europe PMC, Wikipedia search and random topics."""

from __future__ import annotations

import html
import re
from typing import Any, Protocol

import httpx

from .config import config

logger = config.get_logger(__name__)

EUROPE_PMC_SEARCH_URL = "https://www.ebi.ac.uk/europepmc/webservices/rest/search"
WIKIPEDIA_API_URL = "https://en.wikipedia.org/w/api.php"
WIKIPEDIA_RANDOM_SUMMARY_URL = (
    "https://en.wikipedia.org/api/rest_v1/page/random/summary"
)

FALLBACK_TOPIC = "Random Topic"

_TAG_RE = re.compile(r"<[^>]*>?")


class PassageSource(Protocol):
    name: str

    async def search(self, query: str, limit: int) -> list[str]: ...


class HttpJsonSource:
    """Shared plumbing for sources that GET a JSON document."""

    name = "http"

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize the source.

        Args:
            client: Client to reuse. If None, each request opens its own.
            timeout: Request timeout in seconds. If None, uses
                config.SEARCH_TIMEOUT.
        """
        self._client = client
        self.timeout = timeout if timeout is not None else config.SEARCH_TIMEOUT

    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        if self._client is not None:
            response = await self._client.get(url, params=params)
        else:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                headers=config.get_api_headers(),
            ) as client:
                response = await client.get(url, params=params)
        response.raise_for_status()
        return response.json()


class EuropePMCSource(HttpJsonSource):
    """Scholarly literature search returning article abstracts."""

    name = "europe_pmc"

    async def search(self, query: str, limit: int) -> list[str]:
        logger.info("Searching Europe PMC for: %s", query)
        data = await self._get_json(
            EUROPE_PMC_SEARCH_URL,
            params={"query": query, "format": "json", "pageSize": limit},
        )
        results = (data.get("resultList") or {}).get("result") or []
        return [r["abstractText"] for r in results[:limit] if r.get("abstractText")]


class WikipediaSource(HttpJsonSource):
    """Encyclopedia search returning result snippets as plain text."""

    name = "wikipedia"

    async def search(self, query: str, limit: int) -> list[str]:
        logger.info("Searching Wikipedia for: %s", query)
        data = await self._get_json(
            WIKIPEDIA_API_URL,
            params={
                "action": "query",
                "list": "search",
                "format": "json",
                "utf8": "",
                "srlimit": limit,
                "srsearch": query,
            },
        )
        results = (data.get("query") or {}).get("search") or []
        return [strip_markup(r.get("snippet", "")) for r in results[:limit]]


class RandomTopicSource(HttpJsonSource):
    """Picks a random Wikipedia article title to write about."""

    name = "wikipedia_random"

    async def get_random_topic(self) -> str:
        """Fetch a random article title.

        Returns:
            The title, or ``FALLBACK_TOPIC`` if the lookup fails for any reason.
        """
        try:
            data = await self._get_json(WIKIPEDIA_RANDOM_SUMMARY_URL)
            title = str(data["title"]).strip()
        except (httpx.HTTPError, KeyError, TypeError, ValueError):
            logger.warning("Error fetching random Wikipedia title", exc_info=True)
            return FALLBACK_TOPIC
        return title or FALLBACK_TOPIC


def strip_markup(snippet: str) -> str:
    """Remove HTML tags and entities from a search snippet."""  # noqa: DOC201
    return html.unescape(_TAG_RE.sub("", snippet)).strip()


def default_sources(client: httpx.AsyncClient | None = None) -> list[PassageSource]:
    return [EuropePMCSource(client), WikipediaSource(client)]
