"""Article backend client."""

from __future__ import annotations

from typing import Protocol

import httpx

from .config import config
from .exceptions import PublishError
from .models import Article

logger = config.get_logger(__name__)

MAX_TITLE_LENGTH = 255


class ArticleStore(Protocol):
    async def create(self, title: str, content: str) -> Article: ...


class HttpArticleStore:
    """Creates articles through the blog backend's REST API."""

    def __init__(
        self,
        base_url: str | None = None,
        username: str | None = None,
        password: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = (base_url or config.ARTICLES_API_URL).rstrip("/")
        self.auth = httpx.BasicAuth(
            username or config.ADMIN_USERNAME,
            password if password is not None else config.ADMIN_PASSWORD,
        )
        self._client = client

    async def create(self, title: str, content: str) -> Article:
        """Store a new article.

        Returns:
            The stored article with its id and creation time.

        Raises:
            PublishError: If the article is invalid or the backend rejects it.
        """
        title = title.strip()
        if not title:
            msg = "Title is required"
            raise PublishError(msg)
        if len(title) > MAX_TITLE_LENGTH:
            msg = "Title is too long"
            raise PublishError(msg)
        if not content.strip():
            msg = "Content is required"
            raise PublishError(msg)

        url = f"{self.base_url}/articles"
        payload = {"title": title, "content": content}
        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload, auth=self.auth)
            else:
                async with httpx.AsyncClient(
                    timeout=config.SEARCH_TIMEOUT,
                    headers=config.get_api_headers(),
                ) as client:
                    response = await client.post(url, json=payload, auth=self.auth)
            response.raise_for_status()
            data = response.json()
            article = Article(
                id=int(data["id"]),
                title=data["title"],
                content=data["content"],
                created_at=str(data["created_at"]),
            )
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as exc:
            logger.exception("Failed to publish article %r", title)
            msg = f"Failed to publish article: {exc}"
            raise PublishError(msg) from exc

        logger.info("Published article %d: %s", article.id, article.title)
        return article
