"""OpenAI embeddings service."""

import numpy as np
from openai import AsyncOpenAI

from .config import config
from .exceptions import EmbeddingError

logger = config.get_logger(__name__)


class EmbeddingService:
    """Handles OpenAI embeddings generation."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        """Initialize the EmbeddingService with OpenAI API key and model.

        Args:
            api_key: OpenAI API key. If None,
                reads from OPENAI_API_KEY environment variable.
            model: Embedding model name. If None, uses config.EMBEDDING_MODEL.
            client: Existing client to share. If None, a new one is created.
        """
        if client is None:
            api_key = api_key or config.get_openai_api_key()
            default_headers = config.get_api_headers()
            client = AsyncOpenAI(
                api_key=api_key,
                base_url=config.OPENAI_BASE_URL,
                max_retries=config.OPENAI_MAX_RETRIES,
                default_headers=default_headers or None,
            )
        self.client = client
        self.model = model or config.EMBEDDING_MODEL

    async def get_embedding(self, text: str) -> np.ndarray:
        """Get embedding for a single text.

        Args:
            text: The input text to generate an embedding for.

        Returns:
            np.ndarray: The embedding vector for the input text.

        Raises:
            EmbeddingError: If the embeddings API call fails.
        """
        try:
            response = await self.client.embeddings.create(
                model=self.model,
                input=text,
            )
            embedding = np.array(response.data[0].embedding)
        except Exception as exc:
            logger.exception("Error generating embedding")
            msg = f"Embedding request failed: {exc}"
            raise EmbeddingError(msg) from exc
        else:
            return embedding

    async def get_embeddings_batch(
        self,
        texts: list[str],
        batch_size: int = 100,
    ) -> list[np.ndarray]:
        """Get embeddings for multiple texts in batches.

        Args:
            texts: List of input texts to generate embeddings for.
            batch_size: Number of texts to process in each batch.

        Returns:
            list[np.ndarray]: List of embedding vectors for the input texts.

        Raises:
            EmbeddingError: If any batch fails.
        """
        embeddings = []

        for i in range(0, len(texts), batch_size):
            batch_texts = texts[i : i + batch_size]
            try:
                response = await self.client.embeddings.create(
                    model=self.model,
                    input=batch_texts,
                )
            except Exception as exc:
                logger.exception("Error generating batch embeddings")
                msg = f"Batch embedding request failed: {exc}"
                raise EmbeddingError(msg) from exc
            embeddings.extend(np.array(data.embedding) for data in response.data)
            logger.info("Generated embeddings for batch %d", i // batch_size + 1)

        return embeddings
