"""Test configuration and fixtures for Scribe tests.

This module provides reusable test fixtures organized by functionality:
- Constants and test data
- Fake engine, passage sources and audio output
- Mocked OpenAI API responses
- Service and pipeline factories
"""

import asyncio
import hashlib
from unittest.mock import Mock

import httpx
import numpy as np
import pytest

from scribe import (
    AudioSegment,
    ContextRetriever,
    EmbeddingError,
    EmbeddingService,
    GenerationError,
    OpenAIEngine,
    SynthesisError,
)


class TestConstants:
    """Centralized test constants to avoid repetition across test files."""

    # API Configuration
    TEST_API_KEY = "test-key"
    TEST_OPENAI_MODEL = "text-embedding-3-small"
    TEST_CHAT_MODEL = "gpt-4.1-nano-2025-04-14"
    DEFAULT_EMBEDDING_DIMENSION = 64

    # Chunking Configuration
    AUDIO_CHUNK_SIZE = 200
    RERANK_CHUNK_SIZE = 400

    # Generated content
    GENERATED_ARTICLE = (
        "# The Minds of Octopuses\n\n"
        "Octopuses solve puzzles with arms that think for themselves.\n\n"
        "## Distributed brains\n\nTwo thirds of their neurons live in their arms."
    )


class MockEmbeddingService:
    """Deterministic embeddings seeded from a hash of the text."""

    def __init__(
        self, dimension: int = TestConstants.DEFAULT_EMBEDDING_DIMENSION
    ) -> None:
        self.dimension = dimension

    def get_embedding(self, text: str) -> np.ndarray:
        seed = int.from_bytes(
            hashlib.sha256(text.lower().encode("utf-8")).digest()[:8],
            byteorder="big",
            signed=False,
        )
        rng = np.random.default_rng(seed)
        embedding = rng.normal(0, 1, self.dimension)
        return (embedding / np.linalg.norm(embedding)).astype(np.float32)


class FakeEngine:
    """In-memory ModelEngine recording every call it receives."""

    def __init__(
        self,
        text: str = TestConstants.GENERATED_ARTICLE,
        embeddings: dict[str, list[float]] | None = None,
    ) -> None:
        self.text = text
        self.embeddings = embeddings or {}
        self.generation_error: GenerationError | None = None
        self.fail_embeddings = False
        self.failing_chunks: set[str] = set()
        self.fail_all_synthesis = False
        self.no_system_prompt_models: set[str] = set()
        self.generate_calls: list[dict] = []
        self.synthesize_calls: list[tuple[str, str | None]] = []
        self.embed_calls: list[str] = []
        self._mock_embeddings = MockEmbeddingService()

    async def generate_text(self, prompt, model, max_tokens, system_prompt=None):
        self.generate_calls.append({
            "prompt": prompt,
            "model": model,
            "max_tokens": max_tokens,
            "system_prompt": system_prompt,
        })
        if self.generation_error is not None:
            raise self.generation_error
        return self.text

    async def synthesize(self, text, voice=None):
        self.synthesize_calls.append((text, voice))
        if self.fail_all_synthesis or text in self.failing_chunks:
            msg = f"TTS failed for: {text[:20]}"
            raise SynthesisError(msg)
        return f"audio:{text}".encode()

    async def embed(self, text):
        self.embed_calls.append(text)
        if self.fail_embeddings:
            msg = "Embedding model unavailable"
            raise EmbeddingError(msg)
        if text in self.embeddings:
            return np.asarray(self.embeddings[text], dtype=np.float64)
        return self._mock_embeddings.get_embedding(text)

    def supports_system_prompt(self, model):
        return model not in self.no_system_prompt_models


class FakeSource:
    """Passage source returning canned passages or raising."""

    def __init__(
        self,
        name: str,
        passages: list[str] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.name = name
        self.passages = passages or []
        self.error = error
        self.calls: list[tuple[str, int]] = []

    async def search(self, query: str, limit: int) -> list[str]:
        self.calls.append((query, limit))
        if self.error is not None:
            raise self.error
        return list(self.passages[:limit])


class FakeTopics:
    def __init__(self, topic: str = "Octopus") -> None:
        self.topic = topic
        self.calls = 0

    async def get_random_topic(self) -> str:
        self.calls += 1
        return self.topic


class FakeAudioOutput:
    """AudioOutput recording transport commands."""

    def __init__(self) -> None:
        self.events: list[tuple] = []
        self.loaded: list[int] = []

    def load(self, segment: AudioSegment) -> None:
        self.loaded.append(segment.index)
        self.events.append(("load", segment.index))

    def play(self) -> None:
        self.events.append(("play",))

    def pause(self) -> None:
        self.events.append(("pause",))

    def stop(self) -> None:
        self.events.append(("stop",))


class ScriptedPipeline:
    """Audio pipeline stand-in whose segments are fed by the test."""

    def __init__(self) -> None:
        self._items: asyncio.Queue = asyncio.Queue()
        self.calls: list[tuple[str, str | None]] = []
        self.closed = False

    def feed(self, item: AudioSegment | Exception) -> None:
        self._items.put_nowait(item)

    def finish(self) -> None:
        self._items.put_nowait(None)

    async def synthesize(self, text, voice=None):
        self.calls.append((text, voice))
        try:
            while True:
                item = await self._items.get()
                if item is None:
                    return
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            self.closed = True


def make_segments(count: int) -> list[AudioSegment]:
    return [
        AudioSegment(index=i, text=f"Chunk {i}.", audio=f"audio-{i}".encode())
        for i in range(count)
    ]


async def settle(rounds: int = 5) -> None:
    """Let pending tasks run until they block again."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def create_mock_openai_response(embeddings: list[list[float]]) -> Mock:
    """Create a mock OpenAI embeddings API response.

    Args:
        embeddings: List of embedding vectors to return.

    Returns:
        Mock object representing OpenAI embeddings API response.
    """
    mock_response = Mock()
    mock_response.data = [Mock(embedding=emb) for emb in embeddings]
    return mock_response


def create_mock_chat_response(content: str | None) -> Mock:
    """Create a mock OpenAI chat completion response.

    Args:
        content: The content for the chat completion response.

    Returns:
        Mock object representing OpenAI chat completion response.
    """
    mock_response = Mock()
    mock_response.choices = [Mock(message=Mock(content=content))]
    return mock_response


def mock_http_client(handler) -> httpx.AsyncClient:
    """AsyncClient whose requests are answered by ``handler``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def fake_topics():
    return FakeTopics()


@pytest.fixture
def fake_output():
    return FakeAudioOutput()


@pytest.fixture
def scripted_pipeline():
    return ScriptedPipeline()


@pytest.fixture
def octopus_sources():
    return [
        FakeSource("europe_pmc", ["Octopuses have decentralized nervous systems."]),
        FakeSource("wikipedia", []),
    ]


@pytest.fixture
def retriever_factory():
    """Factory for ContextRetriever instances over fake sources."""

    def _create_retriever(sources, results_per_source: int = 2) -> ContextRetriever:
        return ContextRetriever(sources=sources, results_per_source=results_per_source)

    return _create_retriever


@pytest.fixture
def embedding_service_factory():
    """Factory for creating EmbeddingService instances with different configurations."""

    def _create_service(api_key=None, model=None):  # noqa: ANN202
        api_key = api_key or TestConstants.TEST_API_KEY

        if model is not None:
            return EmbeddingService(api_key=api_key, model=model)
        return EmbeddingService(api_key=api_key)

    return _create_service


@pytest.fixture
def embedding_service(embedding_service_factory):
    """Default EmbeddingService with test API key for most tests."""
    return embedding_service_factory()


@pytest.fixture
def openai_engine():
    """OpenAIEngine with a test key; API calls must be patched per test."""
    return OpenAIEngine(api_key=TestConstants.TEST_API_KEY)
