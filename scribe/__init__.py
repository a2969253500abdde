"""Scribe - research-grounded article generation and streamed narration."""

from .audio import AudioPipeline
from .chunking import TextChunker, chunk_text
from .embeddings import EmbeddingService
from .engine import EngineWorker, ModelEngine, OpenAIEngine
from .exceptions import (
    EmbeddingError,
    EngineClosedError,
    GenerationError,
    PlaybackError,
    PublishError,
    ScribeError,
    SynthesisError,
    TemplateError,
)
from .models import (
    Article,
    AudioSegment,
    GeneratedArticle,
    GenerationRequest,
    GenerationStage,
    PlaybackState,
    PromptTemplate,
    ScoredPassage,
)
from .pipeline import ArticlePipeline, ArticleService
from .playback import AudioOutput, PlaybackCoordinator
from .prompts import PromptTemplateStore
from .publishing import HttpArticleStore
from .reranking import RelevanceReranker, cosine_similarity
from .retrieval import ContextRetriever
from .sources import EuropePMCSource, RandomTopicSource, WikipediaSource

__all__ = [
    "Article",
    "ArticlePipeline",
    "ArticleService",
    "AudioOutput",
    "AudioPipeline",
    "AudioSegment",
    "ContextRetriever",
    "EmbeddingError",
    "EmbeddingService",
    "EngineClosedError",
    "EngineWorker",
    "EuropePMCSource",
    "GeneratedArticle",
    "GenerationError",
    "GenerationRequest",
    "GenerationStage",
    "HttpArticleStore",
    "ModelEngine",
    "OpenAIEngine",
    "PlaybackCoordinator",
    "PlaybackError",
    "PlaybackState",
    "PromptTemplate",
    "PromptTemplateStore",
    "PublishError",
    "RandomTopicSource",
    "RelevanceReranker",
    "ScoredPassage",
    "ScribeError",
    "SynthesisError",
    "TemplateError",
    "TextChunker",
    "WikipediaSource",
    "chunk_text",
    "cosine_similarity",
]
