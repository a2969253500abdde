"""Article generation: retrieve, rerank, prompt, generate."""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import Protocol

from .config import config
from .engine import ModelEngine
from .exceptions import TemplateError
from .models import (
    Article,
    GeneratedArticle,
    GenerationRequest,
    GenerationStage,
    PromptTemplate,
)
from .prompts import BLOG_GENERATION, PromptTemplateStore
from .publishing import ArticleStore
from .reranking import RelevanceReranker
from .retrieval import ContextRetriever
from .sources import RandomTopicSource

logger = config.get_logger(__name__)

ProgressCallback = Callable[[GenerationStage, str | list[str] | None], None]

UNTITLED = "Untitled Article"
MAX_TITLE_LINE_LENGTH = 100
RESEARCH_HEADING = "Relevant Research:"

_HEADING_MARKER_RE = re.compile(r"^#{1,6}\s*")


class TopicSource(Protocol):
    async def get_random_topic(self) -> str: ...


class ArticlePipeline:
    """Generates an article grounded in retrieved research."""

    def __init__(  # noqa: PLR0913,PLR0917
        self,
        engine: ModelEngine,
        retriever: ContextRetriever | None = None,
        reranker: RelevanceReranker | None = None,
        templates: PromptTemplateStore | None = None,
        topics: TopicSource | None = None,
        top_k: int | None = None,
        max_tokens: int | None = None,
    ) -> None:
        """Initialize the pipeline around a shared engine handle.

        Args:
            engine: Model engine used for generation and embeddings.
            retriever: Context retriever. If None, queries the default sources.
            reranker: Re-ranker. If None, one is built on ``engine``.
            templates: Prompt template store. If None, uses the bundled file.
            topics: Random topic source used when no title is given.
            top_k: Passages injected into the prompt. If None, uses
                config.CONTEXT_TOP_K.
            max_tokens: Generation budget. If None, uses
                config.GENERATION_MAX_TOKENS.
        """
        self.engine = engine
        self.retriever = retriever or ContextRetriever()
        self.reranker = reranker or RelevanceReranker(engine)
        self.templates = templates or PromptTemplateStore()
        self.topics = topics or RandomTopicSource()
        self.top_k = top_k if top_k is not None else config.CONTEXT_TOP_K
        self.max_tokens = (
            max_tokens if max_tokens is not None else config.GENERATION_MAX_TOKENS
        )

    async def generate_article(
        self,
        request: GenerationRequest,
        on_progress: ProgressCallback | None = None,
    ) -> GeneratedArticle:
        """Generate an article for the request.

        Returns:
            The generated title and content.

        Raises:
            GenerationError: If the model backend cannot generate text.
        """
        title = request.title.strip()
        context = request.context.strip()

        working_title = title
        if not working_title:
            _report(on_progress, GenerationStage.INIT, "Picking a random topic")
            working_title = await self.topics.get_random_topic()
            logger.info("No title given; using random topic %r", working_title)

        query = "\n".join(part for part in (working_title, context) if part)

        top_passages = await self.research(query)
        _report(on_progress, GenerationStage.PROCESSING_CONTEXT, top_passages)
        background = "\n\n".join(top_passages)

        template = self._load_template()
        prompt = build_prompt(query, background, template)
        system_prompt = None
        if template is not None and template.system:
            if self.engine.supports_system_prompt(request.model):
                system_prompt = template.system
            else:
                logger.info("Model %s takes no system prompt; skipping", request.model)

        _report(on_progress, GenerationStage.GENERATING, request.model)
        text = await self.engine.generate_text(
            prompt, request.model, self.max_tokens, system_prompt=system_prompt
        )

        if title:
            return GeneratedArticle(title=title, content=text)
        return split_title(text)

    async def research(self, query: str) -> list[str]:
        """Retrieve and re-rank background passages for a query.

        Returns:
            Up to ``top_k`` passages, most relevant first. Empty on failure.
        """
        try:
            passages = await self.retriever.retrieve(query)
            ranked = await self.reranker.rerank(query, passages)
        except Exception:  # noqa: BLE001
            logger.warning(
                "RAG retrieval failed; continuing without research", exc_info=True
            )
            return []

        top_passages = ranked[: self.top_k]
        logger.info(
            "RAG retrieved context length: %d", sum(len(p) for p in top_passages)
        )
        return top_passages

    def _load_template(self) -> PromptTemplate | None:
        try:
            return self.templates.get_template(BLOG_GENERATION)
        except TemplateError:
            logger.warning("Failed to fetch templates; using default prompt")
            return None


class ArticleService:
    """Generates an article and hands it to the article backend."""

    def __init__(self, pipeline: ArticlePipeline, store: ArticleStore) -> None:
        self.pipeline = pipeline
        self.store = store

    async def generate_new_article(
        self,
        request: GenerationRequest,
        on_progress: ProgressCallback | None = None,
    ) -> Article:
        article = await self.pipeline.generate_article(request, on_progress)
        return await self.store.create(article.title, article.content)


def build_prompt(
    query: str, background: str, template: PromptTemplate | None = None
) -> str:
    """Assemble the generation prompt from a template and background research.

    Returns:
        The complete user prompt.
    """
    research = f"\n\n{RESEARCH_HEADING}\n{background}" if background else ""
    if template is not None:
        return template.user_template.replace("{topic}", query) + research
    return (
        f"Write a blog post about {query}.{research}"
        "\n\nInclude a catchy title and clear headings."
    )


def split_title(text: str) -> GeneratedArticle:
    """Take the first line of generated text as the title when it looks like one.

    Returns:
        The article with an extracted title, or the whole text under
        ``UNTITLED`` when the first line is too long to be a title.
    """
    lines = text.strip().splitlines()
    if not lines or len(lines[0]) >= MAX_TITLE_LINE_LENGTH:
        return GeneratedArticle(title=UNTITLED, content=text)

    title = _HEADING_MARKER_RE.sub("", lines[0]).strip().strip("*").strip()
    content = "\n".join(lines[1:]).strip()
    if not title:
        return GeneratedArticle(title=UNTITLED, content=text)
    return GeneratedArticle(title=title, content=content)


def _report(
    on_progress: ProgressCallback | None,
    stage: GenerationStage,
    payload: str | list[str] | None = None,
) -> None:
    if on_progress is None:
        return
    try:
        on_progress(stage, payload)
    except Exception:
        logger.exception("Progress callback failed at stage %s", stage.value)
