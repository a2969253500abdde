"""Model engine handle shared by the generation and narration pipelines.

``OpenAIEngine`` talks to the OpenAI API. ``EngineWorker`` wraps any engine
and funnels its requests through a single worker task, matching each response
to its caller by correlation id.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

import numpy as np
import openai
from openai import AsyncOpenAI

from .config import config
from .embeddings import EmbeddingService
from .exceptions import EngineClosedError, GenerationError, SynthesisError

logger = config.get_logger(__name__)

ProgressCallback = Callable[[dict[str, Any]], None]

MEDIA_TYPES = {
    "wav": "audio/wav",
    "mp3": "audio/mpeg",
    "opus": "audio/ogg",
    "aac": "audio/aac",
    "flac": "audio/flac",
    "pcm": "audio/L16",
}


class ModelEngine(Protocol):
    """Capabilities the pipelines need from a model backend."""

    async def generate_text(
        self,
        prompt: str,
        model: str,
        max_tokens: int,
        system_prompt: str | None = None,
    ) -> str: ...

    async def synthesize(self, text: str, voice: str | None = None) -> bytes: ...

    async def embed(self, text: str) -> np.ndarray: ...

    def supports_system_prompt(self, model: str) -> bool: ...


class OpenAIEngine:
    """Text generation, speech synthesis and embeddings over one OpenAI client."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        models: tuple[str, ...] | None = None,
        tts_model: str | None = None,
        tts_format: str | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            api_key: OpenAI API key. If None, reads from OPENAI_API_KEY.
            models: Accepted text generation models. If None, uses
                config.CHAT_MODELS.
            tts_model: Speech model. If None, uses config.TTS_MODEL.
            tts_format: Audio container. If None, uses config.TTS_FORMAT.
        """
        self.api_key = api_key or config.get_openai_api_key()
        default_headers = config.get_api_headers()
        self.client = AsyncOpenAI(
            api_key=self.api_key,
            base_url=config.OPENAI_BASE_URL,
            max_retries=config.OPENAI_MAX_RETRIES,
            default_headers=default_headers or None,
        )
        self.embedding_service = EmbeddingService(client=self.client)
        self.models = models if models is not None else config.CHAT_MODELS
        self.tts_model = tts_model or config.TTS_MODEL
        self.tts_format = tts_format or config.TTS_FORMAT

    @property
    def media_type(self) -> str:
        return MEDIA_TYPES.get(self.tts_format, "application/octet-stream")

    def supports_system_prompt(self, model: str) -> bool:
        return model not in config.NO_SYSTEM_PROMPT_MODELS

    async def generate_text(
        self,
        prompt: str,
        model: str,
        max_tokens: int,
        system_prompt: str | None = None,
    ) -> str:
        """Generate text for a prompt.

        Returns:
            The stripped completion text.

        Raises:
            GenerationError: On missing credentials, an unsupported model, an
                unreachable backend or an empty completion.
        """
        if not self.api_key:
            msg = "OpenAI API key not found. Set OPENAI_API_KEY to generate articles."
            raise GenerationError(msg)
        if model not in self.models:
            msg = f"Unsupported model: {model}"
            raise GenerationError(msg)

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=config.CHAT_TEMPERATURE,
            )
        except openai.AuthenticationError as exc:
            logger.exception("Text generation rejected credentials")
            msg = "Invalid OpenAI API key. Check OPENAI_API_KEY."
            raise GenerationError(msg) from exc
        except openai.APIConnectionError as exc:
            logger.exception("Text generation backend unreachable")
            msg = "Could not reach the text generation service. Try again later."
            raise GenerationError(msg) from exc
        except openai.NotFoundError as exc:
            logger.exception("Model %s not available", model)
            msg = f"Model {model} is not available."
            raise GenerationError(msg) from exc
        except openai.OpenAIError as exc:
            logger.exception("Text generation failed")
            msg = f"Failed to generate text with {model}: {exc}"
            raise GenerationError(msg) from exc

        content = response.choices[0].message.content
        if not content or not content.strip():
            msg = f"Model {model} returned an empty response."
            raise GenerationError(msg)
        return content.strip()

    async def synthesize(self, text: str, voice: str | None = None) -> bytes:
        """Synthesize speech for one piece of text.

        Returns:
            Encoded audio bytes in ``tts_format``.

        Raises:
            SynthesisError: If the API call fails or returns no audio.
        """
        try:
            response = await self.client.audio.speech.create(
                model=self.tts_model,
                voice=voice or config.TTS_VOICE,
                input=text,
                response_format=self.tts_format,
            )
        except openai.OpenAIError as exc:
            logger.exception("Speech synthesis failed")
            msg = f"Speech synthesis failed: {exc}"
            raise SynthesisError(msg) from exc

        audio = response.content
        if not audio:
            msg = f"Speech synthesis produced no audio for: {text[:50]}..."
            raise SynthesisError(msg)
        return audio

    async def embed(self, text: str) -> np.ndarray:
        return await self.embedding_service.get_embedding(text)


@dataclass
class _PendingRequest:
    future: asyncio.Future
    on_progress: ProgressCallback | None = None


@dataclass
class _Request:
    request_id: int
    operation: str
    args: tuple = ()
    kwargs: dict[str, Any] = field(default_factory=dict)


class EngineWorker:
    """Request/response multiplexer in front of a shared engine.

    Callers enqueue requests and await a future; one worker task executes them
    in order, so the wrapped engine sees at most one request at a time.
    """

    def __init__(self, engine: ModelEngine) -> None:
        self.engine = engine
        self._queue: asyncio.Queue[_Request] = asyncio.Queue()
        self._pending: dict[int, _PendingRequest] = {}
        self._ids = itertools.count()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def media_type(self) -> str:
        return getattr(self.engine, "media_type", "audio/wav")

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        """Stop the worker and reject every outstanding request."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        for request_id, pending in list(self._pending.items()):
            if not pending.future.done():
                pending.future.set_exception(
                    EngineClosedError(f"Engine worker stopped (request {request_id})")
                )
        self._pending.clear()
        while not self._queue.empty():
            self._queue.get_nowait()

    async def __aenter__(self) -> EngineWorker:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def request(
        self,
        operation: str,
        *args: Any,
        on_progress: ProgressCallback | None = None,
        **kwargs: Any,
    ) -> Any:
        """Run ``engine.<operation>(*args, **kwargs)`` on the worker task.

        Returns:
            Whatever the engine operation returns.
        """
        self.start()
        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = _PendingRequest(future, on_progress)
        self._report(request_id, "queued")
        await self._queue.put(_Request(request_id, operation, args, kwargs))
        try:
            return await future
        finally:
            self._pending.pop(request_id, None)

    async def _run(self) -> None:
        while True:
            request = await self._queue.get()
            pending = self._pending.get(request.request_id)
            if pending is None or pending.future.done():
                # Caller went away before the request was dispatched.
                continue

            self._report(request.request_id, "running")
            try:
                operation = getattr(self.engine, request.operation)
                result = await operation(*request.args, **request.kwargs)
            except asyncio.CancelledError:
                current = asyncio.current_task()
                if current is not None and current.cancelling() > 0:
                    if not pending.future.done():
                        pending.future.set_exception(
                            EngineClosedError(
                                f"Engine worker stopped (request {request.request_id})"
                            )
                        )
                    raise
                # The operation cancelled itself; the worker keeps serving.
                logger.warning("Engine operation %s was cancelled", request.operation)
                pending.future.cancel()
            except Exception as exc:  # noqa: BLE001
                if not pending.future.done():
                    pending.future.set_exception(exc)
            else:
                if not pending.future.done():
                    pending.future.set_result(result)
            self._report(request.request_id, "done")

    def _report(self, request_id: int, status: str) -> None:
        pending = self._pending.get(request_id)
        if pending is None or pending.on_progress is None:
            return
        try:
            pending.on_progress({"id": request_id, "status": status})
        except Exception:
            logger.exception("Progress callback failed for request %d", request_id)

    # ModelEngine interface

    async def generate_text(
        self,
        prompt: str,
        model: str,
        max_tokens: int,
        system_prompt: str | None = None,
    ) -> str:
        return await self.request(
            "generate_text", prompt, model, max_tokens, system_prompt=system_prompt
        )

    async def synthesize(self, text: str, voice: str | None = None) -> bytes:
        return await self.request("synthesize", text, voice=voice)

    async def embed(self, text: str) -> np.ndarray:
        return await self.request("embed", text)

    def supports_system_prompt(self, model: str) -> bool:
        return self.engine.supports_system_prompt(model)
