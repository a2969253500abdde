"""Tests for the OpenAI engine and the request-multiplexing worker."""

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import httpx
import numpy as np
import openai
import pytest
from conftest import (
    FakeEngine,
    TestConstants,
    create_mock_chat_response,
    create_mock_openai_response,
    settle,
)

from scribe import (
    EmbeddingError,
    EngineClosedError,
    EngineWorker,
    GenerationError,
    OpenAIEngine,
    SynthesisError,
)
from scribe.config import config

MODEL = TestConstants.TEST_CHAT_MODEL
OPENAI_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def status_error(cls, status: int):
    response = httpx.Response(status, request=OPENAI_REQUEST)
    return cls("request failed", response=response, body=None)


def mock_chat_api(engine: OpenAIEngine, **kwargs):
    return patch.object(
        engine.client.chat.completions, "create", new_callable=AsyncMock, **kwargs
    )


def mock_speech_api(engine: OpenAIEngine, **kwargs):
    return patch.object(
        engine.client.audio.speech, "create", new_callable=AsyncMock, **kwargs
    )


class TestOpenAIEngine:
    @pytest.mark.asyncio
    async def test_generate_text_success(self, openai_engine):
        response = create_mock_chat_response("  # Title\n\nBody  ")

        with mock_chat_api(openai_engine, return_value=response) as mock_api:
            text = await openai_engine.generate_text(
                "Write about octopuses", MODEL, 2000, system_prompt="Be accurate."
            )

        assert text == "# Title\n\nBody"
        mock_api.assert_awaited_once_with(
            model=MODEL,
            messages=[
                {"role": "system", "content": "Be accurate."},
                {"role": "user", "content": "Write about octopuses"},
            ],
            max_tokens=2000,
            temperature=config.CHAT_TEMPERATURE,
        )

    @pytest.mark.asyncio
    async def test_generate_text_without_system_prompt(self, openai_engine):
        response = create_mock_chat_response("Body")

        with mock_chat_api(openai_engine, return_value=response) as mock_api:
            await openai_engine.generate_text("prompt", MODEL, 100)

        messages = mock_api.await_args.kwargs["messages"]
        assert messages == [{"role": "user", "content": "prompt"}]

    @pytest.mark.asyncio
    async def test_unsupported_model_is_rejected(self, openai_engine):
        with (
            mock_chat_api(openai_engine) as mock_api,
            pytest.raises(GenerationError, match="Unsupported model: gpt-2"),
        ):
            await openai_engine.generate_text("prompt", "gpt-2", 100)

        mock_api.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_api_key(self, openai_engine):
        openai_engine.api_key = ""

        with pytest.raises(GenerationError, match="OPENAI_API_KEY"):
            await openai_engine.generate_text("prompt", MODEL, 100)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("error", "message"),
        [
            (status_error(openai.AuthenticationError, 401), "Invalid OpenAI API key"),
            (openai.APIConnectionError(request=OPENAI_REQUEST), "Could not reach"),
            (status_error(openai.NotFoundError, 404), "is not available"),
            (status_error(openai.RateLimitError, 429), "Failed to generate text"),
        ],
    )
    async def test_api_errors_become_generation_errors(
        self, openai_engine, error, message
    ):
        with (
            mock_chat_api(openai_engine, side_effect=error),
            pytest.raises(GenerationError, match=message) as exc_info,
        ):
            await openai_engine.generate_text("prompt", MODEL, 100)

        assert exc_info.value.__cause__ is error

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", [None, "", "   "])
    async def test_empty_completion(self, openai_engine, content):
        response = create_mock_chat_response(content)

        with (
            mock_chat_api(openai_engine, return_value=response),
            pytest.raises(GenerationError, match="empty response"),
        ):
            await openai_engine.generate_text("prompt", MODEL, 100)

    @pytest.mark.asyncio
    async def test_synthesize_success(self, openai_engine):
        with mock_speech_api(
            openai_engine, return_value=Mock(content=b"RIFF-audio")
        ) as mock_api:
            audio = await openai_engine.synthesize("Hello there.", voice="nova")

        assert audio == b"RIFF-audio"
        mock_api.assert_awaited_once_with(
            model=openai_engine.tts_model,
            voice="nova",
            input="Hello there.",
            response_format=openai_engine.tts_format,
        )

    @pytest.mark.asyncio
    async def test_synthesize_uses_default_voice(self, openai_engine):
        with mock_speech_api(
            openai_engine, return_value=Mock(content=b"audio")
        ) as mock_api:
            await openai_engine.synthesize("Hello.")

        assert mock_api.await_args.kwargs["voice"] == config.TTS_VOICE

    @pytest.mark.asyncio
    async def test_synthesize_rejects_empty_audio(self, openai_engine):
        with (
            mock_speech_api(openai_engine, return_value=Mock(content=b"")),
            pytest.raises(SynthesisError, match="no audio"),
        ):
            await openai_engine.synthesize("Hello.")

    @pytest.mark.asyncio
    async def test_synthesize_api_error(self, openai_engine):
        error = openai.APIConnectionError(request=OPENAI_REQUEST)

        with (
            mock_speech_api(openai_engine, side_effect=error),
            pytest.raises(SynthesisError),
        ):
            await openai_engine.synthesize("Hello.")

    @pytest.mark.asyncio
    async def test_embed_uses_shared_client(self, openai_engine):
        assert openai_engine.embedding_service.client is openai_engine.client
        response = create_mock_openai_response([[1.0, 0.0]])

        with patch.object(
            openai_engine.client.embeddings,
            "create",
            new_callable=AsyncMock,
            return_value=response,
        ):
            embedding = await openai_engine.embed("octopus")

        np.testing.assert_array_equal(embedding, np.array([1.0, 0.0]))

    def test_supports_system_prompt(self, openai_engine):
        with patch.object(config, "NO_SYSTEM_PROMPT_MODELS", ("o1-mini",)):
            assert openai_engine.supports_system_prompt(MODEL)
            assert not openai_engine.supports_system_prompt("o1-mini")

    @pytest.mark.parametrize(
        ("tts_format", "media_type"),
        [("wav", "audio/wav"), ("mp3", "audio/mpeg"), ("weird", None)],
    )
    def test_media_type(self, tts_format, media_type):
        engine = OpenAIEngine(api_key=TestConstants.TEST_API_KEY, tts_format=tts_format)
        assert engine.media_type == (media_type or "application/octet-stream")


class GatedEngine(FakeEngine):
    """FakeEngine whose synthesis blocks until released, tracking concurrency."""

    def __init__(self) -> None:
        super().__init__()
        self.release = asyncio.Event()
        self.in_flight = 0
        self.max_in_flight = 0

    async def synthesize(self, text, voice=None):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await self.release.wait()
            return await super().synthesize(text, voice)
        finally:
            self.in_flight -= 1


class TestEngineWorker:
    @pytest.mark.asyncio
    async def test_requests_resolve_to_their_callers(self):
        engine = GatedEngine()
        async with EngineWorker(engine) as worker:
            tasks = [
                asyncio.create_task(worker.synthesize(f"chunk {i}", voice="alloy"))
                for i in range(3)
            ]
            await settle()
            assert worker.pending_count == 3

            engine.release.set()
            results = await asyncio.gather(*tasks)

        assert results == [b"audio:chunk 0", b"audio:chunk 1", b"audio:chunk 2"]
        assert engine.max_in_flight == 1
        assert worker.pending_count == 0

    @pytest.mark.asyncio
    async def test_progress_events(self):
        events = []
        async with EngineWorker(FakeEngine()) as worker:
            await worker.request("embed", "octopus", on_progress=events.append)

        assert [event["status"] for event in events] == ["queued", "running", "done"]
        assert len({event["id"] for event in events}) == 1

    @pytest.mark.asyncio
    async def test_failing_progress_callback_is_ignored(self):
        def explode(_event):
            raise RuntimeError("callback bug")

        async with EngineWorker(FakeEngine()) as worker:
            audio = await worker.request("synthesize", "Hi.", on_progress=explode)

        assert audio == b"audio:Hi."

    @pytest.mark.asyncio
    async def test_errors_propagate_to_the_caller_only(self):
        engine = FakeEngine()
        engine.fail_embeddings = True

        async with EngineWorker(engine) as worker:
            with pytest.raises(EmbeddingError):
                await worker.embed("octopus")
            assert await worker.synthesize("Still alive.") == b"audio:Still alive."
            assert worker.running

    @pytest.mark.asyncio
    async def test_delegates_model_engine_interface(self):
        engine = FakeEngine(text="Generated")
        engine.no_system_prompt_models = {"o1-mini"}

        async with EngineWorker(engine) as worker:
            text = await worker.generate_text("p", MODEL, 10, system_prompt="s")

            assert text == "Generated"
            assert engine.generate_calls[0]["system_prompt"] == "s"
            assert not worker.supports_system_prompt("o1-mini")
            assert worker.media_type == "audio/wav"

    @pytest.mark.asyncio
    async def test_stop_rejects_outstanding_requests(self):
        engine = GatedEngine()
        worker = EngineWorker(engine)
        worker.start()
        first = asyncio.create_task(worker.synthesize("one"))
        second = asyncio.create_task(worker.synthesize("two"))
        await settle()

        await worker.stop()

        assert not worker.running
        for task in (first, second):
            with pytest.raises(EngineClosedError):
                await task

    @pytest.mark.asyncio
    async def test_cancelled_caller_is_skipped(self):
        engine = GatedEngine()
        async with EngineWorker(engine) as worker:
            first = asyncio.create_task(worker.synthesize("first"))
            second = asyncio.create_task(worker.synthesize("second"))
            await settle()
            second.cancel()
            await settle()

            engine.release.set()
            assert await first == b"audio:first"
            await settle()

        assert engine.synthesize_calls == [("first", None)]

    @pytest.mark.asyncio
    async def test_cancelled_operation_keeps_worker_alive(self):
        class CancellingEngine(FakeEngine):
            async def embed(self, text):
                raise asyncio.CancelledError()

        async with EngineWorker(CancellingEngine()) as worker:
            with pytest.raises(asyncio.CancelledError):
                await worker.embed("octopus")

            assert worker.running
            assert await worker.synthesize("ok") == b"audio:ok"
            assert worker.pending_count == 0

    @pytest.mark.asyncio
    async def test_request_starts_worker_lazily(self):
        worker = EngineWorker(FakeEngine())
        assert not worker.running

        await worker.embed("octopus")

        assert worker.running
        await worker.stop()
