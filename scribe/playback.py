"""Gapless playback of narration segments while they are still being synthesized.

The coordinator has two event sources: the producer appending segments as the
audio pipeline yields them, and the output device reporting that the current
segment finished. Every transition is a plain synchronous method, so under
asyncio each one runs to completion before the other source is serviced.
"""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from typing import Protocol

from .audio import AudioPipeline
from .config import config
from .exceptions import PlaybackError
from .models import AudioSegment, PlaybackState

logger = config.get_logger(__name__)

EMPTY_CONTENT = "Content is empty"
GENERATION_FAILED = "Failed to generate audio."


class AudioOutput(Protocol):
    """Audio device driven by the coordinator.

    The device calls ``PlaybackCoordinator.on_segment_finished`` when the
    loaded segment has played to the end.
    """

    def load(self, segment: AudioSegment) -> None: ...

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def stop(self) -> None: ...


class PlaybackCoordinator:
    """Owns the segment queue and cursor of one narration session."""

    def __init__(
        self,
        pipeline: AudioPipeline,
        output: AudioOutput,
        voice: str | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.output = output
        self._voice = voice
        self._state = PlaybackState.IDLE
        self._queue: list[AudioSegment] = []
        self._cursor = 0
        self._session = 0
        self._generating = False
        self._exhausted = False
        self._awaiting_next = False
        self._error: str | None = None
        self._producer: asyncio.Task | None = None

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def queue(self) -> tuple[AudioSegment, ...]:
        return tuple(self._queue)

    @property
    def voice(self) -> str | None:
        return self._voice

    @property
    def is_generating(self) -> bool:
        return self._generating

    @property
    def error(self) -> str | None:
        """Message of the last failure, cleared when a new session starts."""
        return self._error

    @property
    def is_playing(self) -> bool:
        return self._state is PlaybackState.PLAYING

    async def play(self, text: str) -> None:
        """Play narration for text, generating it first if nothing is cached.

        Returns once production for the session has finished; playback itself
        continues to be driven by ``on_segment_finished``.

        Raises:
            PlaybackError: If the text is empty or synthesis failed entirely.
        """
        if self._generating or self._queue:
            self.resume()
            return

        if not text or not text.strip():
            self._fail(EMPTY_CONTENT)
            raise PlaybackError(EMPTY_CONTENT)

        session = self._begin_session()
        logger.info("Starting stream generation (session %d)", session)
        producer = asyncio.create_task(self._produce(text, session, self._voice))
        self._producer = producer
        try:
            await asyncio.wait({producer})
        except asyncio.CancelledError:
            producer.cancel()
            raise
        finally:
            if session == self._session:
                self._generating = False
                self._producer = None

        if producer.cancelled() or session != self._session:
            return
        error = producer.exception()
        if error is not None:
            logger.error("TTS error", exc_info=error)
            self._fail(GENERATION_FAILED)
            raise PlaybackError(GENERATION_FAILED) from error
        if not self._queue:
            self._fail(EMPTY_CONTENT)
            raise PlaybackError(EMPTY_CONTENT)
        self._on_production_complete()

    async def toggle(self, text: str) -> None:
        """Pause if playing, otherwise play (generating if needed)."""
        if self._state in {PlaybackState.PLAYING, PlaybackState.GENERATING}:
            self.pause()
        else:
            await self.play(text)

    def pause(self) -> None:
        if self._state not in {PlaybackState.PLAYING, PlaybackState.GENERATING}:
            return
        self.output.pause()
        self._state = PlaybackState.PAUSED

    def resume(self) -> None:
        """Resume playback, or replay from the start after it finished."""
        if self._state is PlaybackState.PLAYING:
            return
        if not self._queue:
            if self._generating:
                self._state = PlaybackState.GENERATING
            return

        if self._state is PlaybackState.FINISHED:
            self._play_at(0)
        elif self._awaiting_next:
            if self._cursor + 1 < len(self._queue):
                self._play_at(self._cursor + 1)
            else:
                self._state = PlaybackState.PLAYING
        else:
            self.output.play()
            self._state = PlaybackState.PLAYING

    def on_segment_finished(self) -> None:
        """Advance to the next segment, wait for one, or finish the session."""
        if self._state is not PlaybackState.PLAYING or self._awaiting_next:
            return

        next_index = self._cursor + 1
        if next_index < len(self._queue):
            logger.debug("Playing chunk %d/%d", next_index + 1, len(self._queue))
            self._play_at(next_index)
        elif self._exhausted:
            self._finish()
        else:
            logger.debug("Playback caught up with generation; waiting")
            self._awaiting_next = True

    def change_voice(self, voice: str | None) -> None:
        """Switch voice; cached audio belongs to the old voice and is dropped."""
        if voice == self._voice:
            return
        self._voice = voice
        self.close()

    def close(self) -> None:
        """Abandon the current session and release its segments.

        A producer still running for the session is cancelled, so no further
        synthesis is requested for it.
        """
        self._session += 1
        self._stop_producer()
        self._release()
        self._generating = False
        self._exhausted = False
        self._error = None
        self._state = PlaybackState.IDLE

    async def _produce(self, text: str, session: int, voice: str | None) -> None:
        async with aclosing(self.pipeline.synthesize(text, voice=voice)) as segments:
            async for segment in segments:
                if session != self._session:
                    logger.info("Dropping segment of stale session %d", session)
                    return
                self._on_segment_arrived(segment)

    def _stop_producer(self) -> None:
        if self._producer is not None:
            self._producer.cancel()
            self._producer = None

    def _begin_session(self) -> int:
        self._session += 1
        self._stop_producer()
        self._release()
        self._generating = True
        self._exhausted = False
        self._error = None
        self._state = PlaybackState.GENERATING
        return self._session

    def _release(self) -> None:
        self.output.stop()
        self._queue.clear()
        self._cursor = 0
        self._awaiting_next = False

    def _on_segment_arrived(self, segment: AudioSegment) -> None:
        self._queue.append(segment)
        index = len(self._queue) - 1

        if index == 0:
            if self._state is PlaybackState.GENERATING:
                logger.info("First chunk received, starting playback")
                self._play_at(0)
            else:
                self.output.load(segment)
        elif (
            self._awaiting_next
            and self._state is PlaybackState.PLAYING
            and index == self._cursor + 1
        ):
            self._play_at(index)

    def _on_production_complete(self) -> None:
        self._exhausted = True
        logger.info("Stream generation complete: %d segments", len(self._queue))
        if self._awaiting_next:
            self._finish()

    def _play_at(self, index: int) -> None:
        self._cursor = index
        self._awaiting_next = False
        self.output.load(self._queue[index])
        self.output.play()
        self._state = PlaybackState.PLAYING

    def _finish(self) -> None:
        logger.info("All chunks finished")
        self._cursor = 0
        self._awaiting_next = False
        self._state = PlaybackState.FINISHED
        if self._queue:
            self.output.load(self._queue[0])

    def _fail(self, message: str) -> None:
        self._release()
        self._generating = False
        self._exhausted = False
        self._error = message
        self._state = PlaybackState.ERROR
