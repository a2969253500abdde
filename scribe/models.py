"""Data models for article generation and narration."""

from dataclasses import dataclass
from enum import Enum

from .config import config


class GenerationStage(str, Enum):
    """Progress stages reported while generating an article."""

    INIT = "INIT"
    PROCESSING_CONTEXT = "PROCESSING_CONTEXT"
    GENERATING = "GENERATING"


class PlaybackState(str, Enum):
    """States of a narration playback session."""

    IDLE = "idle"
    GENERATING = "generating"
    PLAYING = "playing"
    PAUSED = "paused"
    FINISHED = "finished"
    ERROR = "error"


@dataclass
class ScoredPassage:
    """A retrieved passage with its cosine similarity to the query."""

    text: str
    score: float


@dataclass
class GenerationRequest:
    """Caller input for article generation. An empty title means pick a topic."""

    title: str = ""
    context: str = ""
    model: str = config.CHAT_MODEL


@dataclass
class GeneratedArticle:
    title: str
    content: str


@dataclass
class Article:
    """An article as stored by the article backend."""

    id: int
    title: str
    content: str
    created_at: str


@dataclass
class PromptTemplate:
    user_template: str
    system: str | None = None


@dataclass
class AudioSegment:
    """Synthesized audio for one text chunk."""

    index: int
    text: str
    audio: bytes
    media_type: str = "audio/wav"
