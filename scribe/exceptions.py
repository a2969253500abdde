"""Exception hierarchy shared by the generation and narration pipelines."""


class ScribeError(Exception):
    """Base class for all Scribe errors."""


class GenerationError(ScribeError):
    """Text generation failed: bad credentials, unreachable backend or bad model."""


class SynthesisError(ScribeError):
    """Speech synthesis failed for a chunk, or for every chunk of a narration."""


class EmbeddingError(ScribeError):
    """An embedding request failed."""


class TemplateError(ScribeError):
    """Prompt templates could not be loaded."""


class PlaybackError(ScribeError):
    """Narration could not be played back."""


class PublishError(ScribeError):
    """The article backend could not store an article."""


class EngineClosedError(ScribeError):
    """A request was made to, or left pending on, a stopped engine worker."""
