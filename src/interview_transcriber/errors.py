from __future__ import annotations


class TranscriberError(RuntimeError):
    """Base class of every error raised by interview-transcriber."""


class ConfigurationError(TranscriberError):
    """Raised when the process cannot start with the current configuration."""


class InvalidInputError(TranscriberError):
    """Raised when user input cannot be processed (bad URL, non-media file)."""


class ExternalServiceError(TranscriberError):
    """Raised when an external API or tool returns an unusable result."""


class MetadataError(ExternalServiceError):
    """Raised when file metadata misses required fields."""


class ManifestError(ExternalServiceError):
    """Raised when a segment manifest written by ffmpeg cannot be parsed."""


class EmptyResponseError(ExternalServiceError):
    """Raised when a speech-to-text or text-generation call returns nothing."""


class OversizedChunkError(TranscriberError):
    """Raised when a single line exceeds the token budget and cannot be split."""

    def __init__(self, tokens: int, limit: int) -> None:
        super().__init__(f"A single line has {tokens} tokens, above the limit of {limit}.")
        self.tokens = tokens
        self.limit = limit


class StageError(TranscriberError):
    """Wraps a failure inside the transcription pipeline with the stage it happened in."""

    def __init__(self, stage: object, cause: BaseException) -> None:
        message = str(cause).strip() or type(cause).__name__
        super().__init__(message)
        self.stage = stage
        self.cause = cause
