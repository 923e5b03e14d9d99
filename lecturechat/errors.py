"""Exception hierarchy shared by the pipeline, the answer engine and the API.

Every error carries a machine-readable ``code`` and the HTTP status the API
layer should answer with, so route handlers never have to guess.
"""

from __future__ import annotations

import openai


class LectureChatError(Exception):
    """Base exception for LectureChat."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# --- Client errors ---


class ValidationError(LectureChatError):
    """Input rejected before any work or state change happens."""

    code = "VALIDATION_ERROR"
    status_code = 400


class UnsupportedMediaError(ValidationError):
    """The input has no decodable audio stream or an unsupported type."""

    code = "UNSUPPORTED_MEDIA"
    status_code = 415


class PayloadTooLargeError(ValidationError):
    """The input exceeds what the speech-to-text service accepts."""

    code = "PAYLOAD_TOO_LARGE"
    status_code = 413


class NotFoundError(LectureChatError):
    """A requested recording, transcript or exchange does not exist."""

    code = "NOT_FOUND"
    status_code = 404


class ConflictError(LectureChatError):
    """The request conflicts with the recording's current state."""

    code = "CONFLICT"
    status_code = 409


# --- External service errors ---


class TransientServiceError(LectureChatError):
    """A retryable failure: rate limiting, timeouts, network blips, 5xx."""

    code = "SERVICE_UNAVAILABLE"
    status_code = 503


class RateLimitedError(TransientServiceError):
    """The external service asked us to slow down."""

    code = "RATE_LIMITED"
    status_code = 429


class ServiceError(LectureChatError):
    """A permanent failure reported by an external service."""

    code = "SERVICE_ERROR"
    status_code = 502


class TranscriptionError(ServiceError):
    code = "TRANSCRIPTION_FAILED"


class EmbeddingError(ServiceError):
    code = "EMBEDDING_FAILED"


class VectorIndexError(ServiceError):
    code = "VECTOR_INDEX_FAILED"


class GenerationError(ServiceError):
    code = "GENERATION_FAILED"


class StageFailure(LectureChatError):
    """A pipeline stage failed; the recording has been marked failed."""

    code = "STAGE_FAILED"
    status_code = 500

    def __init__(self, stage: str, message: str):
        self.stage = stage
        super().__init__(message)


def from_openai_error(
    exc: openai.OpenAIError,
    permanent: type[ServiceError] = ServiceError,
) -> LectureChatError:
    """Translate an OpenAI SDK error into our hierarchy.

    Rate limits, connection problems and 5xx responses become transient;
    everything else becomes *permanent* (e.g. :class:`EmbeddingError`).
    """
    if isinstance(exc, openai.RateLimitError):
        return RateLimitedError(f"OpenAI rate limit: {exc}")
    if isinstance(exc, (openai.APIConnectionError, openai.InternalServerError)):
        return TransientServiceError(f"OpenAI unavailable: {exc}")
    if isinstance(exc, openai.APIStatusError) and exc.status_code >= 500:
        return TransientServiceError(f"OpenAI error {exc.status_code}: {exc}")
    return permanent(f"OpenAI API error: {exc}")
