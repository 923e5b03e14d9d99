"""Speech-to-text: OpenAI Whisper or AssemblyAI, behind one transcriber contract."""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
import openai
from openai import OpenAI

from lecturechat.errors import (
    LectureChatError,
    PayloadTooLargeError,
    TranscriptionError,
    TransientServiceError,
    UnsupportedMediaError,
    from_openai_error,
)
from lecturechat.ingestion.models import TranscriptionResult, TranscriptSegment
from lecturechat.pipeline_config import TranscriptionProvider
from lecturechat.retry import RetryPolicy

logger = logging.getLogger(__name__)

MAX_TRANSCRIPTION_BYTES = 25 * 1024 * 1024  # Whisper API upload limit

# AssemblyAI rejects requests without an explicit speech model list.
ASSEMBLYAI_SPEECH_MODELS = ["universal-3-pro"]


@dataclass
class TranscriptionCost:
    duration_seconds: float
    duration_minutes: float
    estimated_cost: float
    currency: str = "USD"


def estimate_transcription_cost(
    duration_seconds: float,
    cost_per_minute: float = 0.006,
) -> TranscriptionCost:
    """Linear cost estimate from audio duration (Whisper: $0.006/min)."""
    minutes = max(0.0, duration_seconds) / 60
    return TranscriptionCost(
        duration_seconds=duration_seconds,
        duration_minutes=round(minutes, 2),
        estimated_cost=round(minutes * cost_per_minute, 3),
    )


def logprob_to_confidence(avg_logprob: float | None) -> float:
    """Map Whisper's average log-probability to a [0, 1] confidence proxy."""
    if avg_logprob is None:
        return 0.0
    return max(0.0, min(1.0, math.exp(avg_logprob)))


class Transcriber:
    """Base transcriber: size checks, retries and error surfacing.

    Subclasses implement :meth:`_request`, which performs one provider call and
    raises errors from :mod:`lecturechat.errors`.
    """

    provider: str = ""

    def __init__(
        self,
        max_bytes: int = MAX_TRANSCRIPTION_BYTES,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.max_bytes = max_bytes
        self.retry_policy = retry_policy or RetryPolicy()
        self.sleep = sleep

    def transcribe(self, audio_path: Path | str) -> TranscriptionResult:
        """Transcribe *audio_path* into text plus time-coded segments.

        Files above ``max_bytes`` are still sent (splitting is not implemented);
        if the provider then rejects them, :class:`PayloadTooLargeError` is raised
        instead of silently truncating.
        """
        audio_path = Path(audio_path)
        if not audio_path.exists():
            raise FileNotFoundError(f"Audio file not found: {audio_path}")

        size = audio_path.stat().st_size
        if size == 0:
            raise UnsupportedMediaError("Audio file is empty")
        oversized = size > self.max_bytes
        if oversized:
            logger.warning(
                "Audio file is %.2f MB, above the %.0f MB limit; attempting direct "
                "transcription (large-file splitting is not supported)",
                size / 1024 / 1024, self.max_bytes / 1024 / 1024,
            )

        try:
            result = self.retry_policy.call(self._request, audio_path, sleep=self.sleep)
        except PayloadTooLargeError:
            raise
        except (LectureChatError, OSError) as exc:
            if oversized and not isinstance(exc, TransientServiceError):
                raise PayloadTooLargeError(
                    f"Large file transcription failed: {exc}. Consider splitting the audio file."
                ) from exc
            raise

        logger.info(
            "Transcribed %s via %s: %d chars, %.1fs, %d segments",
            audio_path.name, self.provider, len(result.text), result.duration, len(result.segments),
        )
        return result

    def _request(self, audio_path: Path) -> TranscriptionResult:
        raise NotImplementedError


class WhisperTranscriber(Transcriber):
    """OpenAI Whisper (``verbose_json`` for segment timestamps)."""

    provider = TranscriptionProvider.WHISPER.value

    def __init__(
        self,
        client: OpenAI,
        model: str = "whisper-1",
        language: str | None = "en",
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.client = client
        self.model = model
        self.language = language

    def _request(self, audio_path: Path) -> TranscriptionResult:
        options: dict[str, Any] = {
            "model": self.model,
            "response_format": "verbose_json",
            "temperature": 0.0,
        }
        if self.language:
            options["language"] = self.language

        try:
            with audio_path.open("rb") as audio_file:
                response = self.client.audio.transcriptions.create(file=audio_file, **options)
        except openai.APIStatusError as exc:
            if exc.status_code == 413:
                raise PayloadTooLargeError("Audio file too large for Whisper API") from exc
            if exc.status_code == 400:
                raise UnsupportedMediaError("Invalid audio file format") from exc
            if exc.status_code == 401:
                raise TranscriptionError("Invalid OpenAI API key") from exc
            raise from_openai_error(exc, TranscriptionError) from exc
        except openai.OpenAIError as exc:
            raise from_openai_error(exc, TranscriptionError) from exc

        segments = [
            TranscriptSegment(
                start=float(seg.start or 0),
                end=float(seg.end or 0),
                text=seg.text or "",
                confidence=logprob_to_confidence(getattr(seg, "avg_logprob", None)),
            )
            for seg in (response.segments or [])
        ]
        return TranscriptionResult(
            text=response.text or "",
            language=getattr(response, "language", None) or self.language or "en",
            duration=float(getattr(response, "duration", 0) or 0),
            segments=segments,
        )


class AssemblyAITranscriber(Transcriber):
    """AssemblyAI; sentences become segments, times converted from ms."""

    provider = TranscriptionProvider.ASSEMBLYAI.value

    def __init__(self, api_key: str, **kwargs: Any):
        super().__init__(**kwargs)
        self.api_key = api_key

    def _request(self, audio_path: Path) -> TranscriptionResult:
        import assemblyai as aai  # type: ignore[import-untyped]  # no stubs; import inside function

        aai.settings.api_key = self.api_key
        config = aai.TranscriptionConfig(
            speech_models=ASSEMBLYAI_SPEECH_MODELS,
            language_detection=True,
        )

        try:
            transcript = aai.Transcriber().transcribe(str(audio_path), config=config)
        except httpx.TransportError as exc:
            raise TransientServiceError(f"AssemblyAI unavailable: {exc}") from exc

        if transcript.status == aai.TranscriptStatus.error:
            raise TranscriptionError(f"Transcription failed: {transcript.error}")

        segments = [
            TranscriptSegment(
                start=s.start / 1000.0,
                end=s.end / 1000.0,
                text=s.text,
                confidence=float(s.confidence or 0),
            )
            for s in transcript.get_sentences()
        ]
        language = (getattr(transcript, "json_response", None) or {}).get("language_code") or "en"
        return TranscriptionResult(
            text=transcript.text or "",
            language=language,
            duration=float(transcript.audio_duration or 0),
            segments=segments,
        )


def build_transcriber(settings: Any, openai_client: OpenAI, retry_policy: RetryPolicy) -> Transcriber:
    """Construct the transcriber selected by ``settings.transcription_provider``."""
    provider = TranscriptionProvider(settings.transcription_provider)
    common: dict[str, Any] = {
        "max_bytes": settings.max_transcription_bytes,
        "retry_policy": retry_policy,
    }
    if provider is TranscriptionProvider.ASSEMBLYAI:
        return AssemblyAITranscriber(settings.assemblyai_api_key, **common)
    return WhisperTranscriber(
        openai_client,
        model=settings.whisper_model,
        language=settings.transcription_language or None,
        **common,
    )
