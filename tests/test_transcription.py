"""Tests for transcription providers and cost estimation (no live API calls)."""

from __future__ import annotations

import logging
import math
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import assemblyai as aai
import httpx
import openai
import pytest

from lecturechat.config import Settings
from lecturechat.errors import PayloadTooLargeError, TranscriptionError, UnsupportedMediaError
from lecturechat.ingestion.transcription import (
    AssemblyAITranscriber,
    WhisperTranscriber,
    build_transcriber,
    estimate_transcription_cost,
    logprob_to_confidence,
)
from lecturechat.retry import RetryPolicy

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/audio/transcriptions")


def _status(cls: type[openai.APIStatusError], code: int) -> openai.APIStatusError:
    return cls("error", response=httpx.Response(code, request=REQUEST), body=None)


def _whisper_response() -> SimpleNamespace:
    return SimpleNamespace(
        text="Hello class. Today we cover mitosis.",
        language="english",
        duration=12.5,
        segments=[
            SimpleNamespace(start=0.0, end=4.0, text="Hello class.", avg_logprob=-0.1),
            SimpleNamespace(start=4.0, end=12.5, text=" Today we cover mitosis.", avg_logprob=-0.3),
        ],
    )


@pytest.fixture
def audio_file(tmp_path: Path) -> Path:
    path = tmp_path / "rec1_audio.wav"
    path.write_bytes(b"RIFF" + b"\x00" * 60)
    return path


def _whisper(client: MagicMock, sleeps: list[float] | None = None, **kwargs: object) -> WhisperTranscriber:
    recorder = sleeps if sleeps is not None else []
    return WhisperTranscriber(client, sleep=recorder.append, **kwargs)  # type: ignore[arg-type]


class TestCostEstimate:
    def test_linear_in_duration(self) -> None:
        cost = estimate_transcription_cost(600)
        assert cost.duration_minutes == 10
        assert cost.estimated_cost == pytest.approx(0.06)
        assert cost.currency == "USD"

    def test_custom_rate(self) -> None:
        assert estimate_transcription_cost(120, 0.01).estimated_cost == pytest.approx(0.02)


class TestConfidence:
    def test_logprob_mapping(self) -> None:
        assert logprob_to_confidence(0.0) == 1.0
        assert logprob_to_confidence(-0.5) == pytest.approx(math.exp(-0.5))
        assert logprob_to_confidence(None) == 0.0


class TestWhisperTranscriber:
    def test_segments_and_metadata(self, audio_file: Path) -> None:
        client = MagicMock()
        client.audio.transcriptions.create.return_value = _whisper_response()

        result = _whisper(client).transcribe(audio_file)

        assert result.text.startswith("Hello class.")
        assert result.duration == 12.5
        assert [(s.start, s.end) for s in result.segments] == [(0.0, 4.0), (4.0, 12.5)]
        assert result.segments[0].confidence == pytest.approx(math.exp(-0.1))
        kwargs = client.audio.transcriptions.create.call_args.kwargs
        assert kwargs["response_format"] == "verbose_json"
        assert kwargs["model"] == "whisper-1"
        assert kwargs["temperature"] == 0.0

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            _whisper(MagicMock()).transcribe(tmp_path / "missing.wav")

    def test_payload_too_large_response(self, audio_file: Path) -> None:
        client = MagicMock()
        client.audio.transcriptions.create.side_effect = _status(openai.APIStatusError, 413)
        with pytest.raises(PayloadTooLargeError):
            _whisper(client).transcribe(audio_file)

    def test_bad_format(self, audio_file: Path) -> None:
        client = MagicMock()
        client.audio.transcriptions.create.side_effect = _status(openai.BadRequestError, 400)
        with pytest.raises(UnsupportedMediaError):
            _whisper(client).transcribe(audio_file)

    def test_auth_failure(self, audio_file: Path) -> None:
        client = MagicMock()
        client.audio.transcriptions.create.side_effect = _status(openai.AuthenticationError, 401)
        with pytest.raises(TranscriptionError):
            _whisper(client).transcribe(audio_file)

    def test_transient_failure_retried(self, audio_file: Path) -> None:
        client = MagicMock()
        client.audio.transcriptions.create.side_effect = [
            _status(openai.InternalServerError, 502),
            _whisper_response(),
        ]
        sleeps: list[float] = []
        result = _whisper(client, sleeps).transcribe(audio_file)

        assert result.segments
        assert sleeps == [1.0]

    def test_oversized_input_attempted_then_surfaced(
        self, audio_file: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        client = MagicMock()
        client.audio.transcriptions.create.side_effect = _status(openai.BadRequestError, 400)

        with caplog.at_level(logging.WARNING, logger="lecturechat.ingestion.transcription"):
            with pytest.raises(PayloadTooLargeError):
                _whisper(client, max_bytes=10).transcribe(audio_file)

        assert client.audio.transcriptions.create.called
        assert "above the" in caplog.text

    def test_oversized_input_can_still_succeed(self, audio_file: Path) -> None:
        client = MagicMock()
        client.audio.transcriptions.create.return_value = _whisper_response()
        result = _whisper(client, max_bytes=10).transcribe(audio_file)
        assert result.text


class TestAssemblyAITranscriber:
    def test_sentences_become_segments(self, audio_file: Path) -> None:
        transcript = MagicMock()
        transcript.status = aai.TranscriptStatus.completed
        transcript.text = "Welcome. Let's begin."
        transcript.audio_duration = 90
        transcript.json_response = {"language_code": "en_us"}
        transcript.get_sentences.return_value = [
            SimpleNamespace(text="Welcome.", start=0, end=1500, confidence=0.95),
            SimpleNamespace(text="Let's begin.", start=1500, end=4000, confidence=0.9),
        ]

        with patch("assemblyai.Transcriber") as transcriber_cls:
            transcriber_cls.return_value.transcribe.return_value = transcript
            result = AssemblyAITranscriber("key", sleep=lambda _: None).transcribe(audio_file)

        assert result.language == "en_us"
        assert result.duration == 90.0
        assert [(s.start, s.end) for s in result.segments] == [(0.0, 1.5), (1.5, 4.0)]
        assert result.segments[0].confidence == 0.95

    def test_error_status_raises(self, audio_file: Path) -> None:
        transcript = MagicMock()
        transcript.status = aai.TranscriptStatus.error
        transcript.error = "audio too short"

        with patch("assemblyai.Transcriber") as transcriber_cls:
            transcriber_cls.return_value.transcribe.return_value = transcript
            with pytest.raises(TranscriptionError, match="audio too short"):
                AssemblyAITranscriber("key", sleep=lambda _: None).transcribe(audio_file)


class TestBuildTranscriber:
    def test_whisper_default(self) -> None:
        s = Settings(_env_file=None)  # type: ignore[call-arg]
        transcriber = build_transcriber(s, MagicMock(), RetryPolicy())
        assert isinstance(transcriber, WhisperTranscriber)
        assert transcriber.max_bytes == 25 * 1024 * 1024

    def test_assemblyai(self) -> None:
        s = Settings(_env_file=None, transcription_provider="assemblyai")  # type: ignore[call-arg]
        assert isinstance(build_transcriber(s, MagicMock(), RetryPolicy()), AssemblyAITranscriber)
