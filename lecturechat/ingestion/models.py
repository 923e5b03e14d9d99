"""Data models for the ingestion pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class TranscriptSegment:
    """A time-coded fragment produced directly by transcription."""

    start: float
    end: float
    text: str
    confidence: float = 0.0


@dataclass
class TranscriptionResult:
    """Full transcription output: text plus ordered segments."""

    text: str
    language: str = "en"
    duration: float = 0.0
    segments: list[TranscriptSegment] = field(default_factory=list)

    @property
    def word_count(self) -> int:
        return len(self.text.split())

    @property
    def confidence(self) -> float | None:
        """Mean segment confidence, or ``None`` without segments."""
        if not self.segments:
            return None
        return sum(s.confidence for s in self.segments) / len(self.segments)


@dataclass
class MediaInfo:
    """Stream metadata extracted via ffprobe."""

    path: str
    duration: float
    channels: int
    bitrate: int
    codec: str
    sample_rate: int = 0
    size: int = 0
    has_video: bool = False


@dataclass
class Chunk:
    """A chunk of transcript text with its reconciled time range."""

    index: int
    text: str
    length: int
    word_count: int
    start: float = 0.0
    end: float = 0.0
    confidence: float = 0.0


@dataclass
class EmbeddingResult:
    """One embedding outcome: a vector, or ``None`` with the error that caused it."""

    vector: list[float] | None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.vector is not None


@dataclass
class EmbeddedChunk:
    """A chunk paired with its embedding outcome."""

    chunk: Chunk
    vector: list[float] | None
    model: str
    error: str | None = None


@dataclass
class Recording:
    """Row view of a recording as stored in the ``recordings`` table."""

    id: str
    title: str
    status: str
    processing_stage: str
    processing_progress: int = 0
    subject: str | None = None
    description: str | None = None
    file_name: str | None = None
    media_path: str | None = None
    file_size: int | None = None
    mime_type: str | None = None
    error_message: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Recording:
        return cls(
            id=str(row["id"]),
            title=row.get("title") or "",
            status=row.get("status") or "processing",
            processing_stage=row.get("processing_stage") or "uploading",
            processing_progress=row.get("processing_progress") or 0,
            subject=row.get("subject"),
            description=row.get("description"),
            file_name=row.get("file_name"),
            media_path=row.get("media_path"),
            file_size=row.get("file_size"),
            mime_type=row.get("mime_type"),
            error_message=row.get("error_message"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )
