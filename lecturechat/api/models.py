"""Pydantic request/response schemas for the LectureChat API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from lecturechat.ingestion.models import Recording


class RecordingResponse(BaseModel):
    """A recording and its processing state."""

    id: str
    title: str
    subject: str | None = None
    description: str | None = None
    file_name: str | None = None
    file_size: int | None = None
    mime_type: str | None = None
    status: str
    processing_stage: str
    processing_progress: int = 0
    error_message: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_recording(cls, recording: Recording) -> RecordingResponse:
        return cls(
            id=recording.id,
            title=recording.title,
            subject=recording.subject,
            description=recording.description,
            file_name=recording.file_name,
            file_size=recording.file_size,
            mime_type=recording.mime_type,
            status=recording.status,
            processing_stage=recording.processing_stage,
            processing_progress=recording.processing_progress,
            error_message=recording.error_message,
            created_at=recording.created_at,
            updated_at=recording.updated_at,
        )


class UploadResponse(BaseModel):
    """Response body for the upload endpoint."""

    recording: RecordingResponse
    queued: bool


class StatusResponse(BaseModel):
    recording_id: str
    status: str
    processing_stage: str
    processing_progress: int
    error_message: str | None = None
    chunk_count: int = 0
    embedded_chunk_count: int = 0


class TranscriptResponse(BaseModel):
    recording_id: str
    full_text: str
    language: str | None = None
    duration_seconds: float | None = None
    confidence: float | None = None
    word_count: int | None = None


class ChunkResponse(BaseModel):
    """A stored transcript chunk with its time range."""

    chunk_index: int
    chunk_text: str
    start_time: float = 0.0
    end_time: float = 0.0
    confidence: float | None = None
    word_count: int | None = None
    has_embedding: bool = False


class ChunkPage(BaseModel):
    recording_id: str
    chunks: list[ChunkResponse]
    total: int
    limit: int
    offset: int


class AskRequest(BaseModel):
    """Request body for the ask endpoint."""

    question: str = Field(..., min_length=1)
    conversation_id: str | None = None


class CitationResponse(BaseModel):
    time: float
    time_string: str
    text: str
    start: float
    end: float


class SourceResponse(BaseModel):
    text: str
    start: float
    end: float
    score: float


class AskResponse(BaseModel):
    """Response body for the ask endpoint."""

    answer: str
    citations: list[CitationResponse]
    sources: list[SourceResponse]
    conversation_id: str
    exchange_id: str | None = None


class ExchangeResponse(BaseModel):
    id: str
    conversation_id: str
    question: str
    answer: str
    citations: list[dict[str, Any]] = []
    sources: list[dict[str, Any]] = []
    created_at: str | None = None


class StatsResponse(BaseModel):
    recordings: dict[str, int]
    index: dict[str, float | int]
