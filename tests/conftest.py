"""Shared fixtures: in-memory stand-ins for the record store, vector index and embedder."""

from __future__ import annotations

import math
import uuid
from datetime import datetime, timezone
from typing import Any

import pytest

from lecturechat.config import Settings
from lecturechat.errors import ConflictError, NotFoundError
from lecturechat.ingestion.models import Chunk, EmbeddedChunk, Recording, TranscriptionResult
from lecturechat.pipeline_config import (
    STAGE_PROGRESS,
    ProcessingStage,
    RecordingStatus,
    status_for_stage,
)
from lecturechat.vectorstore.index import IndexStats, UpsertResult, VectorMatch, VectorRecord


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryRecordStore:
    """Same surface as ``SupabaseRecordStore``, backed by dicts."""

    def __init__(self) -> None:
        self.recordings: dict[str, dict[str, Any]] = {}
        self.transcripts: dict[str, dict[str, Any]] = {}
        self.chunks: dict[str, list[dict[str, Any]]] = {}
        self.exchanges: list[dict[str, Any]] = []
        self.status_history: list[tuple[str, str, int]] = []

    # recordings
    def create_recording(self, title: str, file_name: str, media_path: str, file_size: int | None = None,
                         mime_type: str | None = None, subject: str | None = None,
                         description: str | None = None) -> Recording:
        rid = str(uuid.uuid4())
        self.recordings[rid] = {
            "id": rid,
            "title": title,
            "subject": subject,
            "description": description,
            "file_name": file_name,
            "media_path": media_path,
            "file_size": file_size,
            "mime_type": mime_type,
            "status": RecordingStatus.PROCESSING.value,
            "processing_stage": ProcessingStage.UPLOADING.value,
            "processing_progress": 0,
            "error_message": None,
            "created_at": _now(),
        }
        return Recording.from_row(self.recordings[rid])

    def add_recording(self, status: RecordingStatus = RecordingStatus.READY, **fields: Any) -> Recording:
        recording = self.create_recording(
            title=fields.pop("title", "Intro to Biology"),
            file_name=fields.pop("file_name", "lecture.mp4"),
            media_path=fields.pop("media_path", "/tmp/lecture.mp4"),
            **fields,
        )
        stage = {
            RecordingStatus.READY: ProcessingStage.COMPLETED,
            RecordingStatus.FAILED: ProcessingStage.FAILED,
            RecordingStatus.PROCESSING: ProcessingStage.TRANSCRIBING,
        }[status]
        self.recordings[recording.id].update(
            status=status.value, processing_stage=stage.value, processing_progress=STAGE_PROGRESS[stage]
        )
        return self.get_recording(recording.id)

    def get_recording(self, recording_id: str) -> Recording:
        if recording_id not in self.recordings:
            raise NotFoundError(f"Recording not found: {recording_id}")
        return Recording.from_row(self.recordings[recording_id])

    def list_recordings(self, status: str | None = None) -> list[Recording]:
        rows = [r for r in self.recordings.values() if status is None or r["status"] == status]
        return [Recording.from_row(r) for r in rows]

    def update_status(self, recording_id: str, stage: ProcessingStage, progress: int | None = None,
                      error: str | None = None) -> None:
        row = self.recordings[recording_id]
        row.update(
            processing_stage=stage.value,
            status=status_for_stage(stage).value,
            processing_progress=STAGE_PROGRESS[stage] if progress is None else progress,
            error_message=error,
        )
        self.status_history.append((recording_id, stage.value, row["processing_progress"]))

    def claim_for_reprocess(self, recording_id: str) -> Recording:
        row = self.recordings.get(recording_id)
        if row is None:
            raise NotFoundError(f"Recording not found: {recording_id}")
        if row["status"] == RecordingStatus.PROCESSING.value:
            raise ConflictError("Recording is currently being processed")
        row.update(
            status=RecordingStatus.PROCESSING.value,
            processing_stage=ProcessingStage.UPLOADING.value,
            processing_progress=0,
            error_message=None,
        )
        return Recording.from_row(row)

    def delete_recording(self, recording_id: str) -> None:
        self.recordings.pop(recording_id, None)

    # transcripts
    def store_transcript(self, recording_id: str, transcription: TranscriptionResult) -> str:
        tid = str(uuid.uuid4())
        self.transcripts[recording_id] = {
            "id": tid,
            "recording_id": recording_id,
            "full_text": transcription.text,
            "language": transcription.language,
            "duration_seconds": transcription.duration,
            "confidence": transcription.confidence,
            "word_count": transcription.word_count,
        }
        return tid

    def get_transcript(self, recording_id: str) -> dict[str, Any] | None:
        return self.transcripts.get(recording_id)

    def delete_transcript(self, recording_id: str) -> None:
        self.transcripts.pop(recording_id, None)

    # chunks
    def store_chunks(self, recording_id: str, transcript_id: str, chunks: list[Chunk],
                     embedding_model: str) -> None:
        self.chunks.setdefault(recording_id, []).extend(
            {
                "recording_id": recording_id,
                "transcript_id": transcript_id,
                "chunk_index": c.index,
                "chunk_text": c.text,
                "start_time": c.start,
                "end_time": c.end,
                "confidence": c.confidence,
                "word_count": c.word_count,
                "embedding_model": embedding_model,
                "has_embedding": False,
            }
            for c in chunks
        )

    def list_chunks(self, recording_id: str, limit: int = 50, offset: int = 0) -> tuple[list[dict[str, Any]], int]:
        rows = sorted(self.chunks.get(recording_id, []), key=lambda r: r["chunk_index"])
        return rows[offset:offset + limit], len(rows)

    def count_chunks(self, recording_id: str | None = None, with_embeddings: bool = False) -> int:
        rows = self.chunks.get(recording_id, []) if recording_id else [
            r for rows in self.chunks.values() for r in rows
        ]
        return sum(1 for r in rows if r["has_embedding"] or not with_embeddings)

    def mark_chunks_embedded(self, recording_id: str, chunk_indices: list[int]) -> None:
        for row in self.chunks.get(recording_id, []):
            if row["chunk_index"] in chunk_indices:
                row["has_embedding"] = True

    def delete_chunks(self, recording_id: str) -> None:
        self.chunks.pop(recording_id, None)

    # exchanges
    def store_exchange(self, recording_id: str, conversation_id: str, question: str, answer: str,
                       citations: list[dict[str, Any]], sources: list[dict[str, Any]]) -> dict[str, Any]:
        row = {
            "id": str(uuid.uuid4()),
            "recording_id": recording_id,
            "conversation_id": conversation_id,
            "question": question,
            "answer": answer,
            "citations": citations,
            "sources": sources,
            "created_at": _now(),
        }
        self.exchanges.append(row)
        return row

    def list_exchanges(self, recording_id: str, conversation_id: str | None = None,
                       limit: int = 50) -> list[dict[str, Any]]:
        rows = [
            e for e in self.exchanges
            if e["recording_id"] == recording_id
            and (conversation_id is None or e["conversation_id"] == conversation_id)
        ]
        return rows[:limit]

    def delete_exchange(self, exchange_id: str) -> None:
        before = len(self.exchanges)
        self.exchanges = [e for e in self.exchanges if e["id"] != exchange_id]
        if len(self.exchanges) == before:
            raise NotFoundError(f"Exchange not found: {exchange_id}")

    def delete_conversation(self, conversation_id: str) -> int:
        before = len(self.exchanges)
        self.exchanges = [e for e in self.exchanges if e["conversation_id"] != conversation_id]
        return before - len(self.exchanges)

    def delete_exchanges(self, recording_id: str) -> None:
        self.exchanges = [e for e in self.exchanges if e["recording_id"] != recording_id]

    def stats(self) -> dict[str, int]:
        return {
            "total_recordings": len(self.recordings),
            "total_chunks": self.count_chunks(),
            "total_exchanges": len(self.exchanges),
        }


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class FakeVectorIndex:
    """Cosine search over an in-memory list of records."""

    def __init__(self, dimension: int = 3, reject_chunk_indices: set[int] | None = None) -> None:
        self.dimension = dimension
        self.reject_chunk_indices = reject_chunk_indices or set()
        self.records: list[VectorRecord] = []
        self.ensure_calls = 0
        self.deleted_for: list[str] = []
        self.queries: list[dict[str, Any]] = []

    def ensure_index(self) -> bool:
        self.ensure_calls += 1
        return self.ensure_calls == 1

    def upsert(self, records: list[VectorRecord]) -> UpsertResult:
        result = UpsertResult(total=len(records))
        for record in records:
            if record.metadata.get("chunk_index") in self.reject_chunk_indices:
                result.failed_ids.append(record.id)
                result.errors.append(f"{record.id}: rejected")
            else:
                self.records.append(record)
                result.written_ids.append(record.id)
        if records:
            result.successful_batches = 0 if result.failed_ids else 1
            result.failed_batches = 1 if result.failed_ids else 0
        return result

    def query(self, vector: list[float], top_k: int = 5, recording_id: str | None = None,
              min_score: float = 0.0) -> list[VectorMatch]:
        self.queries.append({"top_k": top_k, "min_score": min_score, "recording_id": recording_id})
        matches = [
            VectorMatch(id=r.id, score=_cosine(vector, r.vector), metadata=dict(r.metadata))
            for r in self.records
            if recording_id is None or r.metadata.get("recording_id") == recording_id
        ]
        matches = [m for m in matches if m.score >= min_score]
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:top_k]

    def delete_by_filter(self, recording_id: str) -> None:
        self.deleted_for.append(recording_id)
        self.records = [r for r in self.records if r.metadata.get("recording_id") != recording_id]

    def stats(self) -> IndexStats:
        return IndexStats(count=len(self.records), dimension=self.dimension, fullness=0.0)

    def health_check(self) -> bool:
        return True

    def add_chunk(self, recording_id: str, index: int, text: str, start: float, end: float,
                  vector: list[float]) -> None:
        self.records.append(
            VectorRecord(
                id=f"{recording_id}_chunk_{index}_{uuid.uuid4()}",
                vector=vector,
                metadata={
                    "recording_id": recording_id,
                    "chunk_index": index,
                    "text": text,
                    "start_time": start,
                    "end_time": end,
                    "confidence": 0.9,
                },
            )
        )


class FakeEmbedder:
    """Returns a fixed query vector and one-hot chunk vectors."""

    model = "fake-embedding"

    def __init__(self, query_vector: list[float] | None = None, fail_indices: set[int] | None = None) -> None:
        self.query_vector = query_vector or [1.0, 0.0, 0.0]
        self.fail_indices = fail_indices or set()

    def embed_query(self, text: str) -> list[float]:
        return list(self.query_vector)

    def embed_chunks(self, chunks: list[Chunk]) -> list[EmbeddedChunk]:
        return [
            EmbeddedChunk(
                chunk=c,
                vector=None if c.index in self.fail_indices else [1.0, 0.0, float(c.index)],
                model=self.model,
                error="boom" if c.index in self.fail_indices else None,
            )
            for c in chunks
        ]


@pytest.fixture
def settings(tmp_path: Any) -> Settings:
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        temp_dir=str(tmp_path / "temp"),
        upload_dir=str(tmp_path / "uploads"),
        embedding_dimensions=3,
        retry_base_delay=0.0,
        resume_on_startup=False,
    )


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def vector_index() -> FakeVectorIndex:
    return FakeVectorIndex()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()
