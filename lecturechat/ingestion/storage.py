"""Supabase storage for recordings, transcripts, chunks and Q&A exchanges."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from postgrest import CountMethod
from supabase import Client, create_client

from lecturechat.errors import ConflictError, NotFoundError
from lecturechat.ingestion.models import Chunk, Recording, TranscriptionResult
from lecturechat.pipeline_config import (
    STAGE_PROGRESS,
    ProcessingStage,
    RecordingStatus,
    status_for_stage,
)

logger = logging.getLogger(__name__)

CHUNK_INSERT_BATCH = 50


def get_supabase_client(settings: Any) -> Client:
    """Create and return a Supabase client from settings."""
    return create_client(settings.supabase_url, settings.supabase_key)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SupabaseRecordStore:
    """Table access for the ``recordings``, ``transcripts``, ``text_chunks`` and
    ``exchanges`` tables. All methods are synchronous."""

    def __init__(self, client: Client):
        self.client = client

    # -- recordings -----------------------------------------------------------

    def create_recording(
        self,
        title: str,
        file_name: str,
        media_path: str,
        file_size: int | None = None,
        mime_type: str | None = None,
        subject: str | None = None,
        description: str | None = None,
    ) -> Recording:
        result = (
            self.client.table("recordings")
            .insert(
                {
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
                }
            )
            .execute()
        )
        recording = Recording.from_row(result.data[0])
        logger.info("Created recording %s (%s)", recording.id, file_name)
        return recording

    def get_recording(self, recording_id: str) -> Recording:
        result = self.client.table("recordings").select("*").eq("id", recording_id).execute()
        if not result.data:
            raise NotFoundError(f"Recording not found: {recording_id}")
        return Recording.from_row(result.data[0])

    def list_recordings(self, status: str | None = None) -> list[Recording]:
        query = self.client.table("recordings").select("*")
        if status:
            query = query.eq("status", status)
        result = query.order("created_at", desc=True).execute()
        return [Recording.from_row(row) for row in result.data]

    def update_status(
        self,
        recording_id: str,
        stage: ProcessingStage,
        progress: int | None = None,
        error: str | None = None,
    ) -> None:
        """Persist stage, derived status, progress and error in one update."""
        self.client.table("recordings").update(
            {
                "processing_stage": stage.value,
                "status": status_for_stage(stage).value,
                "processing_progress": STAGE_PROGRESS[stage] if progress is None else progress,
                "error_message": error,
                "updated_at": _now(),
            }
        ).eq("id", recording_id).execute()
        logger.debug("Recording %s -> %s", recording_id, stage.value)

    def claim_for_reprocess(self, recording_id: str) -> Recording:
        """Reset a recording to the initial stage unless it is being processed.

        The update is conditional on ``status != processing`` so two concurrent
        reprocess requests cannot both win.

        Raises:
            NotFoundError: No such recording.
            ConflictError: The recording is currently processing.
        """
        result = (
            self.client.table("recordings")
            .update(
                {
                    "status": RecordingStatus.PROCESSING.value,
                    "processing_stage": ProcessingStage.UPLOADING.value,
                    "processing_progress": 0,
                    "error_message": None,
                    "updated_at": _now(),
                }
            )
            .eq("id", recording_id)
            .neq("status", RecordingStatus.PROCESSING.value)
            .execute()
        )
        if result.data:
            return Recording.from_row(result.data[0])
        # Nothing updated: either missing or already processing
        self.get_recording(recording_id)
        raise ConflictError("Recording is currently being processed")

    def delete_recording(self, recording_id: str) -> None:
        self.client.table("recordings").delete().eq("id", recording_id).execute()

    # -- transcripts ----------------------------------------------------------

    def store_transcript(self, recording_id: str, transcription: TranscriptionResult) -> str:
        """Store a transcript and return its generated ID."""
        result = (
            self.client.table("transcripts")
            .insert(
                {
                    "recording_id": recording_id,
                    "full_text": transcription.text,
                    "language": transcription.language,
                    "duration_seconds": transcription.duration,
                    "confidence": transcription.confidence,
                    "word_count": transcription.word_count,
                }
            )
            .execute()
        )
        return str(result.data[0]["id"])

    def get_transcript(self, recording_id: str) -> dict[str, Any] | None:
        result = (
            self.client.table("transcripts").select("*").eq("recording_id", recording_id).execute()
        )
        return result.data[0] if result.data else None

    def delete_transcript(self, recording_id: str) -> None:
        self.client.table("transcripts").delete().eq("recording_id", recording_id).execute()

    # -- chunks ---------------------------------------------------------------

    def store_chunks(
        self,
        recording_id: str,
        transcript_id: str,
        chunks: list[Chunk],
        embedding_model: str,
    ) -> None:
        """Store chunks (batched by 50) with ``has_embedding`` unset."""
        rows: list[dict[str, object]] = [
            {
                "recording_id": recording_id,
                "transcript_id": transcript_id,
                "chunk_index": c.index,
                "chunk_text": c.text,
                "chunk_length": c.length,
                "word_count": c.word_count,
                "start_time": c.start,
                "end_time": c.end,
                "confidence": c.confidence,
                "embedding_model": embedding_model,
                "has_embedding": False,
            }
            for c in chunks
        ]
        for i in range(0, len(rows), CHUNK_INSERT_BATCH):
            self.client.table("text_chunks").insert(rows[i : i + CHUNK_INSERT_BATCH]).execute()
        logger.info("Stored %d chunks for recording %s", len(rows), recording_id)

    def list_chunks(
        self, recording_id: str, limit: int = 50, offset: int = 0
    ) -> tuple[list[dict[str, Any]], int]:
        """Return one page of chunks ordered by index, plus the total count."""
        result = (
            self.client.table("text_chunks")
            .select("*", count=CountMethod.exact)
            .eq("recording_id", recording_id)
            .order("chunk_index")
            .range(offset, offset + limit - 1)
            .execute()
        )
        return result.data, result.count or 0

    def count_chunks(self, recording_id: str | None = None, with_embeddings: bool = False) -> int:
        query = self.client.table("text_chunks").select("id", count=CountMethod.exact)
        if recording_id:
            query = query.eq("recording_id", recording_id)
        if with_embeddings:
            query = query.eq("has_embedding", True)
        return query.execute().count or 0

    def mark_chunks_embedded(self, recording_id: str, chunk_indices: list[int]) -> None:
        if not chunk_indices:
            return
        self.client.table("text_chunks").update({"has_embedding": True}).eq(
            "recording_id", recording_id
        ).in_("chunk_index", chunk_indices).execute()

    def delete_chunks(self, recording_id: str) -> None:
        self.client.table("text_chunks").delete().eq("recording_id", recording_id).execute()

    # -- exchanges ------------------------------------------------------------

    def store_exchange(
        self,
        recording_id: str,
        conversation_id: str,
        question: str,
        answer: str,
        citations: list[dict[str, Any]],
        sources: list[dict[str, Any]],
    ) -> dict[str, Any]:
        result = (
            self.client.table("exchanges")
            .insert(
                {
                    "recording_id": recording_id,
                    "conversation_id": conversation_id,
                    "question": question,
                    "answer": answer,
                    "citations": citations,
                    "sources": sources,
                }
            )
            .execute()
        )
        return result.data[0]

    def list_exchanges(
        self, recording_id: str, conversation_id: str | None = None, limit: int = 50
    ) -> list[dict[str, Any]]:
        """Exchanges for a recording, oldest first."""
        query = self.client.table("exchanges").select("*").eq("recording_id", recording_id)
        if conversation_id:
            query = query.eq("conversation_id", conversation_id)
        return query.order("created_at").limit(limit).execute().data

    def delete_exchange(self, exchange_id: str) -> None:
        result = self.client.table("exchanges").delete().eq("id", exchange_id).execute()
        if not result.data:
            raise NotFoundError(f"Exchange not found: {exchange_id}")

    def delete_conversation(self, conversation_id: str) -> int:
        result = (
            self.client.table("exchanges").delete().eq("conversation_id", conversation_id).execute()
        )
        return len(result.data)

    def delete_exchanges(self, recording_id: str) -> None:
        self.client.table("exchanges").delete().eq("recording_id", recording_id).execute()

    # -- stats ----------------------------------------------------------------

    def stats(self) -> dict[str, int]:
        def count(table: str, **filters: Any) -> int:
            query = self.client.table(table).select("id", count=CountMethod.exact)
            for column, value in filters.items():
                query = query.eq(column, value)
            return query.execute().count or 0

        return {
            "total_recordings": count("recordings"),
            "ready_recordings": count("recordings", status=RecordingStatus.READY.value),
            "processing_recordings": count("recordings", status=RecordingStatus.PROCESSING.value),
            "failed_recordings": count("recordings", status=RecordingStatus.FAILED.value),
            "total_transcripts": count("transcripts"),
            "total_chunks": count("text_chunks"),
            "embedded_chunks": count("text_chunks", has_embedding=True),
            "total_exchanges": count("exchanges"),
        }
