"""End-to-end processing pipeline: normalize -> transcribe -> chunk -> embed -> index."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from lecturechat.errors import ConflictError, LectureChatError, StageFailure, ValidationError
from lecturechat.ingestion.chunking import chunk_params_for, chunk_transcript, validate_chunk_params
from lecturechat.ingestion.embeddings import Embedder
from lecturechat.ingestion.media import MediaNormalizer
from lecturechat.ingestion.models import EmbeddedChunk, Recording
from lecturechat.ingestion.storage import SupabaseRecordStore
from lecturechat.ingestion.transcription import Transcriber, estimate_transcription_cost
from lecturechat.pipeline_config import ProcessingStage, RecordingStatus
from lecturechat.vectorstore.index import VectorIndex, VectorRecord, make_vector_id

logger = logging.getLogger(__name__)


def build_vector_records(recording: Recording, embedded: list[EmbeddedChunk]) -> list[VectorRecord]:
    """One record per successfully embedded chunk."""
    created_at = datetime.now(timezone.utc).isoformat()
    return [
        VectorRecord(
            id=make_vector_id(recording.id, item.chunk.index),
            vector=item.vector,
            metadata={
                "recording_id": recording.id,
                "recording_title": recording.title,
                "recording_subject": recording.subject,
                "recording_description": recording.description,
                "chunk_index": item.chunk.index,
                "start_time": item.chunk.start,
                "end_time": item.chunk.end,
                "text": item.chunk.text,
                "confidence": item.chunk.confidence,
                "word_count": item.chunk.word_count,
                "length": item.chunk.length,
                "embedding_model": item.model,
                "created_at": created_at,
            },
        )
        for item in embedded
        if item.vector is not None
    ]


class ProcessingPipeline:
    """Drives one recording through every stage, persisting progress as it goes.

    ``{stage, progress}`` is written *before* each stage does its work, so
    observers see the stage about to run. On failure the recording is marked
    failed, any vectors already written are deleted best-effort, and
    :class:`StageFailure` is raised. The transcript and chunks already stored
    are left in place; :meth:`purge_artifacts` clears them before a re-run.
    """

    def __init__(
        self,
        store: SupabaseRecordStore,
        normalizer: MediaNormalizer,
        transcriber: Transcriber,
        embedder: Embedder,
        index: VectorIndex,
        settings: Any,
    ):
        self.store = store
        self.normalizer = normalizer
        self.transcriber = transcriber
        self.embedder = embedder
        self.index = index
        self.settings = settings

    def _enter(self, recording_id: str, stage: ProcessingStage) -> ProcessingStage:
        self.store.update_status(recording_id, stage)
        logger.info("Recording %s: %s", recording_id, stage.value)
        return stage

    def process(self, recording_id: str) -> Recording:
        """Run the full pipeline for *recording_id*.

        Returns:
            The recording as stored after completion.

        Raises:
            StageFailure: Any stage failed; the recording is marked failed.
        """
        recording = self.store.get_recording(recording_id)
        stage = ProcessingStage.UPLOADING
        audio_path: Path | None = None
        try:
            if not recording.media_path:
                raise ValidationError(f"Recording {recording_id} has no media file")

            # 1. Normalize
            stage = self._enter(recording_id, ProcessingStage.EXTRACTING_AUDIO)
            audio_path = self.normalizer.normalize(recording.media_path, recording_id)
            info = self.normalizer.probe(audio_path)
            cost = estimate_transcription_cost(info.duration, self.settings.transcription_cost_per_minute)
            if cost.estimated_cost > self.settings.transcription_cost_alert:
                logger.warning(
                    "Transcription of %s (%.1f min) estimated at $%.3f",
                    recording_id, cost.duration_minutes, cost.estimated_cost,
                )
            else:
                logger.info("Transcription cost estimate: $%.3f", cost.estimated_cost)

            # 2. Transcribe
            stage = self._enter(recording_id, ProcessingStage.TRANSCRIBING)
            transcription = self.transcriber.transcribe(audio_path)
            if not transcription.text.strip():
                raise StageFailure(stage.value, "Transcription produced no text")
            transcript_id = self.store.store_transcript(recording_id, transcription)

            # 3. Chunk
            stage = self._enter(recording_id, ProcessingStage.CHUNKING)
            params = chunk_params_for(
                transcription.text,
                self.settings.chunk_size,
                self.settings.chunk_overlap,
                adaptive=self.settings.chunk_adaptive,
            )
            validate_chunk_params(params.chunk_size, params.overlap)
            chunks = chunk_transcript(
                transcription.text, transcription.segments, params.chunk_size, params.overlap
            )
            if not chunks:
                raise StageFailure(stage.value, "Chunking produced no chunks")
            self.store.store_chunks(recording_id, transcript_id, chunks, self.embedder.model)

            # 4. Embed
            stage = self._enter(recording_id, ProcessingStage.EMBEDDING)
            embedded = self.embedder.embed_chunks(chunks)
            succeeded = [e for e in embedded if e.vector is not None]
            if not succeeded:
                raise StageFailure(stage.value, "No chunks could be embedded")
            if len(succeeded) < len(chunks):
                logger.warning(
                    "Recording %s: %d of %d chunks failed to embed",
                    recording_id, len(chunks) - len(succeeded), len(chunks),
                )

            # 5. Index
            stage = self._enter(recording_id, ProcessingStage.STORING)
            self.index.ensure_index()
            records = build_vector_records(recording, succeeded)
            upserted = self.index.upsert(records)
            if not upserted.written_ids:
                raise StageFailure(stage.value, "; ".join(upserted.errors) or "Vector upsert failed")
            if upserted.failed_ids:
                logger.warning(
                    "Recording %s: %d vector(s) could not be written", recording_id, len(upserted.failed_ids)
                )
            written = set(upserted.written_ids)
            indexed = [r.metadata["chunk_index"] for r in records if r.id in written]
            self.store.mark_chunks_embedded(recording_id, indexed)

            self._enter(recording_id, ProcessingStage.COMPLETED)
            logger.info(
                "Recording %s processed: %d chunks, %d vectors", recording_id, len(chunks), len(indexed)
            )
            return self.store.get_recording(recording_id)

        except Exception as exc:
            message = exc.message if isinstance(exc, LectureChatError) else str(exc)
            logger.error("Recording %s failed at %s: %s", recording_id, stage.value, message)
            self._fail(recording_id, message)
            if isinstance(exc, StageFailure):
                raise
            raise StageFailure(stage.value, message) from exc
        finally:
            self.normalizer.cleanup(audio_path)

    def _fail(self, recording_id: str, message: str) -> None:
        try:
            self.store.update_status(recording_id, ProcessingStage.FAILED, error=message)
        except Exception:
            logger.exception("Could not mark recording %s as failed", recording_id)
        try:
            self.index.delete_by_filter(recording_id)
        except Exception as exc:
            logger.warning("Could not delete partial vectors for %s: %s", recording_id, exc)

    def purge_artifacts(self, recording_id: str) -> None:
        """Delete vectors, chunks, transcript and exchanges of a recording."""
        self.index.delete_by_filter(recording_id)
        self.store.delete_exchanges(recording_id)
        self.store.delete_chunks(recording_id)
        self.store.delete_transcript(recording_id)
        self.normalizer.cleanup_recording_files(recording_id)
        logger.info("Purged processing artifacts for recording %s", recording_id)

    def reprocess(self, recording_id: str) -> Recording:
        """Reset a recording so it can be processed again.

        Raises:
            NotFoundError: No such recording.
            ConflictError: The recording is currently processing.
            ValidationError: The original media file is gone.
        """
        recording = self.store.get_recording(recording_id)
        if recording.status == RecordingStatus.PROCESSING.value:
            raise ConflictError("Recording is currently being processed")
        if not recording.media_path or not Path(recording.media_path).exists():
            raise ValidationError("Original media file is no longer available")

        recording = self.store.claim_for_reprocess(recording_id)
        try:
            self.purge_artifacts(recording_id)
        except Exception as exc:
            message = exc.message if isinstance(exc, LectureChatError) else str(exc)
            logger.error("Recording %s: purge before reprocessing failed: %s", recording_id, message)
            self.store.update_status(recording_id, ProcessingStage.FAILED, error=message)
            raise
        logger.info("Recording %s reset for reprocessing", recording_id)
        return recording

    def delete_recording(self, recording_id: str) -> None:
        """Remove a recording and everything derived from it."""
        recording = self.store.get_recording(recording_id)
        self.purge_artifacts(recording_id)
        self.store.delete_recording(recording_id)
        if recording.media_path:
            self.normalizer.cleanup(recording.media_path)
        logger.info("Deleted recording %s", recording_id)


