"""Recording endpoints: upload, status, transcript, chunks, reprocess, delete."""

from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from lecturechat.api.dependencies import get_services
from lecturechat.api.models import (
    ChunkPage,
    ChunkResponse,
    RecordingResponse,
    StatusResponse,
    TranscriptResponse,
    UploadResponse,
)
from lecturechat.errors import (
    ConflictError,
    NotFoundError,
    PayloadTooLargeError,
    UnsupportedMediaError,
    ValidationError,
)
from lecturechat.services import Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/recordings", tags=["recordings"])

# 2 GB upload limit
MAX_UPLOAD_BYTES = 2 * 1024 * 1024 * 1024
UPLOAD_READ_SIZE = 1024 * 1024

ALLOWED_MIME_TYPES = {
    "video/mp4",
    "video/avi",
    "video/mov",
    "video/quicktime",
    "video/mpeg",
    "audio/mpeg",
    "audio/mp3",
    "audio/wav",
    "audio/m4a",
    "audio/aac",
}

ServicesDep = Annotated[Services, Depends(get_services)]


async def _save_upload(file: UploadFile, upload_dir: Path) -> tuple[Path, int]:
    """Stream the upload to disk, enforcing the size limit."""
    upload_dir.mkdir(parents=True, exist_ok=True)
    safe_name = Path(file.filename or "upload").name
    destination = upload_dir / f"{uuid.uuid4().hex}_{safe_name}"

    size = 0
    with destination.open("wb") as out:
        while chunk := await file.read(UPLOAD_READ_SIZE):
            size += len(chunk)
            if size > MAX_UPLOAD_BYTES:
                out.close()
                destination.unlink(missing_ok=True)
                raise PayloadTooLargeError("File exceeds the 2 GB upload limit")
            out.write(chunk)

    if size == 0:
        destination.unlink(missing_ok=True)
        raise ValidationError("Uploaded file is empty")
    return destination, size


@router.post("", response_model=UploadResponse, status_code=201)
async def upload_recording(
    services: ServicesDep,
    file: Annotated[UploadFile, File(...)],
    title: Annotated[str, Form(min_length=1)],
    subject: Annotated[str | None, Form()] = None,
    description: Annotated[str | None, Form()] = None,
) -> UploadResponse:
    """Accept an audio/video upload and queue it for processing."""
    if file.content_type not in ALLOWED_MIME_TYPES:
        raise UnsupportedMediaError(
            f"Invalid file type '{file.content_type}'. Only video and audio files are allowed."
        )

    path, size = await _save_upload(file, Path(services.settings.upload_dir))
    logger.info("Received upload %s (%.2f MB)", file.filename, size / 1024 / 1024)

    recording = await asyncio.to_thread(
        services.store.create_recording,
        title=title.strip(),
        file_name=file.filename or path.name,
        media_path=str(path),
        file_size=size,
        mime_type=file.content_type,
        subject=subject,
        description=description,
    )
    queued = services.jobs.submit(recording.id) is not None
    return UploadResponse(recording=RecordingResponse.from_recording(recording), queued=queued)


@router.get("", response_model=list[RecordingResponse])
async def list_recordings(
    services: ServicesDep,
    status: str | None = None,
) -> list[RecordingResponse]:
    """List recordings, newest first, optionally filtered by status."""
    recordings = await asyncio.to_thread(services.store.list_recordings, status)
    return [RecordingResponse.from_recording(r) for r in recordings]


@router.get("/{recording_id}", response_model=RecordingResponse)
async def get_recording(recording_id: str, services: ServicesDep) -> RecordingResponse:
    recording = await asyncio.to_thread(services.store.get_recording, recording_id)
    return RecordingResponse.from_recording(recording)


@router.get("/{recording_id}/status", response_model=StatusResponse)
async def get_status(recording_id: str, services: ServicesDep) -> StatusResponse:
    """Processing stage and progress, with chunk/embedding counts."""

    def load() -> StatusResponse:
        recording = services.store.get_recording(recording_id)
        return StatusResponse(
            recording_id=recording.id,
            status=recording.status,
            processing_stage=recording.processing_stage,
            processing_progress=recording.processing_progress,
            error_message=recording.error_message,
            chunk_count=services.store.count_chunks(recording_id),
            embedded_chunk_count=services.store.count_chunks(recording_id, with_embeddings=True),
        )

    return await asyncio.to_thread(load)


@router.get("/{recording_id}/transcript", response_model=TranscriptResponse)
async def get_transcript(recording_id: str, services: ServicesDep) -> TranscriptResponse:
    await asyncio.to_thread(services.store.get_recording, recording_id)
    row = await asyncio.to_thread(services.store.get_transcript, recording_id)
    if row is None:
        raise NotFoundError("Transcript not found")
    return TranscriptResponse(
        recording_id=recording_id,
        full_text=row.get("full_text") or "",
        language=row.get("language"),
        duration_seconds=row.get("duration_seconds"),
        confidence=row.get("confidence"),
        word_count=row.get("word_count"),
    )


@router.get("/{recording_id}/chunks", response_model=ChunkPage)
async def get_chunks(
    recording_id: str,
    services: ServicesDep,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> ChunkPage:
    """One page of chunks ordered by index."""
    await asyncio.to_thread(services.store.get_recording, recording_id)
    rows, total = await asyncio.to_thread(services.store.list_chunks, recording_id, limit, offset)
    return ChunkPage(
        recording_id=recording_id,
        chunks=[
            ChunkResponse(
                chunk_index=r["chunk_index"],
                chunk_text=r["chunk_text"],
                start_time=r.get("start_time") or 0.0,
                end_time=r.get("end_time") or 0.0,
                confidence=r.get("confidence"),
                word_count=r.get("word_count"),
                has_embedding=bool(r.get("has_embedding")),
            )
            for r in rows
        ],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("/{recording_id}/reprocess", response_model=UploadResponse, status_code=202)
async def reprocess_recording(recording_id: str, services: ServicesDep) -> UploadResponse:
    """Purge derived artifacts and run the pipeline again."""
    recording = await asyncio.to_thread(services.pipeline.reprocess, recording_id)
    queued = services.jobs.submit(recording_id) is not None
    return UploadResponse(recording=RecordingResponse.from_recording(recording), queued=queued)


@router.delete("/{recording_id}", status_code=204)
async def delete_recording(recording_id: str, services: ServicesDep) -> None:
    if services.jobs.is_running(recording_id):
        raise ConflictError("Recording is currently being processed")
    await asyncio.to_thread(services.pipeline.delete_recording, recording_id)
