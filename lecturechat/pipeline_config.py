"""Pipeline configuration: stage/status enums and chunking parameters."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ProcessingStage(str, Enum):
    """Stages a recording moves through while being processed."""

    UPLOADING = "uploading"
    EXTRACTING_AUDIO = "extracting_audio"
    TRANSCRIBING = "transcribing"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    STORING = "storing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingStage.COMPLETED, ProcessingStage.FAILED)


class RecordingStatus(str, Enum):
    """Coarse lifecycle status shown to users."""

    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class TranscriptionProvider(str, Enum):
    """Available speech-to-text backends."""

    WHISPER = "whisper"
    ASSEMBLYAI = "assemblyai"


# Progress reported when a stage is entered (optimistic: the stage is about to run).
STAGE_PROGRESS: dict[ProcessingStage, int] = {
    ProcessingStage.UPLOADING: 0,
    ProcessingStage.EXTRACTING_AUDIO: 10,
    ProcessingStage.TRANSCRIBING: 25,
    ProcessingStage.CHUNKING: 50,
    ProcessingStage.EMBEDDING: 70,
    ProcessingStage.STORING: 85,
    ProcessingStage.COMPLETED: 100,
    ProcessingStage.FAILED: 0,
}


def status_for_stage(stage: ProcessingStage) -> RecordingStatus:
    """Derive the recording status from its processing stage."""
    if stage is ProcessingStage.COMPLETED:
        return RecordingStatus.READY
    if stage is ProcessingStage.FAILED:
        return RecordingStatus.FAILED
    return RecordingStatus.PROCESSING


@dataclass(frozen=True)
class ChunkingParams:
    """Immutable chunk size / overlap pair, both in characters."""

    chunk_size: int = 1000
    overlap: int = 200

    @classmethod
    def for_length(cls, text_length: int) -> ChunkingParams:
        """Pick chunking parameters scaled to the transcript length."""
        if text_length < 2000:
            return cls(chunk_size=500, overlap=100)
        if text_length < 10000:
            return cls(chunk_size=1000, overlap=200)
        if text_length < 50000:
            return cls(chunk_size=1500, overlap=300)
        return cls(chunk_size=2000, overlap=400)
