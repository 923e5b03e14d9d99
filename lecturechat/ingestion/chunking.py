"""Recursive character chunking with timestamp reconciliation.

Transcript text is split on the most coarse separator that keeps pieces under
``chunk_size`` and the pieces are merged back with ``overlap`` characters of
shared context. Each chunk is then mapped back onto the time-coded segments it
came from.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from lecturechat.errors import ValidationError
from lecturechat.ingestion.models import Chunk, TranscriptSegment
from lecturechat.pipeline_config import ChunkingParams

logger = logging.getLogger(__name__)

SEPARATORS: list[str] = ["\n\n", "\n", ". ", "! ", "? ", "; ", ": ", ", ", " ", ""]

MIN_CHUNK_SIZE = 100
LARGE_CHUNK_SIZE = 4000
FUZZY_WORDS = 5
FUZZY_CONFIDENCE_FACTOR = 0.7


@dataclass(frozen=True)
class TimeRange:
    """Where a chunk sits in the recording. ``offset`` is -1 when not located exactly."""

    start: float = 0.0
    end: float = 0.0
    confidence: float = 0.0
    offset: int = -1


UNLOCATED = TimeRange()


def count_words(text: str) -> int:
    return len(text.split())


def validate_chunk_params(chunk_size: int, overlap: int) -> None:
    """Reject unusable chunking parameters; warn on suspicious ones.

    Raises:
        ValidationError: ``chunk_size < 100``, ``overlap < 0`` or ``overlap >= chunk_size``.
    """
    if chunk_size < MIN_CHUNK_SIZE:
        raise ValidationError(f"Chunk size must be at least {MIN_CHUNK_SIZE} characters")
    if overlap < 0:
        raise ValidationError("Overlap cannot be negative")
    if overlap >= chunk_size:
        raise ValidationError("Overlap must be less than chunk size")

    if chunk_size > LARGE_CHUNK_SIZE:
        logger.warning("Large chunk size (%d) may hurt retrieval precision", chunk_size)
    if overlap > chunk_size * 0.5:
        logger.warning("High overlap (%d of %d) will produce many redundant chunks", overlap, chunk_size)


# ---------------------------------------------------------------------------
# Splitting
# ---------------------------------------------------------------------------


def _split_keeping_separator(text: str, separator: str) -> list[str]:
    """Split *text* on *separator*, attaching each separator to the piece after it."""
    if not separator:
        return list(text)
    parts = re.split(f"({re.escape(separator)})", text)
    pieces = [parts[0]] + [parts[i] + parts[i + 1] for i in range(1, len(parts) - 1, 2)]
    return [p for p in pieces if p]


def _merge_splits(splits: list[str], chunk_size: int, overlap: int) -> list[str]:
    """Greedily pack *splits* into chunks, carrying up to *overlap* chars forward."""
    docs: list[str] = []
    current: list[str] = []
    total = 0

    for piece in splits:
        size = len(piece)
        if total + size > chunk_size and current:
            if total > chunk_size:
                logger.warning("Created a chunk of %d chars, longer than %d", total, chunk_size)
            doc = "".join(current).strip()
            if doc:
                docs.append(doc)
            # Drop leading pieces until what remains fits as overlap context
            while total > overlap or (total + size > chunk_size and total > 0):
                total -= len(current[0])
                current = current[1:]
        current.append(piece)
        total += size

    doc = "".join(current).strip()
    if doc:
        docs.append(doc)
    return docs


def _split_recursive(text: str, separators: list[str], chunk_size: int, overlap: int) -> list[str]:
    separator = separators[-1]
    remaining: list[str] = []
    for i, candidate in enumerate(separators):
        if candidate == "":
            separator = candidate
            break
        if candidate in text:
            separator = candidate
            remaining = separators[i + 1:]
            break

    chunks: list[str] = []
    pending: list[str] = []
    for piece in _split_keeping_separator(text, separator):
        if len(piece) < chunk_size:
            pending.append(piece)
            continue
        if pending:
            chunks.extend(_merge_splits(pending, chunk_size, overlap))
            pending = []
        if remaining:
            chunks.extend(_split_recursive(piece, remaining, chunk_size, overlap))
        else:
            chunks.append(piece)
    if pending:
        chunks.extend(_merge_splits(pending, chunk_size, overlap))
    return chunks


def split_text(
    text: str,
    chunk_size: int = 1000,
    overlap: int = 200,
    separators: list[str] | None = None,
) -> list[str]:
    """Split *text* into overlapping chunks of at most ~*chunk_size* characters."""
    validate_chunk_params(chunk_size, overlap)
    return _split_recursive(text, separators or SEPARATORS, chunk_size, overlap)


# ---------------------------------------------------------------------------
# Timestamp reconciliation
# ---------------------------------------------------------------------------


def _segment_offsets(segments: list[TranscriptSegment]) -> list[tuple[int, int, TranscriptSegment]]:
    """Character span of each segment, accumulated by text length."""
    spans = []
    pos = 0
    for seg in segments:
        end = pos + len(seg.text)
        spans.append((pos, end, seg))
        pos = end
    return spans


def _fuzzy_locate(chunk_text: str, full_text: str, segments: list[TranscriptSegment]) -> TimeRange:
    head = " ".join(chunk_text.split()[:FUZZY_WORDS])
    if not head:
        return UNLOCATED
    position = full_text.find(head)
    if position == -1:
        return UNLOCATED

    for seg_start, seg_end, seg in _segment_offsets(segments):
        if seg_start <= position < seg_end:
            return TimeRange(
                start=seg.start,
                end=seg.end,
                confidence=(seg.confidence or 0.0) * FUZZY_CONFIDENCE_FACTOR,
            )
    return UNLOCATED


def locate_timestamps(
    chunk_text: str,
    full_text: str,
    segments: list[TranscriptSegment],
    search_from: int = 0,
) -> TimeRange:
    """Map a chunk back onto the segments it was cut from.

    Exact locate first (searching forward from *search_from*, then from the
    start of the text): the range runs from the first overlapping segment's
    start to the last overlapping segment's end, with their mean confidence.
    If the exact text cannot be found, the first five words are searched for
    and the single containing segment is used with confidence scaled by 0.7.
    If that fails too, ``{0, 0, 0}`` is returned.

    Pure function: no I/O and no mutation of its arguments.
    """
    if not segments:
        return UNLOCATED

    needle = chunk_text.strip()
    if not needle:
        return UNLOCATED

    position = full_text.find(needle, max(0, search_from))
    if position == -1:
        position = full_text.find(needle)
    if position == -1:
        return _fuzzy_locate(needle, full_text, segments)

    chunk_end = position + len(needle)
    start: float | None = None
    end: float | None = None
    confidences: list[float] = []
    for seg_start, seg_end, seg in _segment_offsets(segments):
        if seg_end > position and seg_start < chunk_end:
            if start is None:
                start = seg.start
            end = seg.end
            confidences.append(seg.confidence or 0.0)

    if start is None:
        # Located in the text but past the end of the segment coverage
        return TimeRange(offset=position)
    return TimeRange(
        start=start,
        end=end if end is not None else start,
        confidence=sum(confidences) / len(confidences),
        offset=position,
    )


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------


def chunk_transcript(
    text: str,
    segments: list[TranscriptSegment] | None = None,
    chunk_size: int = 1000,
    overlap: int = 200,
) -> list[Chunk]:
    """Split a transcript into chunks annotated with time ranges.

    Args:
        text: Full transcript text.
        segments: Time-coded segments whose texts concatenate to (roughly) *text*.
        chunk_size: Target chunk length in characters.
        overlap: Characters shared between neighbouring chunks.

    Returns:
        Chunks with contiguous indices starting at 0. Start times never
        decrease with the index and ``start <= end`` for every chunk.
    """
    segments = segments or []
    logger.info(
        "Chunking %d chars (chunk_size=%d, overlap=%d, %d segments)",
        len(text), chunk_size, overlap, len(segments),
    )
    pieces = split_text(text, chunk_size, overlap)

    chunks: list[Chunk] = []
    cursor = 0
    last_start = 0.0
    for index, piece in enumerate(pieces):
        located = locate_timestamps(piece, text, segments, search_from=cursor)
        if located.offset >= 0:
            cursor = located.offset + 1

        start = max(located.start, last_start)
        end = max(located.end, start)
        last_start = start

        chunks.append(
            Chunk(
                index=index,
                text=piece.strip(),
                length=len(piece),
                word_count=count_words(piece),
                start=start,
                end=end,
                confidence=located.confidence,
            )
        )

    log_chunk_stats(chunks)
    return chunks


def chunk_params_for(text: str, chunk_size: int, overlap: int, adaptive: bool = True) -> ChunkingParams:
    """Chunking parameters for *text*: length-adaptive or the configured pair."""
    if adaptive:
        return ChunkingParams.for_length(len(text))
    return ChunkingParams(chunk_size=chunk_size, overlap=overlap)


def log_chunk_stats(chunks: list[Chunk]) -> None:
    if not chunks:
        logger.info("No chunks created")
        return
    total_words = sum(c.word_count for c in chunks)
    timed = sum(1 for c in chunks if c.start > 0 or c.end > 0)
    logger.info(
        "Chunking stats: %d chunks, avg %d chars, avg %d words, %d/%d with timestamps, %d words total",
        len(chunks),
        round(sum(c.length for c in chunks) / len(chunks)),
        round(total_words / len(chunks)),
        timed,
        len(chunks),
        total_words,
    )
