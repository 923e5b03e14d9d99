"""Context retrieval: semantic search over one recording with a low-threshold fallback."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from lecturechat.ingestion.embeddings import Embedder
from lecturechat.vectorstore.index import VectorIndex, VectorMatch

logger = logging.getLogger(__name__)

PRIMARY_TOP_K = 5
PRIMARY_MIN_SCORE = 0.3
FALLBACK_TOP_K = 3
FALLBACK_MIN_SCORE = 0.1


@dataclass
class ContextChunk:
    """A retrieved chunk as handed to generation (``index`` is 1-based rank)."""

    index: int
    text: str
    start: float
    end: float
    confidence: float
    score: float

    @classmethod
    def from_match(cls, rank: int, match: VectorMatch) -> ContextChunk:
        meta = match.metadata
        return cls(
            index=rank,
            text=str(meta.get("text") or ""),
            start=float(meta.get("start_time") or 0),
            end=float(meta.get("end_time") or 0),
            confidence=float(meta.get("confidence") or 0),
            score=match.score,
        )


def search_recording(
    index: VectorIndex,
    query_vector: list[float],
    recording_id: str,
) -> list[VectorMatch]:
    """Primary search, then a wider, lower-threshold pass if nothing clears the bar."""
    matches = index.query(
        query_vector, top_k=PRIMARY_TOP_K, recording_id=recording_id, min_score=PRIMARY_MIN_SCORE
    )
    if matches:
        return matches

    logger.info(
        "No matches above %.2f for recording %s, retrying at %.2f",
        PRIMARY_MIN_SCORE, recording_id, FALLBACK_MIN_SCORE,
    )
    return index.query(
        query_vector, top_k=FALLBACK_TOP_K, recording_id=recording_id, min_score=FALLBACK_MIN_SCORE
    )


def retrieve_context(
    embedder: Embedder,
    index: VectorIndex,
    recording_id: str,
    question: str,
) -> list[ContextChunk]:
    """Embed *question* and return ranked context chunks from *recording_id*."""
    query_vector = embedder.embed_query(question)
    matches = search_recording(index, query_vector, recording_id)
    context = [ContextChunk.from_match(rank, m) for rank, m in enumerate(matches, start=1)]
    for chunk in context:
        logger.debug(
            "Context %d: score %.3f, %.1fs-%.1fs", chunk.index, chunk.score, chunk.start, chunk.end
        )
    logger.info("Retrieved %d context chunks for recording %s", len(context), recording_id)
    return context
