"""Citation extraction: bracketed time tokens in generated answers -> context chunks."""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from typing import Any

from lecturechat.retrieval.search import ContextChunk

logger = logging.getLogger(__name__)

TIMESTAMP_RE = re.compile(r"\[(\d{1,2}:\d{2}(?::\d{2})?)\]")
DEDUP_WINDOW = 5.0
DEFAULT_CITATION_SPAN = 30.0
CITATION_TEXT_CHARS = 100
SOURCE_TEXT_CHARS = 200


@dataclass
class Citation:
    time: float
    time_string: str
    text: str
    start: float
    end: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def parse_timestamp(value: str) -> int:
    """``MM:SS`` or ``HH:MM:SS`` to seconds; anything else is 0."""
    parts = [int(p) for p in value.split(":")]
    if len(parts) == 2:
        return parts[0] * 60 + parts[1]
    if len(parts) == 3:
        return parts[0] * 3600 + parts[1] * 60 + parts[2]
    return 0


def format_timestamp(seconds: float) -> str:
    """Seconds to ``MM:SS``, or ``HH:MM:SS`` from one hour up."""
    if not seconds or seconds < 0:
        return "00:00"
    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def _snippet(text: str, limit: int) -> str:
    return text[:limit] + "..."


def dedupe_citations(citations: list[Citation]) -> list[Citation]:
    """Drop citations within 5 seconds of any earlier one, kept or not.

    Times 0, 4 and 8 collapse to 0: 4 is near 0 and 8 is near 4.
    """
    return [
        citation
        for i, citation in enumerate(citations)
        if all(abs(citation.time - earlier.time) >= DEDUP_WINDOW for earlier in citations[:i])
    ]


def fallback_citations(context: list[ContextChunk]) -> list[Citation]:
    """One citation per context chunk, anchored at the chunk's start."""
    citations = []
    for chunk in context:
        start = chunk.start or 0.0
        end = chunk.end or start + DEFAULT_CITATION_SPAN
        if start < 0:
            continue
        citations.append(
            Citation(
                time=start,
                time_string=format_timestamp(start),
                text=_snippet(chunk.text, CITATION_TEXT_CHARS),
                start=start,
                end=end,
            )
        )
    return dedupe_citations(citations)


def extract_citations(answer: str, context: list[ContextChunk]) -> list[Citation]:
    """Attribute each ``[MM:SS]``/``[HH:MM:SS]`` token to the chunk containing it.

    Tokens outside every chunk's ``[start, end]`` are dropped. If the answer
    has no tokens at all, every context chunk is cited at its start instead.
    Citations within 5 seconds of an earlier one collapse into it.
    """
    citations: list[Citation] = []
    tokens = TIMESTAMP_RE.findall(answer or "")
    for token in tokens:
        seconds = parse_timestamp(token)
        chunk = next((c for c in context if c.start <= seconds <= c.end), None)
        if chunk is None:
            logger.debug("Timestamp [%s] matches no context chunk, dropping", token)
            continue
        citations.append(
            Citation(
                time=float(seconds),
                time_string=token,
                text=_snippet(chunk.text, CITATION_TEXT_CHARS),
                start=chunk.start,
                end=chunk.end,
            )
        )

    if not citations and not tokens and context:
        logger.info("No timestamps in answer, citing all %d context chunks", len(context))
        return fallback_citations(context)

    return dedupe_citations(citations)


def build_sources(context: list[ContextChunk]) -> list[dict[str, Any]]:
    return [
        {
            "text": _snippet(c.text, SOURCE_TEXT_CHARS),
            "start": c.start,
            "end": c.end,
            "score": c.score,
        }
        for c in context
    ]
