"""Embedding helpers using OpenAI text-embedding-3-small."""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from typing import Any

import openai
from openai import OpenAI

from lecturechat.errors import EmbeddingError, LectureChatError, from_openai_error
from lecturechat.ingestion.models import Chunk, EmbeddedChunk, EmbeddingResult
from lecturechat.retry import RetryPolicy

logger = logging.getLogger(__name__)

# text-embedding-3-small list price per 1K tokens
EMBEDDING_COST_PER_1K_TOKENS = 0.00002

_WHITESPACE = re.compile(r"\s+")


def prepare_text(text: str, max_chars: int = 8000) -> str:
    """Trim, collapse whitespace and hard-truncate to *max_chars*."""
    cleaned = _WHITESPACE.sub(" ", (text or "").strip())
    return cleaned[:max_chars]


def estimate_embedding_cost(texts: list[str]) -> dict[str, float]:
    """Rough token/cost estimate (about 4 characters per token)."""
    tokens = sum(len(t) for t in texts) / 4
    return {
        "estimated_tokens": round(tokens),
        "estimated_cost": round(tokens / 1000 * EMBEDDING_COST_PER_1K_TOKENS, 6),
    }


class Embedder:
    """Batched OpenAI embeddings with retry and per-item fallback.

    A failed batch (after retries) never aborts the whole job: each of its
    texts is retried on its own, and anything that still fails comes back as
    an :class:`EmbeddingResult` with ``vector=None`` and the error message.
    """

    def __init__(
        self,
        client: OpenAI,
        model: str = "text-embedding-3-small",
        dimensions: int = 1536,
        batch_size: int = 100,
        batch_delay: float = 0.5,
        item_delay: float = 0.2,
        max_chars: int = 8000,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.model = model
        self.dimensions = dimensions
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.item_delay = item_delay
        self.max_chars = max_chars
        self.retry_policy = retry_policy or RetryPolicy()
        self.sleep = sleep

    @classmethod
    def from_settings(cls, settings: Any, client: OpenAI, retry_policy: RetryPolicy) -> Embedder:
        return cls(
            client,
            model=settings.embedding_model,
            dimensions=settings.embedding_dimensions,
            batch_size=settings.embedding_batch_size,
            batch_delay=settings.embedding_batch_delay,
            item_delay=settings.embedding_item_delay,
            max_chars=settings.embedding_max_chars,
            retry_policy=retry_policy,
        )

    def _request(self, texts: list[str]) -> list[list[float]]:
        """One embeddings API call; raises our error types."""
        try:
            response = self.client.embeddings.create(
                model=self.model,
                input=texts,
                dimensions=self.dimensions,
                encoding_format="float",
            )
        except openai.OpenAIError as exc:
            raise from_openai_error(exc, EmbeddingError) from exc

        data = sorted(response.data, key=lambda item: item.index)
        if len(data) != len(texts):
            raise EmbeddingError(f"Expected {len(texts)} embeddings, got {len(data)}")
        return [list(item.embedding) for item in data]

    def _embed_batch(self, texts: list[str]) -> list[EmbeddingResult]:
        try:
            vectors = self.retry_policy.call(self._request, texts, sleep=self.sleep)
            return [EmbeddingResult(vector=v) for v in vectors]
        except LectureChatError as exc:
            logger.warning(
                "Embedding batch of %d failed after retries (%s); falling back to single items",
                len(texts), exc,
            )

        results: list[EmbeddingResult] = []
        for i, text in enumerate(texts):
            if i > 0:
                self.sleep(self.item_delay)
            try:
                vector = self.retry_policy.call(self._request, [text], sleep=self.sleep)[0]
                results.append(EmbeddingResult(vector=vector))
            except LectureChatError as exc:
                logger.error("Failed to embed item %d of batch: %s", i, exc)
                results.append(EmbeddingResult(vector=None, error=str(exc)))
        return results

    def embed(self, texts: list[str]) -> list[EmbeddingResult]:
        """Embed *texts*, returning one result per input in the same order.

        Inputs that are empty after normalization are never submitted; they come
        back with ``vector=None`` and an explanatory error.
        """
        results: list[EmbeddingResult | None] = [None] * len(texts)
        valid: list[tuple[int, str]] = []
        for i, text in enumerate(texts):
            prepared = prepare_text(text, self.max_chars)
            if prepared:
                valid.append((i, prepared))
            else:
                results[i] = EmbeddingResult(vector=None, error="empty text after normalization")

        skipped = len(texts) - len(valid)
        if skipped:
            logger.warning("Skipping %d empty text(s) before embedding", skipped)
        if not valid:
            return [r for r in results if r is not None]

        estimate = estimate_embedding_cost([t for _, t in valid])
        logger.info(
            "Embedding %d texts with %s (~%d tokens, ~$%.6f)",
            len(valid), self.model, estimate["estimated_tokens"], estimate["estimated_cost"],
        )

        for start in range(0, len(valid), self.batch_size):
            if start > 0:
                self.sleep(self.batch_delay)
            batch = valid[start:start + self.batch_size]
            batch_results = self._embed_batch([t for _, t in batch])
            for (original_index, _), result in zip(batch, batch_results, strict=True):
                results[original_index] = result
            logger.debug(
                "Embedded batch %d/%d",
                start // self.batch_size + 1,
                (len(valid) + self.batch_size - 1) // self.batch_size,
            )

        final = [r for r in results if r is not None]
        failed = sum(1 for r in final if not r.ok)
        logger.info("Embedding complete: %d succeeded, %d failed", len(final) - failed, failed)
        return final

    def embed_query(self, text: str) -> list[float]:
        """Embed a single query string.

        Raises:
            EmbeddingError: Empty query, or a permanent service failure.
            TransientServiceError: Retries exhausted.
        """
        prepared = prepare_text(text, self.max_chars)
        if not prepared:
            raise EmbeddingError("Cannot embed an empty query")
        return self.retry_policy.call(self._request, [prepared], sleep=self.sleep)[0]

    def embed_chunks(self, chunks: list[Chunk]) -> list[EmbeddedChunk]:
        """Embed chunks and pair each with its outcome."""
        results = self.embed([c.text for c in chunks])
        return [
            EmbeddedChunk(chunk=chunk, vector=result.vector, model=self.model, error=result.error)
            for chunk, result in zip(chunks, results, strict=True)
        ]
