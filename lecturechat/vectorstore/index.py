"""Qdrant-backed vector index for chunk embeddings."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from qdrant_client import QdrantClient
from qdrant_client.http import models as qm
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse

from lecturechat.errors import LectureChatError, TransientServiceError, VectorIndexError
from lecturechat.retry import RetryPolicy

logger = logging.getLogger(__name__)

RECORDING_KEY = "recording_id"


def make_vector_id(recording_id: str, chunk_index: int) -> str:
    """Record id ``{recordingId}_chunk_{index}_{suffix}``; unique across reprocessing."""
    return f"{recording_id}_chunk_{chunk_index}_{uuid.uuid4()}"


def point_id(vector_id: str) -> str:
    """Qdrant only accepts UUIDs or integers, so derive a stable UUID from the record id."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, vector_id))


@dataclass
class VectorRecord:
    id: str
    vector: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class VectorMatch:
    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class UpsertResult:
    total: int
    successful_batches: int = 0
    failed_batches: int = 0
    written_ids: list[str] = field(default_factory=list)
    failed_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed_ids


@dataclass
class IndexStats:
    count: int
    dimension: int
    fullness: float


def _translate(exc: Exception, action: str) -> LectureChatError:
    if isinstance(exc, UnexpectedResponse):
        if exc.status_code is not None and (exc.status_code == 429 or exc.status_code >= 500):
            return TransientServiceError(f"Qdrant {action} failed ({exc.status_code}): {exc}")
        return VectorIndexError(f"Qdrant {action} failed ({exc.status_code}): {exc}")
    if isinstance(exc, (ResponseHandlingException, ConnectionError, TimeoutError)):
        return TransientServiceError(f"Qdrant {action} unavailable: {exc}")
    return VectorIndexError(f"Qdrant {action} failed: {exc}")


def _recording_filter(recording_id: str) -> qm.Filter:
    return qm.Filter(
        must=[qm.FieldCondition(key=RECORDING_KEY, match=qm.MatchValue(value=recording_id))]
    )


class VectorIndex:
    """Idempotent collection setup, batched upserts, filtered similarity search."""

    def __init__(
        self,
        client: QdrantClient,
        collection: str,
        dimension: int = 1536,
        capacity: int = 0,
        batch_size: int = 100,
        batch_delay: float = 0.5,
        item_delay: float = 0.2,
        ready_timeout: float = 60.0,
        poll_interval: float = 2.0,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.collection = collection
        self.dimension = dimension
        self.capacity = capacity
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.item_delay = item_delay
        self.ready_timeout = ready_timeout
        self.poll_interval = poll_interval
        self.retry_policy = retry_policy or RetryPolicy()
        self.sleep = sleep
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Any, client: QdrantClient, retry_policy: RetryPolicy) -> VectorIndex:
        return cls(
            client,
            collection=settings.qdrant_collection,
            dimension=settings.embedding_dimensions,
            capacity=settings.index_capacity,
            batch_size=settings.upsert_batch_size,
            batch_delay=settings.upsert_batch_delay,
            item_delay=settings.upsert_item_delay,
            ready_timeout=settings.index_ready_timeout,
            poll_interval=settings.index_poll_interval,
            retry_policy=retry_policy,
        )

    def _call(self, action: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        def attempt() -> Any:
            try:
                return fn(*args, **kwargs)
            except LectureChatError:
                raise
            except Exception as exc:
                raise _translate(exc, action) from exc

        return self.retry_policy.call(attempt, sleep=self.sleep)

    # -- lifecycle ----------------------------------------------------------

    def ensure_index(self) -> bool:
        """Create the collection if missing, then wait for it to be ready.

        Returns:
            True if the collection was created by this call.
        """
        if self._call("exists", self.client.collection_exists, self.collection):
            logger.debug("Collection '%s' already exists", self.collection)
            return False

        logger.info("Creating collection '%s' (dim=%d, cosine)", self.collection, self.dimension)
        self._call(
            "create",
            self.client.create_collection,
            collection_name=self.collection,
            vectors_config=qm.VectorParams(size=self.dimension, distance=qm.Distance.COSINE),
        )
        try:
            self.client.create_payload_index(
                collection_name=self.collection,
                field_name=RECORDING_KEY,
                field_schema=qm.PayloadSchemaType.KEYWORD,
            )
        except (UnexpectedResponse, ResponseHandlingException) as exc:
            logger.warning("Could not create payload index on '%s': %s", RECORDING_KEY, exc)

        self.wait_until_ready()
        return True

    def wait_until_ready(self) -> None:
        """Poll collection status until green, bounded by ``ready_timeout``.

        Raises:
            VectorIndexError: The collection did not become ready in time.
        """
        deadline = self.clock() + self.ready_timeout
        while True:
            info = self._call("status", self.client.get_collection, self.collection)
            if info.status == qm.CollectionStatus.GREEN:
                logger.info("Collection '%s' is ready", self.collection)
                return
            if self.clock() >= deadline:
                raise VectorIndexError(
                    f"Collection '{self.collection}' not ready after {self.ready_timeout:.0f}s"
                )
            logger.debug("Waiting for collection '%s' (status=%s)", self.collection, info.status)
            self.sleep(self.poll_interval)

    # -- writes ---------------------------------------------------------------

    def _write(self, points: list[qm.PointStruct]) -> None:
        self._call("upsert", self.client.upsert, collection_name=self.collection, points=points, wait=True)

    def _upsert_batch(self, batch: list[VectorRecord], n: int, result: UpsertResult) -> None:
        points = [
            qm.PointStruct(
                id=point_id(r.id),
                vector=r.vector,
                payload={**r.metadata, "vector_id": r.id},
            )
            for r in batch
        ]
        try:
            self._write(points)
            result.successful_batches += 1
            result.written_ids.extend(r.id for r in batch)
            return
        except LectureChatError as exc:
            result.failed_batches += 1
            result.errors.append(f"batch {n}: {exc}")
            logger.warning(
                "Upsert batch %d of %d vectors failed after retries (%s); falling back to single points",
                n, len(batch), exc,
            )

        for i, (record, point) in enumerate(zip(batch, points, strict=True)):
            if i > 0:
                self.sleep(self.item_delay)
            try:
                self._write([point])
                result.written_ids.append(record.id)
            except LectureChatError as exc:
                result.failed_ids.append(record.id)
                result.errors.append(f"{record.id}: {exc}")
                logger.error("Failed to upsert vector %s: %s", record.id, exc)

    def upsert(self, records: list[VectorRecord]) -> UpsertResult:
        """Write records in batches.

        A batch that still fails after retries is resent one point at a time.
        Points that fail on their own are reported in ``failed_ids``, not raised.
        """
        result = UpsertResult(total=len(records))
        if not records:
            logger.warning("No vectors to upsert, skipping")
            return result

        batches = [records[i:i + self.batch_size] for i in range(0, len(records), self.batch_size)]
        for n, batch in enumerate(batches, start=1):
            if n > 1:
                self.sleep(self.batch_delay)
            self._upsert_batch(batch, n, result)
            logger.debug("Upserted batch %d/%d (%d vectors)", n, len(batches), len(batch))

        logger.info(
            "Upsert complete: %d/%d vectors written, %d/%d batches succeeded whole",
            len(result.written_ids), len(records), result.successful_batches, len(batches),
        )
        return result

    def delete_by_filter(self, recording_id: str) -> None:
        """Delete every vector belonging to *recording_id*."""
        if not self._call("exists", self.client.collection_exists, self.collection):
            return
        self._call(
            "delete",
            self.client.delete,
            collection_name=self.collection,
            points_selector=qm.FilterSelector(filter=_recording_filter(recording_id)),
            wait=True,
        )
        logger.info("Deleted vectors for recording %s", recording_id)

    # -- reads ----------------------------------------------------------------

    def query(
        self,
        vector: list[float],
        top_k: int = 5,
        recording_id: str | None = None,
        min_score: float = 0.0,
    ) -> list[VectorMatch]:
        """Similarity search, optionally restricted to one recording.

        Matches below *min_score* are dropped; results are sorted by score,
        highest first. A missing collection yields no matches.
        """
        query_filter = _recording_filter(recording_id) if recording_id else None
        try:
            response = self._call(
                "query",
                self.client.query_points,
                collection_name=self.collection,
                query=vector,
                limit=top_k,
                with_payload=True,
                query_filter=query_filter,
            )
        except VectorIndexError as exc:
            cause = exc.__cause__
            if isinstance(cause, UnexpectedResponse) and cause.status_code == 404:
                logger.debug("Collection '%s' not found, returning no matches", self.collection)
                return []
            raise

        matches = [
            VectorMatch(
                id=str((point.payload or {}).get("vector_id", point.id)),
                score=float(point.score),
                metadata=dict(point.payload or {}),
            )
            for point in response.points
            if point.score >= min_score
        ]
        matches.sort(key=lambda m: m.score, reverse=True)
        logger.debug("Query returned %d matches (min_score=%.2f)", len(matches), min_score)
        return matches

    def stats(self) -> IndexStats:
        info = self._call("stats", self.client.get_collection, self.collection)
        count = info.points_count or 0
        vectors = info.config.params.vectors
        dimension = getattr(vectors, "size", None) or self.dimension
        fullness = count / self.capacity if self.capacity > 0 else 0.0
        return IndexStats(count=count, dimension=dimension, fullness=fullness)

    def health_check(self) -> bool:
        """Check if Qdrant is reachable."""
        try:
            self.client.get_collections()
            return True
        except Exception as exc:
            logger.error("Qdrant health check failed: %s", exc)
            return False
