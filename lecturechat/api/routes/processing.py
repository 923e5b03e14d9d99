"""Service-level endpoints: processing stats and dependency health."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Annotated, Any

from fastapi import APIRouter, Depends

from lecturechat.api.dependencies import get_services
from lecturechat.api.models import StatsResponse
from lecturechat.errors import LectureChatError
from lecturechat.services import Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/processing", tags=["processing"])

ServicesDep = Annotated[Services, Depends(get_services)]


@router.get("/stats", response_model=StatsResponse)
async def stats(services: ServicesDep) -> StatsResponse:
    """Record counts from the store and vector index statistics."""
    recordings = await asyncio.to_thread(services.store.stats)
    try:
        index_stats = await asyncio.to_thread(services.index.stats)
        index: dict[str, float | int] = {
            "count": index_stats.count,
            "dimension": index_stats.dimension,
            "fullness": index_stats.fullness,
        }
    except LectureChatError as exc:
        logger.warning("Vector index stats unavailable: %s", exc)
        index = {"count": 0, "dimension": services.settings.embedding_dimensions, "fullness": 0.0}
    return StatsResponse(recordings=recordings, index=index)


@router.get("/health")
async def health(services: ServicesDep) -> dict[str, Any]:
    """Report whether each external dependency is reachable."""
    checks = {
        "ffmpeg": services.normalizer.ffmpeg_available(),
        "vector_index": await asyncio.to_thread(services.index.health_check),
    }
    return {
        "healthy": all(checks.values()),
        "services": checks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
