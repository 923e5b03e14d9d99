"""Question answering over a processed recording, plus conversation history."""

from __future__ import annotations

import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from lecturechat.api.dependencies import get_services
from lecturechat.api.models import (
    AskRequest,
    AskResponse,
    CitationResponse,
    ExchangeResponse,
    SourceResponse,
)
from lecturechat.services import Services

router = APIRouter(tags=["query"])

ServicesDep = Annotated[Services, Depends(get_services)]


@router.post("/api/recordings/{recording_id}/ask", response_model=AskResponse)
async def ask(recording_id: str, request: AskRequest, services: ServicesDep) -> AskResponse:
    """Answer a question with citations to time ranges in the recording."""
    result = await asyncio.to_thread(
        services.answers.ask, recording_id, request.question, request.conversation_id
    )
    return AskResponse(
        answer=result.answer,
        citations=[CitationResponse(**c.to_dict()) for c in result.citations],
        sources=[SourceResponse(**s) for s in result.sources],
        conversation_id=result.conversation_id,
        exchange_id=result.exchange_id,
    )


@router.get("/api/recordings/{recording_id}/history", response_model=list[ExchangeResponse])
async def history(
    recording_id: str,
    services: ServicesDep,
    conversation_id: str | None = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> list[ExchangeResponse]:
    rows = await asyncio.to_thread(services.answers.history, recording_id, conversation_id, limit)
    return [
        ExchangeResponse(
            id=str(r["id"]),
            conversation_id=r["conversation_id"],
            question=r["question"],
            answer=r["answer"],
            citations=r.get("citations") or [],
            sources=r.get("sources") or [],
            created_at=r.get("created_at"),
        )
        for r in rows
    ]


@router.delete("/api/conversations/{conversation_id}")
async def delete_conversation(conversation_id: str, services: ServicesDep) -> dict[str, int]:
    deleted = await asyncio.to_thread(services.answers.delete_conversation, conversation_id)
    return {"deleted": deleted}


@router.delete("/api/exchanges/{exchange_id}", status_code=204)
async def delete_exchange(exchange_id: str, services: ServicesDep) -> None:
    await asyncio.to_thread(services.answers.delete_exchange, exchange_id)
