from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from pushrelay.apps.api.deps import get_db, get_dispatch_queue, require_ops_token
from pushrelay.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from pushrelay.apps.api.response import SuccessEnvelope, success_response
from pushrelay.core.config import get_settings
from pushrelay.persistence.guards import store_errors
from pushrelay.persistence.repos.push_tokens import count_tokens
from pushrelay.services.dispatch.queue import DispatchQueue
from pushrelay.services.telemetry import (
    counters_snapshot,
    external_latency_by_integration,
    request_summary,
)


router = APIRouter(
    prefix="/ops",
    tags=["ops"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(require_ops_token)],
)


class DispatchOpsResponse(BaseModel):
    registry_size: int
    queue_name: str
    queue_depth: int | None
    dead_letters: list[dict[str, Any]]
    counters: dict[str, int]
    provider_calls: dict[str, dict[str, Any]]
    requests: dict[str, Any]
    receipt_policy: str


@router.get("/dispatch", response_model=SuccessEnvelope[DispatchOpsResponse])
async def dispatch_status(
    request: Request,
    window_s: int = Query(default=300, ge=1, le=86400),
    dead_letter_limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    dispatch_queue: DispatchQueue = Depends(get_dispatch_queue),
) -> dict:
    with store_errors("ops_registry_size"):
        registry_size = await count_tokens(db)
    depth = await dispatch_queue.queue_depth()
    # Degraded Redis shows up as a null depth and an empty dead-letter list.
    dead_letters: list[dict[str, Any]] = []
    if depth is not None:
        dead_letters = await dispatch_queue.list_dead_letters(dead_letter_limit)
    payload = DispatchOpsResponse(
        registry_size=registry_size,
        queue_name=dispatch_queue.queue_name,
        queue_depth=depth,
        dead_letters=dead_letters,
        counters=counters_snapshot(),
        provider_calls=external_latency_by_integration(window_s),
        requests=request_summary(window_s),
        receipt_policy=get_settings().receipt_policy,
    )
    return success_response(request=request, data=payload)
