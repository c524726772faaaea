from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from pushrelay.apps.api.deps import get_dispatch_queue, require_webhook_secret
from pushrelay.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from pushrelay.apps.api.response import SuccessEnvelope, accepted_response, get_request_id
from pushrelay.services.dispatch.queue import DispatchJobPayload, DispatchQueue


logger = logging.getLogger(__name__)

router = APIRouter(tags=["dispatch"], responses=DEFAULT_ERROR_RESPONSES)


class PostPublishedData(BaseModel):
    # CMS payloads carry many more fields; only these drive a notification.
    id: str | int | None = None
    title: str | None = None
    excerpt: str | None = None


class PostPublishedWebhook(BaseModel):
    data: PostPublishedData = Field(default_factory=PostPublishedData)


class BroadcastRequest(BaseModel):
    title: str = Field(min_length=1)
    body: str | None = None
    route: str | None = None
    action: dict[str, Any] | None = None
    content_key: str | None = None


class DispatchAcceptedResponse(BaseModel):
    job_id: str


def payload_from_post(post: PostPublishedData, *, request_id: str) -> DispatchJobPayload | None:
    # Both the id and the title are required to build a campaign.
    if not post.id or not post.title:
        return None
    return DispatchJobPayload(
        title=post.title,
        body=post.excerpt,
        content_key=str(post.id),
        request_id=request_id,
    )


@router.post(
    "/webhooks/posts",
    status_code=202,
    response_model=SuccessEnvelope[DispatchAcceptedResponse],
    dependencies=[Depends(require_webhook_secret)],
)
async def post_published(
    webhook: PostPublishedWebhook,
    request: Request,
    dispatch_queue: DispatchQueue = Depends(get_dispatch_queue),
) -> JSONResponse:
    payload = payload_from_post(webhook.data, request_id=get_request_id(request))
    if payload is None:
        raise HTTPException(
            status_code=400,
            detail={"code": "INCOMPLETE_PAYLOAD", "message": "Post id and title are required"},
        )
    job_id = await dispatch_queue.enqueue(payload)
    logger.info("post webhook accepted content_key=%s job_id=%s", payload.content_key, job_id)
    return accepted_response(request=request, data=DispatchAcceptedResponse(job_id=job_id))


@router.post(
    "/broadcasts",
    status_code=202,
    response_model=SuccessEnvelope[DispatchAcceptedResponse],
    dependencies=[Depends(require_webhook_secret)],
)
async def create_broadcast(
    broadcast: BroadcastRequest,
    request: Request,
    dispatch_queue: DispatchQueue = Depends(get_dispatch_queue),
) -> JSONResponse:
    payload = DispatchJobPayload(
        **broadcast.model_dump(),
        request_id=get_request_id(request),
    )
    job_id = await dispatch_queue.enqueue(payload)
    logger.info("broadcast accepted job_id=%s", job_id)
    return accepted_response(request=request, data=DispatchAcceptedResponse(job_id=job_id))
