from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from pushrelay.apps.api.deps import get_db, get_dispatch_queue, require_webhook_secret
from pushrelay.apps.api.response import get_request_id
from pushrelay.apps.api.routes.push_tokens import RegisterTokenRequest
from pushrelay.apps.api.routes.webhooks import PostPublishedWebhook, payload_from_post
from pushrelay.services.dispatch.queue import DispatchQueue
from pushrelay.services.registry import register_token, unregister_token


logger = logging.getLogger(__name__)

# Aliases for app builds and CMS hooks that predate /v1; bodies stay unwrapped.
router = APIRouter(tags=["legacy"], include_in_schema=False)


@router.post("/register")
async def legacy_register(
    payload: RegisterTokenRequest,
    db: AsyncSession = Depends(get_db),
) -> dict:
    await register_token(db, payload.token)
    return {"message": "Token registered"}


@router.delete("/unregister/{token}")
async def legacy_unregister(token: str, db: AsyncSession = Depends(get_db)) -> dict:
    removed = await unregister_token(db, token)
    return {"message": "Token removed" if removed else "Token was not registered"}


@router.post("/wix-webhook", dependencies=[Depends(require_webhook_secret)])
async def legacy_post_webhook(
    webhook: PostPublishedWebhook,
    request: Request,
    dispatch_queue: DispatchQueue = Depends(get_dispatch_queue),
):
    payload = payload_from_post(webhook.data, request_id=get_request_id(request))
    if payload is None:
        return JSONResponse(content={"error": "Incomplete payload"}, status_code=400)
    job_id = await dispatch_queue.enqueue(payload)
    logger.info("legacy post webhook accepted content_key=%s job_id=%s", payload.content_key, job_id)
    return {"message": "Processing started", "job_id": job_id}
