from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from pushrelay.apps.api.deps import get_db
from pushrelay.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from pushrelay.apps.api.response import SuccessEnvelope, success_response
from pushrelay.services.registry import register_token, unregister_token


router = APIRouter(prefix="/push-tokens", tags=["push-tokens"], responses=DEFAULT_ERROR_RESPONSES)


class RegisterTokenRequest(BaseModel):
    token: str


class RegisterTokenResponse(BaseModel):
    registered: bool
    created: bool


class UnregisterTokenResponse(BaseModel):
    removed: bool


@router.post("", response_model=SuccessEnvelope[RegisterTokenResponse])
async def register_push_token(
    payload: RegisterTokenRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Registration is an upsert, so app restarts may re-send the same token freely.
    created = await register_token(db, payload.token)
    data = RegisterTokenResponse(registered=True, created=created)
    return success_response(request=request, data=data.model_dump())


@router.delete("/{token}", response_model=SuccessEnvelope[UnregisterTokenResponse])
async def unregister_push_token(
    token: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict:
    removed = await unregister_token(db, token)
    return success_response(request=request, data=UnregisterTokenResponse(removed=removed).model_dump())
