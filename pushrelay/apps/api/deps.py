from __future__ import annotations

import hmac
from typing import AsyncGenerator

from fastapi import Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from pushrelay.core.config import get_settings
from pushrelay.persistence.db import get_session
from pushrelay.services.dispatch.queue import DispatchQueue


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def get_dispatch_queue(request: Request) -> DispatchQueue:
    # The queue handle is created with the app and released on shutdown.
    return request.app.state.dispatch_queue


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
    )


async def require_webhook_secret(
    x_webhook_secret: str | None = Header(default=None, alias="X-Webhook-Secret"),
) -> None:
    # Only enforced when a shared secret is configured.
    expected = get_settings().webhook_shared_secret
    if not expected:
        return
    if not x_webhook_secret or not hmac.compare_digest(x_webhook_secret, expected):
        raise _auth_error("Invalid webhook secret")


async def require_ops_token(
    authorization: str | None = Header(default=None),
) -> None:
    expected = get_settings().ops_token
    if not expected:
        return
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip(), expected):
        raise _auth_error("Missing or invalid bearer token")
