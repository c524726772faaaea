from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from pushrelay.apps.api.response import error_response, is_versioned_request
from pushrelay.core.errors import InvalidTokenFormat, StoreUnavailable


logger = logging.getLogger(__name__)

_CODES_BY_STATUS: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    422: "REQUEST_VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def _render(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    # Legacy routes keep the plain {"error": message} body their clients already parse.
    if is_versioned_request(request):
        content = error_response(request=request, code=code, message=message, details=details)
    else:
        content = {"error": message}
    return JSONResponse(content=content, status_code=status_code, headers=headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Routes raise HTTPException(detail={"code", "message", ...}) or a plain string.
    code = _CODES_BY_STATUS.get(exc.status_code, "UNKNOWN_ERROR")
    message = "Request failed"
    details: dict[str, Any] | None = None
    if isinstance(exc.detail, dict):
        code = str(exc.detail.get("code") or code)
        message = str(exc.detail.get("message") or message)
        details = {k: v for k, v in exc.detail.items() if k not in {"code", "message"}} or None
    elif isinstance(exc.detail, str):
        message = exc.detail
    return _render(
        request,
        status_code=exc.status_code,
        code=code,
        message=message,
        details=details,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    if not is_versioned_request(request):
        # Pre-v1 clients expect 400 for malformed bodies.
        return _render(request, status_code=400, code="BAD_REQUEST", message="Invalid request payload")
    return _render(
        request,
        status_code=422,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": jsonable_encoder(exc.errors())},
    )


async def invalid_token_exception_handler(request: Request, exc: InvalidTokenFormat) -> JSONResponse:
    return _render(request, status_code=400, code="INVALID_PUSH_TOKEN", message="Invalid push token")


async def store_unavailable_exception_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    logger.error("store unavailable path=%s: %s", request.url.path, exc)
    return _render(request, status_code=503, code="SERVICE_UNAVAILABLE", message="Store unavailable")


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled error path=%s", request.url.path, exc_info=exc)
    return _render(request, status_code=500, code="INTERNAL_ERROR", message="Internal server error")
