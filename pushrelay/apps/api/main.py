from __future__ import annotations

from contextlib import asynccontextmanager
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from pushrelay.apps.api.errors import (
    http_exception_handler,
    invalid_token_exception_handler,
    store_unavailable_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from pushrelay.apps.api.response import API_VERSION, REQUEST_ID_HEADER
from pushrelay.apps.api.routes.health import router as health_router
from pushrelay.apps.api.routes.legacy import router as legacy_router
from pushrelay.apps.api.routes.ops import router as ops_router
from pushrelay.apps.api.routes.push_tokens import router as push_tokens_router
from pushrelay.apps.api.routes.webhooks import router as webhooks_router
from pushrelay.core.config import get_settings
from pushrelay.core.errors import InvalidTokenFormat, StoreUnavailable
from pushrelay.core.logging import configure_logging
from pushrelay.services.dispatch.queue import DispatchQueue
from pushrelay.services.telemetry import record_request


@asynccontextmanager
async def _lifespan(app: FastAPI):
    yield
    # The Redis pool is opened lazily on first enqueue.
    await app.state.dispatch_queue.close()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title=f"{get_settings().app_name} API", lifespan=_lifespan)
    app.state.dispatch_queue = DispatchQueue.from_settings()

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        record_request(
            path=request.url.path,
            status_code=response.status_code,
            latency_ms=(time.monotonic() - start) * 1000.0,
        )
        response.headers.setdefault(REQUEST_ID_HEADER, request_id)
        return response

    # FastAPI.HTTPException subclasses the Starlette one, so one handler covers both.
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(InvalidTokenFormat, invalid_token_exception_handler)
    app.add_exception_handler(StoreUnavailable, store_unavailable_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # Mount versioned v1 API routes.
    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(push_tokens_router, prefix=f"/{API_VERSION}")
    app.include_router(webhooks_router, prefix=f"/{API_VERSION}")
    app.include_router(ops_router, prefix=f"/{API_VERSION}")

    # Unversioned aliases for clients released before /v1.
    app.include_router(health_router, include_in_schema=False)
    app.include_router(legacy_router)
    return app


app = create_app()
