from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import json
import logging
from typing import Any
from uuid import uuid4

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from pydantic import BaseModel, Field, field_validator

from pushrelay.core.config import Settings, get_settings


logger = logging.getLogger(__name__)

# Task name registered on the arq worker.
DISPATCH_TASK_NAME = "dispatch_notification"
DEAD_LETTER_KEY = "pushrelay:dispatch:dead"


class DispatchJobPayload(BaseModel):
    # Published job schema for producer-to-worker handoff.
    title: str = Field(min_length=1)
    body: str | None = None
    # Idempotency key for the campaign (the source post id); None for ad-hoc broadcasts.
    content_key: str | None = None
    # Free-form client-side navigation hint.
    route: str | None = None
    action: dict[str, Any] | None = None
    request_id: str = Field(default_factory=lambda: uuid4().hex)

    @field_validator("content_key", "route", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


def dispatch_job_id(payload: DispatchJobPayload) -> str:
    # arq refuses a second job with a live id, absorbing duplicate webhooks while queued.
    if payload.content_key:
        return f"dispatch:{payload.content_key}"
    return f"dispatch:adhoc:{payload.request_id}"


def retry_backoff_s(job_try: int, *, base_s: int) -> int:
    # Exponential backoff between whole-job attempts: base, 2*base, 4*base, ...
    attempt = max(1, int(job_try))
    return max(1, int(base_s)) * (2 ** (attempt - 1))


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DispatchQueue:
    """Producer-side handle on the dispatch queue.

    Either wraps an existing arq pool (worker context, not owned) or creates
    one lazily from settings and releases it on ``close()``.
    """

    def __init__(
        self,
        *,
        redis: ArqRedis | None = None,
        redis_settings: RedisSettings | None = None,
        queue_name: str,
        dead_letter_cap: int = 100,
    ) -> None:
        if redis is None and redis_settings is None:
            raise ValueError("DispatchQueue needs a redis pool or redis settings")
        self._redis = redis
        self._redis_settings = redis_settings
        self._owns_redis = redis is None
        self._lock = asyncio.Lock()
        self.queue_name = queue_name
        self.dead_letter_cap = max(1, int(dead_letter_cap))

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> DispatchQueue:
        settings = settings or get_settings()
        return cls(
            redis_settings=RedisSettings.from_dsn(settings.redis_url),
            queue_name=settings.dispatch_queue_name,
            dead_letter_cap=settings.dispatch_dead_letter_cap,
        )

    async def _get_redis(self) -> ArqRedis:
        if self._redis is not None:
            return self._redis
        async with self._lock:
            if self._redis is None:
                self._redis = await create_pool(
                    self._redis_settings,
                    default_queue_name=self.queue_name,
                )
        return self._redis

    async def close(self) -> None:
        if self._redis is not None and self._owns_redis:
            await self._redis.aclose()
            self._redis = None

    async def __aenter__(self) -> DispatchQueue:
        await self._get_redis()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def enqueue(self, payload: DispatchJobPayload) -> str:
        redis = await self._get_redis()
        job_id = dispatch_job_id(payload)
        job = await redis.enqueue_job(
            DISPATCH_TASK_NAME,
            payload.model_dump(),
            _job_id=job_id,
            _queue_name=self.queue_name,
        )
        if job is None:
            logger.info("dispatch job already queued job_id=%s", job_id)
            return job_id
        logger.info("dispatch job queued job_id=%s content_key=%s", job.job_id, payload.content_key)
        return job.job_id

    async def queue_depth(self) -> int | None:
        # Return None to signal Redis unavailability to ops endpoints.
        try:
            redis = await self._get_redis()
            return int(await redis.zcard(self.queue_name))
        except Exception:  # noqa: BLE001 - ops endpoints handle degraded Redis
            return None

    async def record_dead_letter(self, payload: dict[str, Any], *, reason: str, job_try: int) -> None:
        redis = await self._get_redis()
        entry = json.dumps(
            {
                "payload": payload,
                "reason": reason,
                "job_try": int(job_try),
                "failed_at": _utc_now().isoformat(),
            },
            sort_keys=True,
            default=str,
        )
        await redis.lpush(DEAD_LETTER_KEY, entry)
        # Retain only the newest entries.
        await redis.ltrim(DEAD_LETTER_KEY, 0, self.dead_letter_cap - 1)

    async def list_dead_letters(self, limit: int = 20) -> list[dict[str, Any]]:
        redis = await self._get_redis()
        raw_items = await redis.lrange(DEAD_LETTER_KEY, 0, max(1, int(limit)) - 1)
        items: list[dict[str, Any]] = []
        for raw in raw_items:
            value = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else str(raw)
            try:
                items.append(json.loads(value))
            except ValueError:
                logger.warning("unreadable dead-letter entry skipped")
        return items
