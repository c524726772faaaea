from __future__ import annotations

import logging
from typing import Any

from arq import Retry, cron
from arq.connections import RedisSettings

from pushrelay.core.config import get_settings
from pushrelay.core.logging import configure_logging
from pushrelay.persistence.db import build_engine, build_session_factory
from pushrelay.persistence.guards import is_store_unavailable
from pushrelay.providers.push.factory import get_push_provider
from pushrelay.services.dispatch.fanout import dispatch_campaign
from pushrelay.services.dispatch.queue import DispatchJobPayload, DispatchQueue, retry_backoff_s
from pushrelay.services.maintenance import cleanup_old_tickets
from pushrelay.services.receipts import check_receipts


logger = logging.getLogger(__name__)


def _is_retryable(exc: Exception) -> bool:
    # Only store outages are worth another attempt; provider failures are absorbed per chunk.
    return is_store_unavailable(exc)


async def dispatch_notification(ctx: dict[str, Any], payload: dict[str, Any]) -> dict[str, Any]:
    settings = ctx["settings"]
    job_try = int(ctx.get("job_try") or 1)
    try:
        job = DispatchJobPayload.model_validate(payload)
        report = await dispatch_campaign(
            job,
            session_factory=ctx["session_factory"],
            provider=ctx["provider"],
            page_size=settings.dispatch_page_size,
        )
    except Exception as exc:
        if _is_retryable(exc) and job_try < settings.dispatch_max_tries:
            defer = retry_backoff_s(job_try, base_s=settings.dispatch_retry_backoff_s)
            logger.warning(
                "dispatch attempt %d/%d failed, retrying in %ds: %s",
                job_try,
                settings.dispatch_max_tries,
                defer,
                exc,
            )
            raise Retry(defer=defer) from exc
        logger.exception("dispatch job dead after %d attempts", job_try)
        await ctx["dispatch_queue"].record_dead_letter(payload, reason=repr(exc), job_try=job_try)
        raise
    return report.as_dict()


async def check_receipts_job(ctx: dict[str, Any]) -> dict[str, Any]:
    settings = ctx["settings"]
    report = await check_receipts(
        session_factory=ctx["session_factory"],
        provider=ctx["provider"],
        policy=settings.receipt_policy,
        lookback_hours=settings.receipt_lookback_hours,
    )
    return report.as_dict()


async def cleanup_tickets_job(ctx: dict[str, Any]) -> int:
    settings = ctx["settings"]
    async with ctx["session_factory"]() as session:
        deleted = await cleanup_old_tickets(
            session,
            retention_hours=settings.ticket_retention_hours,
            lookback_hours=settings.receipt_lookback_hours,
        )
        await session.commit()
    return deleted


async def _startup(ctx: dict[str, Any]) -> None:
    # Acquire store and provider connections once per worker process.
    configure_logging()
    settings = get_settings()
    engine = build_engine(settings)
    ctx["settings"] = settings
    ctx["engine"] = engine
    ctx["session_factory"] = build_session_factory(engine)
    ctx["provider"] = get_push_provider(settings)
    # Reuse the worker's own pool; the queue handle must not close it.
    ctx["dispatch_queue"] = DispatchQueue(
        redis=ctx["redis"],
        queue_name=settings.dispatch_queue_name,
        dead_letter_cap=settings.dispatch_dead_letter_cap,
    )
    logger.info("dispatch worker started provider=%s", settings.push_provider)


async def _shutdown(ctx: dict[str, Any]) -> None:
    provider = ctx.get("provider")
    if provider is not None:
        await provider.aclose()
    engine = ctx.get("engine")
    if engine is not None:
        await engine.dispose()
    logger.info("dispatch worker stopped")


def _receipt_minutes(every: int) -> set[int]:
    step = min(60, max(1, int(every)))
    return set(range(0, 60, step))


class WorkerSettings:
    # Keep worker settings as class attributes for ARQ CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.dispatch_queue_name
    max_tries = max(1, int(settings.dispatch_max_tries))
    max_jobs = max(1, int(settings.dispatch_max_jobs))
    job_timeout = max(60, int(settings.dispatch_job_timeout_s))
    keep_result = 0
    functions = [dispatch_notification]
    cron_jobs = [
        cron(check_receipts_job, minute=_receipt_minutes(settings.receipt_check_minutes)),
        cron(cleanup_tickets_job, minute={int(settings.ticket_cleanup_minute) % 60}),
    ]
    on_startup = _startup
    on_shutdown = _shutdown
