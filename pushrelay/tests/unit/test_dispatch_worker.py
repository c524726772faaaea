from __future__ import annotations

from datetime import datetime, timedelta, timezone

from arq import Retry
import pytest
from pydantic import ValidationError

from pushrelay.core.config import Settings
from pushrelay.core.errors import StoreUnavailable
from pushrelay.services.dispatch.queue import DispatchQueue
from pushrelay.workers import dispatch_worker
from pushrelay.workers.dispatch_worker import (
    WorkerSettings,
    _receipt_minutes,
    check_receipts_job,
    cleanup_tickets_job,
    dispatch_notification,
)
from pushrelay.tests.utils.fakes import (
    FakeArqRedis,
    ScriptedPushProvider,
    all_tickets,
    expo_token,
    ok_receipt,
    seed_tickets,
    seed_tokens,
    token_ids,
)


def _ctx(session_factory, *, job_try: int = 1, provider=None, redis=None) -> dict:
    settings = Settings(dispatch_max_tries=3, dispatch_retry_backoff_s=5, dispatch_page_size=50)
    return {
        "settings": settings,
        "job_try": job_try,
        "session_factory": session_factory,
        "provider": provider or ScriptedPushProvider(),
        "dispatch_queue": DispatchQueue(redis=redis or FakeArqRedis(), queue_name="notifications"),
    }


@pytest.mark.asyncio
async def test_dispatch_task_returns_report(session_factory) -> None:
    await seed_tokens(session_factory, [expo_token(i) for i in range(3)])
    result = await dispatch_notification(_ctx(session_factory), {"title": "Hi", "content_key": "post-1"})
    assert result["status"] == "completed"
    assert result["sent"] == 3


@pytest.mark.asyncio
async def test_store_outage_schedules_retry_with_backoff(session_factory, monkeypatch) -> None:
    async def down(*_args, **_kwargs):
        raise StoreUnavailable("down")

    monkeypatch.setattr(dispatch_worker, "dispatch_campaign", down)
    with pytest.raises(Retry) as excinfo:
        await dispatch_notification(_ctx(session_factory, job_try=2), {"title": "Hi"})
    assert excinfo.value.defer_score == 10_000


@pytest.mark.asyncio
async def test_exhausted_job_is_dead_lettered(session_factory, monkeypatch) -> None:
    async def down(*_args, **_kwargs):
        raise StoreUnavailable("down")

    redis = FakeArqRedis()
    monkeypatch.setattr(dispatch_worker, "dispatch_campaign", down)
    ctx = _ctx(session_factory, job_try=3, redis=redis)
    with pytest.raises(StoreUnavailable):
        await dispatch_notification(ctx, {"title": "Hi", "content_key": "post-7"})

    dead = await ctx["dispatch_queue"].list_dead_letters()
    assert len(dead) == 1
    assert dead[0]["payload"]["content_key"] == "post-7"
    assert dead[0]["job_try"] == 3


@pytest.mark.asyncio
async def test_malformed_payload_is_not_retried(session_factory) -> None:
    ctx = _ctx(session_factory)
    with pytest.raises(ValidationError):
        await dispatch_notification(ctx, {"title": ""})
    assert len(await ctx["dispatch_queue"].list_dead_letters()) == 1


@pytest.mark.asyncio
async def test_cron_jobs_reconcile_and_sweep(session_factory) -> None:
    await seed_tokens(session_factory, [expo_token(1)])
    token_id = (await token_ids(session_factory))[expo_token(1)]
    now = datetime.now(timezone.utc)
    await seed_tickets(session_factory, [("fresh", token_id)], content_key="post-1", created_at=now)
    await seed_tickets(
        session_factory, [("stale", token_id)], content_key="post-0", created_at=now - timedelta(days=5)
    )
    ctx = _ctx(session_factory, provider=ScriptedPushProvider(receipts={"fresh": ok_receipt()}))

    receipts = await check_receipts_job(ctx)
    assert receipts["resolved"] == 1
    assert await cleanup_tickets_job(ctx) == 1
    assert await all_tickets(session_factory) == []


def test_worker_settings_wire_queue_contract() -> None:
    assert WorkerSettings.keep_result == 0
    assert dispatch_notification in WorkerSettings.functions
    assert len(WorkerSettings.cron_jobs) == 2
    assert WorkerSettings.queue_name == WorkerSettings.settings.dispatch_queue_name
    assert _receipt_minutes(30) == {0, 30}
    assert _receipt_minutes(0) == set(range(60))
