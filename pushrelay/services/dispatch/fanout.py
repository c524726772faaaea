"""Campaign fan-out: one dispatch job -> many provider send calls.

The registry is walked with a keyset cursor one page at a time. Each page is
re-chunked to the provider's batch limit, chunks are sent concurrently, and
the page's outcomes are committed in one transaction before the cursor moves.
The page boundary is the only synchronization point.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
import logging
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pushrelay.core.errors import PermanentInvalidityError
from pushrelay.persistence.guards import store_errors
from pushrelay.persistence.repos import push_tokens as push_tokens_repo
from pushrelay.persistence.repos import tickets as tickets_repo
from pushrelay.providers.push.base import PushMessage, PushProvider, PushTicket, chunked
from pushrelay.services.dispatch.queue import DispatchJobPayload
from pushrelay.services.registry import remove_tokens, token_suffix
from pushrelay.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

DISPATCH_STATUS_COMPLETED = "completed"
DISPATCH_STATUS_DUPLICATE = "duplicate"
PAGE_COMMIT_ATTEMPTS = 3


@dataclass
class DispatchReport:
    content_key: str | None
    status: str = DISPATCH_STATUS_COMPLETED
    pages: int = 0
    processed: int = 0
    skipped_invalid: int = 0
    sent: int = 0
    rejected: int = 0
    removed: int = 0
    failed_chunks: int = 0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class _PageOutcome:
    tickets: list[dict[str, Any]] = field(default_factory=list)
    invalid_tokens: set[str] = field(default_factory=set)
    skipped_invalid: int = 0
    rejected: int = 0
    failed_chunks: int = 0


def build_message(job: DispatchJobPayload, token: str) -> PushMessage:
    data: dict[str, Any] = {}
    if job.content_key:
        data["postId"] = job.content_key
    if job.route:
        data["route"] = job.route
    if job.action:
        data["action"] = job.action
    return PushMessage(to=token, title=job.title, body=job.body, data=data)


async def _send_chunk(provider: PushProvider, chunk: list[PushMessage]) -> list[PushTicket] | None:
    try:
        tickets = await provider.send(chunk)
    except Exception:  # noqa: BLE001 - one failed chunk must not abort the page.
        logger.exception("push chunk failed size=%d", len(chunk))
        return None
    if len(tickets) != len(chunk):
        logger.error("push chunk returned %d tickets for %d messages", len(tickets), len(chunk))
        return None
    return tickets


async def _send_page(
    job: DispatchJobPayload,
    page: list[tuple[int, str]],
    provider: PushProvider,
    chunk_size: int,
) -> _PageOutcome:
    outcome = _PageOutcome()
    token_ids: dict[str, int] = {}
    messages: list[PushMessage] = []
    for token_id, token in page:
        if not provider.is_valid_token(token):
            outcome.skipped_invalid += 1
            continue
        token_ids[token] = token_id
        messages.append(build_message(job, token))

    chunks = chunked(messages, chunk_size)
    results = await asyncio.gather(*(_send_chunk(provider, chunk) for chunk in chunks))

    # Tickets are positionally aligned with their own chunk, never with the page.
    for chunk, tickets in zip(chunks, results):
        if tickets is None:
            outcome.failed_chunks += 1
            continue
        for message, ticket in zip(chunk, tickets):
            if ticket.ok and ticket.id:
                outcome.tickets.append(
                    {
                        "ticket_id": ticket.id,
                        "push_token_id": token_ids[message.to],
                        "content_key": job.content_key,
                        "route": job.route,
                    }
                )
                continue
            outcome.rejected += 1
            try:
                ticket.raise_for_device(message.to)
            except PermanentInvalidityError as exc:
                outcome.invalid_tokens.add(exc.token)
                continue
            logger.warning(
                "push rejected token_suffix=%s error=%s message=%s",
                token_suffix(message.to),
                ticket.error_code,
                ticket.message,
            )
    return outcome


async def _write_page(session: AsyncSession, outcome: _PageOutcome) -> tuple[int, int]:
    with store_errors("page_commit"):
        inserted = 0
        rows = outcome.tickets
        if rows:
            still_present = await push_tokens_repo.existing_ids(
                session, (row["push_token_id"] for row in rows), lock_rows=True
            )
            rows = [row for row in rows if row["push_token_id"] in still_present]
            inserted = await tickets_repo.insert_many(session, rows)
        removed = 0
        if outcome.invalid_tokens:
            removed = await remove_tokens(session, outcome.invalid_tokens)
        await session.commit()
    return inserted, removed


async def _commit_page(
    session_factory: async_sessionmaker[AsyncSession],
    outcome: _PageOutcome,
) -> tuple[int, int]:
    """Persist one page's tickets and removals; returns (inserted, removed).

    A registry delete that commits between the presence check and the insert
    surfaces as a foreign key violation on backends without row locks. The
    page is then rewritten from a fresh presence check.
    """
    attempt = 1
    while True:
        async with session_factory() as session:
            try:
                return await _write_page(session, outcome)
            except IntegrityError:
                await session.rollback()
                if attempt >= PAGE_COMMIT_ATTEMPTS:
                    raise
        logger.warning("page commit lost a registry race attempt=%d; retrying", attempt)
        attempt += 1


async def is_duplicate(session_factory: async_sessionmaker[AsyncSession], content_key: str) -> bool:
    async with session_factory() as session:
        with store_errors("idempotency_check"):
            return await tickets_repo.exists_for_content_key(session, content_key)


async def dispatch_campaign(
    job: DispatchJobPayload,
    *,
    session_factory: async_sessionmaker[AsyncSession],
    provider: PushProvider,
    page_size: int = 1000,
    chunk_size: int | None = None,
) -> DispatchReport:
    report = DispatchReport(content_key=job.content_key)
    # A caller may shrink chunks below the provider limit, never grow them.
    chunk_size = min(chunk_size or provider.max_send_batch, provider.max_send_batch)
    logger.info("dispatch started title=%r content_key=%s request_id=%s", job.title, job.content_key, job.request_id)

    # Redelivered or duplicate producer jobs stop here without sending anything.
    if job.content_key and await is_duplicate(session_factory, job.content_key):
        logger.info("dispatch skipped: content_key=%s already processed", job.content_key)
        increment_counter("dispatch.duplicates")
        report.status = DISPATCH_STATUS_DUPLICATE
        return report

    cursor: int | None = None
    while True:
        async with session_factory() as session:
            with store_errors("list_batch"):
                rows, next_cursor = await push_tokens_repo.list_batch(
                    session, cursor=cursor, limit=page_size
                )
            page = [(row.id, row.token) for row in rows]
        if not page:
            break

        logger.debug("dispatch page cursor=%s size=%d", cursor, len(page))
        outcome = await _send_page(job, page, provider, chunk_size)
        inserted, removed = await _commit_page(session_factory, outcome)

        report.pages += 1
        report.processed += len(page)
        report.skipped_invalid += outcome.skipped_invalid
        report.sent += inserted
        report.rejected += outcome.rejected
        report.removed += removed
        report.failed_chunks += outcome.failed_chunks
        if removed:
            logger.info("removed %d unregistered devices", removed)

        cursor = next_cursor
        # Yield between pages so the worker stays responsive on small hosts.
        await asyncio.sleep(0)

    increment_counter("dispatch.jobs")
    increment_counter("dispatch.sent", report.sent)
    increment_counter("dispatch.rejected", report.rejected)
    increment_counter("dispatch.tokens_removed", report.removed)
    increment_counter("dispatch.failed_chunks", report.failed_chunks)
    logger.info(
        "dispatch finished content_key=%s pages=%d processed=%d sent=%d removed=%d failed_chunks=%d",
        job.content_key,
        report.pages,
        report.processed,
        report.sent,
        report.removed,
        report.failed_chunks,
    )
    return report
