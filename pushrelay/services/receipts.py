"""Receipt reconciliation for tickets accepted at send time.

Two ledger policies are supported:

``delete_on_resolve``
    Tickets created within the lookback window are checked; every resolved
    receipt deletes its ticket. The ticket already did its job (blocking a
    duplicate send) and the age-based sweep covers the rest.

``status``
    Tickets carry ``unconfirmed``/``confirmed``/``failed`` and are kept for
    audit until the retention sweep removes them.

Under both policies a ``DeviceNotRegistered`` receipt removes the owning push
token, which cascades to all of its tickets. Receipts missing from a provider
response are still pending and are left for the next run.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pushrelay.domain.models import (
    TICKET_STATUS_CONFIRMED,
    TICKET_STATUS_FAILED,
    TICKET_STATUS_UNCONFIRMED,
)
from pushrelay.persistence.guards import store_errors
from pushrelay.persistence.repos import tickets as tickets_repo
from pushrelay.providers.push.base import PushProvider, chunked
from pushrelay.services.registry import remove_token_ids
from pushrelay.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

RECEIPT_POLICY_DELETE_ON_RESOLVE = "delete_on_resolve"
RECEIPT_POLICY_STATUS = "status"
RECEIPT_POLICIES = (RECEIPT_POLICY_DELETE_ON_RESOLVE, RECEIPT_POLICY_STATUS)


@dataclass
class ReceiptReport:
    policy: str
    checked: int = 0
    resolved: int = 0
    pending: int = 0
    confirmed: int = 0
    failed: int = 0
    tickets_deleted: int = 0
    tokens_removed: int = 0
    failed_chunks: int = 0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_policy(policy: str) -> str:
    value = (policy or "").strip().lower()
    if value not in RECEIPT_POLICIES:
        raise ValueError(f"Unsupported receipt policy: {policy}")
    return value


async def _load_pending(
    session: AsyncSession,
    *,
    policy: str,
    lookback_hours: int,
    now: datetime,
) -> list[tuple[int, str, int]]:
    with store_errors("load_tickets"):
        if policy == RECEIPT_POLICY_STATUS:
            rows = await tickets_repo.list_by_status(session, TICKET_STATUS_UNCONFIRMED)
        else:
            since = now - timedelta(hours=max(1, int(lookback_hours)))
            rows = await tickets_repo.list_created_since(session, since)
    return [(row.id, row.ticket_id, row.push_token_id) for row in rows]


async def check_receipts(
    *,
    session_factory: async_sessionmaker[AsyncSession],
    provider: PushProvider,
    policy: str = RECEIPT_POLICY_DELETE_ON_RESOLVE,
    lookback_hours: int = 24,
    now: datetime | None = None,
) -> ReceiptReport:
    policy = normalize_policy(policy)
    now = now or _utc_now()
    report = ReceiptReport(policy=policy)

    async with session_factory() as session:
        pending = await _load_pending(session, policy=policy, lookback_hours=lookback_hours, now=now)
    if not pending:
        logger.info("no pending receipts to check policy=%s", policy)
        return report

    by_ticket: dict[str, list[tuple[int, int]]] = defaultdict(list)
    for row_id, ticket_id, token_id in pending:
        by_ticket[ticket_id].append((row_id, token_id))
    report.checked = len(pending)
    logger.info("checking %d receipts policy=%s", report.checked, policy)

    confirmed_rows: set[int] = set()
    failed_rows: set[int] = set()
    resolved_rows: set[int] = set()
    token_ids_to_remove: set[int] = set()

    for chunk in chunked(list(by_ticket), provider.max_receipt_batch):
        try:
            receipts = await provider.get_receipts(chunk)
        except Exception:  # noqa: BLE001 - a failed lookup leaves its chunk for the next run.
            logger.exception("receipt lookup failed size=%d", len(chunk))
            report.failed_chunks += 1
            continue
        for ticket_id, receipt in receipts.items():
            entries = by_ticket.get(ticket_id)
            if not entries:
                continue
            for row_id, token_id in entries:
                resolved_rows.add(row_id)
                if receipt.ok:
                    confirmed_rows.add(row_id)
                    continue
                logger.warning(
                    "receipt error ticket=%s error=%s message=%s",
                    ticket_id,
                    receipt.error_code,
                    receipt.message,
                )
                if receipt.device_not_registered:
                    token_ids_to_remove.add(token_id)
                else:
                    failed_rows.add(row_id)

    report.resolved = len(resolved_rows)
    report.pending = report.checked - report.resolved
    report.confirmed = len(confirmed_rows)
    report.failed = len(failed_rows)

    async with session_factory() as session:
        with store_errors("apply_receipts"):
            if token_ids_to_remove:
                # Removing the token cascades to every ticket it owns.
                report.tokens_removed = await remove_token_ids(session, token_ids_to_remove)
            if policy == RECEIPT_POLICY_STATUS:
                await tickets_repo.set_status(session, confirmed_rows, TICKET_STATUS_CONFIRMED)
                await tickets_repo.set_status(session, failed_rows, TICKET_STATUS_FAILED)
            else:
                report.tickets_deleted = await tickets_repo.delete_by_ids(session, resolved_rows)
            await session.commit()

    increment_counter("receipts.checked", report.checked)
    increment_counter("receipts.resolved", report.resolved)
    increment_counter("receipts.tokens_removed", report.tokens_removed)
    logger.info(
        "receipt check finished policy=%s resolved=%d pending=%d tokens_removed=%d",
        policy,
        report.resolved,
        report.pending,
        report.tokens_removed,
    )
    return report
