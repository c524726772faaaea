from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import delete, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from pushrelay.domain.models import TICKET_STATUS_UNCONFIRMED, NotificationTicket
from pushrelay.persistence.repos.push_tokens import _chunked


_ticket_table = NotificationTicket.__table__


def _insert_ignoring_duplicates(session: AsyncSession):
    # A racing duplicate job must not abort the page commit of the first one.
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(_ticket_table).on_conflict_do_nothing(
            index_elements=["content_key", "push_token_id"]
        )
    if dialect == "sqlite":
        return sqlite_insert(_ticket_table).on_conflict_do_nothing(
            index_elements=["content_key", "push_token_id"]
        )
    return insert(_ticket_table)


async def exists_for_content_key(session: AsyncSession, content_key: str) -> bool:
    result = await session.execute(
        select(NotificationTicket.id).where(NotificationTicket.content_key == content_key).limit(1)
    )
    return result.first() is not None


async def insert_many(session: AsyncSession, rows: list[dict[str, Any]]) -> int:
    """Insert ledger rows and return how many were actually written.

    Rows that collide on (content_key, push_token_id) are skipped and not counted.
    """
    if not rows:
        return 0
    payload = [{"status": TICKET_STATUS_UNCONFIRMED, **row} for row in rows]
    stmt = _insert_ignoring_duplicates(session).returning(_ticket_table.c.id)
    result = await session.execute(stmt, payload)
    return len(result.all())


async def list_by_status(session: AsyncSession, status: str) -> list[NotificationTicket]:
    result = await session.execute(
        select(NotificationTicket)
        .where(NotificationTicket.status == status)
        .order_by(NotificationTicket.id.asc())
    )
    return list(result.scalars().all())


async def list_created_since(session: AsyncSession, since: datetime) -> list[NotificationTicket]:
    result = await session.execute(
        select(NotificationTicket)
        .where(NotificationTicket.created_at >= since)
        .order_by(NotificationTicket.id.asc())
    )
    return list(result.scalars().all())


async def set_status(session: AsyncSession, ticket_row_ids: Iterable[int], status: str) -> int:
    values = sorted(set(ticket_row_ids))
    updated = 0
    for chunk in _chunked(values):
        result = await session.execute(
            update(NotificationTicket).where(NotificationTicket.id.in_(chunk)).values(status=status)
        )
        updated += result.rowcount or 0
    return updated


async def delete_by_ids(session: AsyncSession, ticket_row_ids: Iterable[int]) -> int:
    values = sorted(set(ticket_row_ids))
    removed = 0
    for chunk in _chunked(values):
        result = await session.execute(delete(NotificationTicket).where(NotificationTicket.id.in_(chunk)))
        removed += result.rowcount or 0
    return removed


async def delete_created_before(session: AsyncSession, cutoff: datetime) -> int:
    result = await session.execute(delete(NotificationTicket).where(NotificationTicket.created_at < cutoff))
    return result.rowcount or 0
