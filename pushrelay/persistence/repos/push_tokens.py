from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pushrelay.domain.models import NotificationTicket, PushToken


# Stay well below bind-parameter limits on every backend.
_IN_CLAUSE_CHUNK = 500


def _chunked(values: list, size: int = _IN_CLAUSE_CHUNK) -> Iterable[list]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


async def get_by_token(session: AsyncSession, token: str) -> PushToken | None:
    result = await session.execute(select(PushToken).where(PushToken.token == token))
    return result.scalar_one_or_none()


def add_token(session: AsyncSession, token: str) -> PushToken:
    # Let the database assign the id so scan order follows insertion order.
    row = PushToken(token=token)
    session.add(row)
    return row


async def list_batch(
    session: AsyncSession,
    *,
    cursor: int | None,
    limit: int,
) -> tuple[list[PushToken], int | None]:
    # Keyset pagination: rows inserted or deleted mid-scan never shift later pages.
    stmt = select(PushToken).order_by(PushToken.id.asc()).limit(max(1, int(limit)))
    if cursor is not None:
        stmt = stmt.where(PushToken.id > cursor)
    rows = list((await session.execute(stmt)).scalars().all())
    if not rows:
        return [], None
    return rows, rows[-1].id


async def delete_by_tokens(session: AsyncSession, tokens: Iterable[str]) -> int:
    # Delete ledger rows explicitly; sqlite does not enforce ON DELETE CASCADE by default.
    values = sorted(set(tokens))
    removed = 0
    for chunk in _chunked(values):
        owned = select(PushToken.id).where(PushToken.token.in_(chunk))
        await session.execute(
            delete(NotificationTicket).where(NotificationTicket.push_token_id.in_(owned))
        )
        result = await session.execute(delete(PushToken).where(PushToken.token.in_(chunk)))
        removed += result.rowcount or 0
    return removed


async def delete_by_ids(session: AsyncSession, token_ids: Iterable[int]) -> int:
    values = sorted(set(token_ids))
    removed = 0
    for chunk in _chunked(values):
        await session.execute(
            delete(NotificationTicket).where(NotificationTicket.push_token_id.in_(chunk))
        )
        result = await session.execute(delete(PushToken).where(PushToken.id.in_(chunk)))
        removed += result.rowcount or 0
    return removed


async def count_tokens(session: AsyncSession) -> int:
    result = await session.execute(select(func.count()).select_from(PushToken))
    return int(result.scalar_one())


async def existing_ids(
    session: AsyncSession,
    token_ids: Iterable[int],
    *,
    lock_rows: bool = False,
) -> set[int]:
    # Tokens may be unregistered between the page read and the page commit.
    values = sorted(set(token_ids))
    found: set[int] = set()
    for chunk in _chunked(values):
        stmt = select(PushToken.id).where(PushToken.id.in_(chunk))
        if lock_rows:
            # FOR KEY SHARE holds off deletes until commit; sqlite renders no lock clause.
            stmt = stmt.with_for_update(key_share=True)
        result = await session.execute(stmt)
        found.update(int(value) for value in result.scalars().all())
    return found
