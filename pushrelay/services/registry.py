from __future__ import annotations

from collections.abc import Callable, Iterable
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pushrelay.core.errors import InvalidTokenFormat
from pushrelay.persistence.guards import store_errors
from pushrelay.persistence.repos import push_tokens as push_tokens_repo
from pushrelay.providers.push.expo import is_expo_push_token


logger = logging.getLogger(__name__)


def token_suffix(token: str) -> str:
    # Log only the tail of a device token.
    return token[-8:] if len(token) > 8 else token


async def register_token(
    session: AsyncSession,
    token: str,
    *,
    is_valid: Callable[[str], bool] = is_expo_push_token,
) -> bool:
    """Upsert a device token; returns True when a new row was created.

    Re-registering an existing token is a no-op. Two concurrent registrations
    of the same token race on the unique constraint and the loser is absorbed.
    """
    if not is_valid(token):
        raise InvalidTokenFormat(token)
    with store_errors("register"):
        if await push_tokens_repo.get_by_token(session, token) is not None:
            return False
        push_tokens_repo.add_token(session, token)
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            return False
    logger.info("push token registered token_suffix=%s", token_suffix(token))
    return True


async def unregister_token(session: AsyncSession, token: str) -> bool:
    # Not-found is success: the caller's goal (token absent) already holds.
    with store_errors("unregister"):
        removed = await push_tokens_repo.delete_by_tokens(session, [token])
        await session.commit()
    if removed:
        logger.info("push token unregistered token_suffix=%s", token_suffix(token))
    else:
        logger.info("push token already absent token_suffix=%s", token_suffix(token))
    return removed > 0


async def remove_tokens(session: AsyncSession, tokens: Iterable[str]) -> int:
    """Bulk-remove tokens and their ledger rows inside the caller's transaction.

    The caller commits, so removals land atomically with whatever else the
    unit of work writes (a dispatch page, a receipt batch).
    """
    with store_errors("remove_tokens"):
        return await push_tokens_repo.delete_by_tokens(session, tokens)


async def remove_token_ids(session: AsyncSession, token_ids: Iterable[int]) -> int:
    # Same contract as remove_tokens, keyed by registry id.
    with store_errors("remove_token_ids"):
        return await push_tokens_repo.delete_by_ids(session, token_ids)
