from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from pushrelay.persistence.guards import store_errors
from pushrelay.persistence.repos import tickets as tickets_repo


logger = logging.getLogger(__name__)


def effective_retention_hours(*, retention_hours: int, lookback_hours: int) -> int:
    # Never sweep tickets the receipt check may still need.
    if retention_hours <= lookback_hours:
        clamped = lookback_hours + 1
        logger.warning(
            "ticket retention %dh does not exceed receipt lookback %dh; using %dh",
            retention_hours,
            lookback_hours,
            clamped,
        )
        return clamped
    return retention_hours


async def cleanup_old_tickets(
    session: AsyncSession,
    *,
    retention_hours: int,
    lookback_hours: int,
    now: datetime | None = None,
) -> int:
    # Single unconditional bulk delete; callers commit.
    hours = effective_retention_hours(retention_hours=retention_hours, lookback_hours=lookback_hours)
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(hours=hours)
    with store_errors("cleanup_old_tickets"):
        deleted = await tickets_repo.delete_created_before(session, cutoff)
    logger.info("ticket cleanup removed %d tickets older than %dh", deleted, hours)
    return deleted
