from __future__ import annotations

import argparse
import asyncio

from pushrelay.core.config import get_settings
from pushrelay.core.logging import configure_logging
from pushrelay.persistence.db import SessionLocal, engine
from pushrelay.services.maintenance import cleanup_old_tickets


def _build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Delete notification tickets past retention.")
    parser.add_argument("--retention-hours", type=int, default=settings.ticket_retention_hours)
    return parser


async def prune(retention_hours: int) -> None:
    configure_logging()
    try:
        async with SessionLocal() as session:
            deleted = await cleanup_old_tickets(
                session,
                retention_hours=retention_hours,
                lookback_hours=get_settings().receipt_lookback_hours,
            )
            await session.commit()
    finally:
        await engine.dispose()
    print(f"pruned_notification_tickets={deleted}")


if __name__ == "__main__":
    asyncio.run(prune(_build_parser().parse_args().retention_hours))
