from __future__ import annotations

import argparse
import asyncio

from pushrelay.core.config import get_settings
from pushrelay.core.logging import configure_logging
from pushrelay.persistence.db import SessionLocal, engine
from pushrelay.providers.push.factory import get_push_provider
from pushrelay.services.receipts import RECEIPT_POLICIES, check_receipts


def _build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Run one receipt reconciliation pass.")
    parser.add_argument("--policy", choices=RECEIPT_POLICIES, default=settings.receipt_policy)
    parser.add_argument(
        "--lookback-hours",
        type=int,
        default=settings.receipt_lookback_hours,
        help="Ticket age window checked under delete_on_resolve",
    )
    return parser


async def _run(args: argparse.Namespace) -> None:
    # Same pass the worker cron runs, for manual backfills and debugging.
    configure_logging()
    provider = get_push_provider()
    try:
        report = await check_receipts(
            session_factory=SessionLocal,
            provider=provider,
            policy=args.policy,
            lookback_hours=args.lookback_hours,
        )
    finally:
        await provider.aclose()
        await engine.dispose()
    for key, value in report.as_dict().items():
        print(f"{key}={value}")


if __name__ == "__main__":
    asyncio.run(_run(_build_parser().parse_args()))
