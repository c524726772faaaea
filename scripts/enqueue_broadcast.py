from __future__ import annotations

import argparse
import asyncio
import json
import sys

from pushrelay.core.logging import configure_logging
from pushrelay.services.dispatch.queue import DispatchJobPayload, DispatchQueue


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Enqueue a notification for every registered device.")
    parser.add_argument("--title", required=True, help="Notification title")
    parser.add_argument("--body", default=None, help="Notification body")
    parser.add_argument("--content-key", default=None, help="Idempotency key, e.g. a post id")
    parser.add_argument("--route", default=None, help="Client navigation hint")
    parser.add_argument("--action", default=None, help="JSON object describing the tap action")
    return parser


async def _run(args: argparse.Namespace) -> int:
    configure_logging()
    try:
        action = json.loads(args.action) if args.action else None
    except ValueError as exc:
        print(f"INVALID_ACTION: {exc}", file=sys.stderr)
        return 2
    payload = DispatchJobPayload(
        title=args.title,
        body=args.body,
        content_key=args.content_key,
        route=args.route,
        action=action,
    )
    async with DispatchQueue.from_settings() as dispatch_queue:
        job_id = await dispatch_queue.enqueue(payload)
    print(f"job_id={job_id}")
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(_run(_build_parser().parse_args())))
