from __future__ import annotations

import asyncio
import logging
import time
from uuid import uuid4

from pushrelay.core.config import Settings, get_settings
from pushrelay.providers.push.base import PushMessage, PushReceipt, PushTicket
from pushrelay.providers.push.expo import (
    EXPO_RECEIPT_CHUNK_LIMIT,
    EXPO_SEND_CHUNK_LIMIT,
    is_expo_push_token,
)


logger = logging.getLogger(__name__)


class SimulatedPushProvider:
    """Load-test provider: accepts every message after a fixed delay.

    Nothing leaves the process, but tickets still flow into the ledger so the
    write path is exercised at realistic volume. Receipts always come back ok.
    """

    max_send_batch = EXPO_SEND_CHUNK_LIMIT
    max_receipt_batch = EXPO_RECEIPT_CHUNK_LIMIT

    def __init__(self, *, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self._latency_s = max(0, int(settings.simulated_latency_ms)) / 1000.0

    def is_valid_token(self, token: str) -> bool:
        return is_expo_push_token(token)

    async def send(self, messages: list[PushMessage]) -> list[PushTicket]:
        logger.warning("simulated provider: pretending to send %d messages", len(messages))
        await asyncio.sleep(self._latency_s)
        stamp = int(time.time() * 1000)
        return [PushTicket(status="ok", id=f"fake-{stamp}-{uuid4().hex}") for _ in messages]

    async def get_receipts(self, ticket_ids: list[str]) -> dict[str, PushReceipt]:
        return {ticket_id: PushReceipt(status="ok") for ticket_id in ticket_ids}

    async def aclose(self) -> None:
        return None
