from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from pushrelay.core.errors import PermanentInvalidityError


# Provider error code meaning the device will never receive messages again.
DEVICE_NOT_REGISTERED = "DeviceNotRegistered"


@dataclass(frozen=True)
class PushMessage:
    to: str
    title: str
    body: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    sound: str | None = "default"
    priority: str = "high"
    channel_id: str | None = "default"

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"to": self.to, "title": self.title, "priority": self.priority}
        if self.body is not None:
            payload["body"] = self.body
        if self.data:
            payload["data"] = self.data
        if self.sound is not None:
            payload["sound"] = self.sound
        if self.channel_id is not None:
            payload["channelId"] = self.channel_id
        return payload


@dataclass(frozen=True)
class _Outcome:
    status: str
    message: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def error_code(self) -> str | None:
        code = self.details.get("error") if isinstance(self.details, dict) else None
        return str(code) if code else None

    @property
    def device_not_registered(self) -> bool:
        return not self.ok and self.error_code == DEVICE_NOT_REGISTERED

    def raise_for_device(self, token: str) -> None:
        if self.device_not_registered:
            raise PermanentInvalidityError(token)


@dataclass(frozen=True)
class PushTicket(_Outcome):
    # Immediate send outcome; ``id`` is the acknowledgment used for receipt lookups.
    id: str | None = None


@dataclass(frozen=True)
class PushReceipt(_Outcome):
    pass


class PushProvider(Protocol):
    max_send_batch: int
    max_receipt_batch: int

    def is_valid_token(self, token: str) -> bool:
        ...

    async def send(self, messages: list[PushMessage]) -> list[PushTicket]:
        ...

    async def get_receipts(self, ticket_ids: list[str]) -> dict[str, PushReceipt]:
        ...

    async def aclose(self) -> None:
        ...


def chunked(items: list, size: int) -> list[list]:
    # Re-chunk a registry page into provider-sized calls, preserving order.
    step = max(1, int(size))
    return [items[start : start + step] for start in range(0, len(items), step)]
