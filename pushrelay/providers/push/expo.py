from __future__ import annotations

import logging
import re
import time
from typing import Any

import httpx

from pushrelay.core.config import Settings, get_settings
from pushrelay.core.errors import TransientProviderError
from pushrelay.providers.push.base import PushMessage, PushReceipt, PushTicket
from pushrelay.services.telemetry import record_external_call


logger = logging.getLogger(__name__)

# Limits published by the Expo push service.
EXPO_SEND_CHUNK_LIMIT = 100
EXPO_RECEIPT_CHUNK_LIMIT = 300

_BARE_TOKEN_RE = re.compile(r"^[a-z\d]{8}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{12}$", re.IGNORECASE)


def is_expo_push_token(token: object) -> bool:
    if not isinstance(token, str) or not token:
        return False
    if token.startswith(("ExponentPushToken[", "ExpoPushToken[")) and token.endswith("]"):
        return True
    return bool(_BARE_TOKEN_RE.match(token))


def _parse_outcome(raw: Any) -> dict[str, Any]:
    entry = raw if isinstance(raw, dict) else {}
    details = entry.get("details")
    return {
        "status": str(entry.get("status") or "error"),
        "message": entry.get("message"),
        "details": details if isinstance(details, dict) else {},
    }


class ExpoPushProvider:
    max_send_batch = EXPO_SEND_CHUNK_LIMIT
    max_receipt_batch = EXPO_RECEIPT_CHUNK_LIMIT

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        # Reuse a single client per provider for connection pooling.
        timeout_s = self._settings.ext_call_timeout_ms / 1000.0
        self._client = httpx.AsyncClient(timeout=timeout_s)
        return self._client

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "Content-Type": "application/json",
        }
        if self._settings.expo_access_token:
            headers["Authorization"] = f"Bearer {self._settings.expo_access_token}"
        return headers

    def is_valid_token(self, token: str) -> bool:
        return is_expo_push_token(token)

    async def _post(self, path: str, payload: Any) -> Any:
        url = f"{self._settings.expo_base_url.rstrip('/')}/{path}"
        start = time.monotonic()
        try:
            response = await self._get_client().post(url, json=payload, headers=self._headers())
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            record_external_call(
                integration=f"expo.{path}",
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            raise TransientProviderError(f"Expo {path} request failed: {exc}") from exc
        record_external_call(
            integration=f"expo.{path}",
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=True,
        )
        if isinstance(body, dict) and body.get("errors"):
            # Request-level errors (bad payload, auth) reject the whole chunk.
            raise TransientProviderError(f"Expo {path} rejected request: {body['errors']}")
        return body.get("data") if isinstance(body, dict) else None

    async def send(self, messages: list[PushMessage]) -> list[PushTicket]:
        if not messages:
            return []
        if len(messages) > self.max_send_batch:
            raise ValueError(f"Expo accepts at most {self.max_send_batch} messages per request")
        data = await self._post("send", [message.to_wire() for message in messages])
        if not isinstance(data, list) or len(data) != len(messages):
            raise TransientProviderError("Expo send returned tickets misaligned with the request")
        tickets: list[PushTicket] = []
        for raw in data:
            parsed = _parse_outcome(raw)
            tickets.append(PushTicket(id=raw.get("id") if isinstance(raw, dict) else None, **parsed))
        return tickets

    async def get_receipts(self, ticket_ids: list[str]) -> dict[str, PushReceipt]:
        if not ticket_ids:
            return {}
        if len(ticket_ids) > self.max_receipt_batch:
            raise ValueError(f"Expo accepts at most {self.max_receipt_batch} receipt ids per request")
        data = await self._post("getReceipts", {"ids": list(ticket_ids)})
        if not isinstance(data, dict):
            raise TransientProviderError("Expo getReceipts returned an unexpected payload")
        # Ids absent from the response are still pending on the provider side.
        return {str(key): PushReceipt(**_parse_outcome(raw)) for key, raw in data.items()}

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
