from __future__ import annotations

import json

import httpx
import pytest

from pushrelay.core.config import Settings
from pushrelay.core.errors import TransientProviderError
from pushrelay.providers.push.base import PushMessage
from pushrelay.providers.push.expo import ExpoPushProvider, is_expo_push_token
from pushrelay.services.telemetry import external_latency_by_integration


BASE_URL = "https://push.test/--/api/v2/push"


def _provider(handler, **overrides) -> ExpoPushProvider:
    settings = Settings(expo_base_url=BASE_URL, **overrides)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ExpoPushProvider(client=client, settings=settings)


def test_is_expo_push_token_accepts_known_shapes() -> None:
    assert is_expo_push_token("ExponentPushToken[abc123]")
    assert is_expo_push_token("ExpoPushToken[abc123]")
    assert is_expo_push_token("a1b2c3d4-e5f6-a7b8-c9d0-e1f2a3b4c5d6")
    assert not is_expo_push_token("ExponentPushToken[abc123")
    assert not is_expo_push_token("not-a-token")
    assert not is_expo_push_token("")
    assert not is_expo_push_token(None)


@pytest.mark.asyncio
async def test_send_maps_tickets_positionally() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "data": [
                    {"status": "ok", "id": "ticket-a"},
                    {
                        "status": "error",
                        "message": "not registered",
                        "details": {"error": "DeviceNotRegistered"},
                    },
                ]
            },
        )

    provider = _provider(handler, expo_access_token="secret-token")
    tickets = await provider.send(
        [
            PushMessage(to="ExponentPushToken[a]", title="Hello", body="World", data={"postId": "p1"}),
            PushMessage(to="ExponentPushToken[b]", title="Hello"),
        ]
    )

    assert seen["url"] == f"{BASE_URL}/send"
    assert seen["auth"] == "Bearer secret-token"
    assert seen["body"][0] == {
        "to": "ExponentPushToken[a]",
        "title": "Hello",
        "body": "World",
        "data": {"postId": "p1"},
        "sound": "default",
        "priority": "high",
        "channelId": "default",
    }
    assert "body" not in seen["body"][1]
    assert tickets[0].ok and tickets[0].id == "ticket-a"
    assert not tickets[1].ok
    assert tickets[1].device_not_registered
    assert tickets[1].id is None


@pytest.mark.asyncio
async def test_send_without_access_token_omits_authorization() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"data": [{"status": "ok", "id": "t1"}]})

    provider = _provider(handler)
    await provider.send([PushMessage(to="ExponentPushToken[a]", title="Hi")])
    assert seen["auth"] is None


@pytest.mark.asyncio
async def test_send_http_failure_is_transient_and_recorded() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"errors": [{"code": "INTERNAL"}]})

    provider = _provider(handler)
    with pytest.raises(TransientProviderError):
        await provider.send([PushMessage(to="ExponentPushToken[a]", title="Hi")])

    stats = external_latency_by_integration(60)
    assert stats["expo.send"]["calls"] == 1
    assert stats["expo.send"]["failures"] == 1


@pytest.mark.asyncio
async def test_send_request_level_errors_reject_chunk() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"errors": [{"code": "PUSH_TOO_MANY_EXPERIENCE_IDS"}]})

    provider = _provider(handler)
    with pytest.raises(TransientProviderError):
        await provider.send([PushMessage(to="ExponentPushToken[a]", title="Hi")])


@pytest.mark.asyncio
async def test_send_rejects_misaligned_ticket_list() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": [{"status": "ok", "id": "only-one"}]})

    provider = _provider(handler)
    with pytest.raises(TransientProviderError):
        await provider.send(
            [
                PushMessage(to="ExponentPushToken[a]", title="Hi"),
                PushMessage(to="ExponentPushToken[b]", title="Hi"),
            ]
        )


@pytest.mark.asyncio
async def test_send_enforces_chunk_limit() -> None:
    provider = _provider(lambda request: httpx.Response(500))
    messages = [PushMessage(to=f"ExponentPushToken[{i}]", title="Hi") for i in range(101)]
    with pytest.raises(ValueError):
        await provider.send(messages)


@pytest.mark.asyncio
async def test_get_receipts_leaves_missing_ids_pending() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "data": {
                    "t1": {"status": "ok"},
                    "t2": {"status": "error", "message": "gone", "details": {"error": "DeviceNotRegistered"}},
                }
            },
        )

    provider = _provider(handler)
    receipts = await provider.get_receipts(["t1", "t2", "t3"])

    assert seen["url"] == f"{BASE_URL}/getReceipts"
    assert seen["body"] == {"ids": ["t1", "t2", "t3"]}
    assert receipts["t1"].ok
    assert receipts["t2"].device_not_registered
    assert "t3" not in receipts


@pytest.mark.asyncio
async def test_aclose_leaves_injected_client_open() -> None:
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    provider = ExpoPushProvider(client=client, settings=Settings(expo_base_url=BASE_URL))
    await provider.aclose()
    assert not client.is_closed
    await client.aclose()
