from __future__ import annotations

import json

import httpx
import pytest

from leadflow.core.config import GatewaySettings
from leadflow.core.domain import ChannelType
from leadflow.core.errors import TransportError, TransportErrorClass
from leadflow.dispatch import (
    InstagramTransport,
    LoggingTransport,
    WhatsAppCloudTransport,
    build_transports,
    classify_response,
)

pytestmark = pytest.mark.unit


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://graph.test"
    )


@pytest.mark.asyncio
async def test_whatsapp_text_send_posts_cloud_payload() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"messages": [{"id": "wamid.OUT"}]})

    transport = WhatsAppCloudTransport(
        token="token", phone_number_id="123", base_url="https://graph.test", client=_client(handler)
    )
    result = await transport.send("+971501234567", "Hello Ahmed")
    await transport.close()

    assert result.provider_message_id == "wamid.OUT"
    request = captured[0]
    assert request.url.path == "/123/messages"
    assert request.headers["Authorization"] == "Bearer token"
    payload = json.loads(request.content)
    assert payload["to"] == "971501234567"
    assert payload["type"] == "text"
    assert payload["text"]["body"] == "Hello Ahmed"


@pytest.mark.asyncio
async def test_whatsapp_media_send_uses_image_payload() -> None:
    payloads: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        payloads.append(json.loads(request.content))
        return httpx.Response(200, json={"messages": [{"id": "wamid.MEDIA"}]})

    transport = WhatsAppCloudTransport(
        token="token", phone_number_id="123", base_url="https://graph.test", client=_client(handler)
    )
    await transport.send("971501234567", "Brochure", media_ref="media-1")

    assert payloads[0]["type"] == "image"
    assert payloads[0]["image"] == {"id": "media-1", "caption": "Brochure"}


@pytest.mark.asyncio
async def test_instagram_send_returns_message_id() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/me/messages"
        body = json.loads(request.content)
        assert body["recipient"] == {"id": "igsid-1"}
        return httpx.Response(200, json={"recipient_id": "igsid-1", "message_id": "mid.OUT"})

    transport = InstagramTransport(
        token="token", base_url="https://graph.test", timeout=5, client=_client(handler)
    )

    assert (await transport.send("igsid-1", "Hi")).provider_message_id == "mid.OUT"


@pytest.mark.parametrize(
    ("response", "expected"),
    [
        (httpx.Response(401, json={"error": {"code": 190, "message": "expired token"}}), TransportErrorClass.AUTH),
        (httpx.Response(403, json={}), TransportErrorClass.AUTH),
        (httpx.Response(400, json={"error": {"code": 130429, "message": "throughput"}}), TransportErrorClass.RATE_LIMITED),
        (httpx.Response(404, json={}), TransportErrorClass.EXPIRED),
        (httpx.Response(400, json={"error": {"code": 131053, "message": "media upload error"}}), TransportErrorClass.EXPIRED),
        (httpx.Response(400, json={"error": {"code": 131026, "message": "undeliverable"}}), TransportErrorClass.INVALID_ADDRESS),
        (httpx.Response(400, json={"error": {"code": 100, "message": "Invalid recipient"}}), TransportErrorClass.INVALID_ADDRESS),
        (httpx.Response(500, json={"error": {"code": 2, "message": "service unavailable"}}), TransportErrorClass.TRANSIENT),
        (httpx.Response(502, text="bad gateway"), TransportErrorClass.TRANSIENT),
    ],
)
def test_classify_response(response: httpx.Response, expected: TransportErrorClass) -> None:
    assert classify_response(response).error_class is expected


def test_rate_limit_carries_retry_after_and_is_retryable() -> None:
    error = classify_response(httpx.Response(429, headers={"Retry-After": "7"}, json={}))

    assert error.error_class is TransportErrorClass.RATE_LIMITED
    assert error.retry_after == 7.0
    assert error.retryable is True
    assert classify_response(httpx.Response(401, json={})).retryable is False


@pytest.mark.asyncio
async def test_network_errors_are_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    transport = WhatsAppCloudTransport(
        token="token", phone_number_id="123", base_url="https://graph.test", client=_client(handler)
    )

    with pytest.raises(TransportError) as exc_info:
        await transport.send("971501234567", "Hi")
    assert exc_info.value.error_class is TransportErrorClass.TRANSIENT


@pytest.mark.asyncio
async def test_provider_error_is_raised_classified() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": {"code": 131026, "message": "not on whatsapp"}})

    transport = WhatsAppCloudTransport(
        token="token", phone_number_id="123", base_url="https://graph.test", client=_client(handler)
    )

    with pytest.raises(TransportError) as exc_info:
        await transport.send("971501234567", "Hi")
    assert exc_info.value.error_class is TransportErrorClass.INVALID_ADDRESS


@pytest.mark.asyncio
async def test_missing_token_is_an_auth_failure() -> None:
    transport = WhatsAppCloudTransport(
        token=None, phone_number_id="123", base_url="https://graph.test", client=_client(lambda r: None)
    )

    with pytest.raises(TransportError) as exc_info:
        await transport.send("971501234567", "Hi")
    assert exc_info.value.error_class is TransportErrorClass.AUTH


@pytest.mark.asyncio
async def test_logging_transport_returns_local_id() -> None:
    result = await LoggingTransport().send("visitor@example.com", "Thanks!")

    assert result.provider_message_id.startswith("local-")


def test_only_web_replies_go_to_the_logging_transport() -> None:
    transports = build_transports(GatewaySettings())

    assert ChannelType.SMS not in transports
    assert isinstance(transports[ChannelType.WEB], LoggingTransport)
    assert isinstance(transports[ChannelType.WHATSAPP], WhatsAppCloudTransport)
    assert isinstance(transports[ChannelType.INSTAGRAM], InstagramTransport)
