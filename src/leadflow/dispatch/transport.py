"""Outbound send transports with classified failures."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol
from uuid import uuid4

import httpx

from leadflow.core.config import GatewaySettings
from leadflow.core.domain import ChannelType
from leadflow.core.errors import TransportError, TransportErrorClass

logger = logging.getLogger(__name__)

# Graph API error codes meaning "recipient cannot be messaged"
_RECIPIENT_ERROR_CODES = {131026, 131030, 131051, 551}
# Graph API error codes meaning "referenced media no longer resolvable"
_MEDIA_ERROR_CODES = {131052, 131053}


@dataclass(slots=True, frozen=True)
class SendResult:
    provider_message_id: str | None


class MessageTransport(Protocol):
    """Interface implemented by channel send transports."""

    async def send(self, to: str, text: str, media_ref: str | None = None) -> SendResult:
        ...


def classify_response(response: httpx.Response) -> TransportError:
    """Translate a non-2xx provider response into a :class:`TransportError`."""

    status = response.status_code
    error: dict[str, Any] = {}
    try:
        body = response.json()
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            error = body["error"]
    except ValueError:
        pass
    code = error.get("code")
    message = str(error.get("message") or response.text or f"HTTP {status}")[:500]
    details = {"status": status, "code": code}

    if status in (401, 403) or code == 190:
        return TransportError(TransportErrorClass.AUTH, message, details=details)
    if status == 429 or code in (4, 80007, 130429):
        retry_after = response.headers.get("retry-after")
        return TransportError(
            TransportErrorClass.RATE_LIMITED,
            message,
            retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
            details=details,
        )
    if status in (404, 410) or code in _MEDIA_ERROR_CODES:
        return TransportError(TransportErrorClass.EXPIRED, message, details=details)
    if status == 400 and (
        code in _RECIPIENT_ERROR_CODES or "recipient" in message.lower()
    ):
        return TransportError(TransportErrorClass.INVALID_ADDRESS, message, details=details)
    return TransportError(TransportErrorClass.TRANSIENT, message, details=details)


class _GraphTransport:
    def __init__(
        self,
        *,
        token: str | None,
        base_url: str,
        timeout: float,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._token = token
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self._token:
            raise TransportError(TransportErrorClass.AUTH, "provider token not configured")
        try:
            response = await self._client.post(
                path,
                json=payload,
                headers={"Authorization": f"Bearer {self._token}"},
            )
        except httpx.HTTPError as exc:
            logger.warning("transport.network_error", extra={"path": path, "error": str(exc)})
            raise TransportError(TransportErrorClass.TRANSIENT, str(exc)) from exc
        if response.is_error:
            raise classify_response(response)
        return response.json()


class WhatsAppCloudTransport(_GraphTransport):
    """WhatsApp Cloud API ``/{phone_number_id}/messages`` sender."""

    def __init__(
        self,
        *,
        token: str | None,
        phone_number_id: str | None,
        base_url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(token=token, base_url=base_url, timeout=timeout, client=client)
        self._phone_number_id = phone_number_id

    async def send(self, to: str, text: str, media_ref: str | None = None) -> SendResult:
        payload: dict[str, Any] = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to.lstrip("+"),
        }
        if media_ref:
            payload["type"] = "image"
            payload["image"] = {"id": media_ref, "caption": text}
        else:
            payload["type"] = "text"
            payload["text"] = {"preview_url": False, "body": text}
        body = await self._post(f"/{self._phone_number_id}/messages", payload)
        messages = body.get("messages") or [{}]
        return SendResult(provider_message_id=messages[0].get("id"))


class InstagramTransport(_GraphTransport):
    """Instagram Messaging API ``/me/messages`` sender."""

    async def send(self, to: str, text: str, media_ref: str | None = None) -> SendResult:
        message: dict[str, Any]
        if media_ref:
            message = {"attachment": {"type": "image", "payload": {"attachment_id": media_ref}}}
        else:
            message = {"text": text}
        body = await self._post(
            "/me/messages",
            {"recipient": {"id": to}, "message": message, "messaging_type": "RESPONSE"},
        )
        return SendResult(provider_message_id=body.get("message_id"))


class LoggingTransport:
    """Transport for the web channel and local development: logs the reply."""

    async def send(self, to: str, text: str, media_ref: str | None = None) -> SendResult:
        provider_message_id = f"local-{uuid4().hex}"
        logger.info(
            "transport.logged",
            extra={"to": to, "provider_message_id": provider_message_id, "chars": len(text)},
        )
        return SendResult(provider_message_id=provider_message_id)


def build_transports(settings: GatewaySettings) -> dict[ChannelType, MessageTransport]:
    whatsapp = WhatsAppCloudTransport(
        token=settings.whatsapp_token,
        phone_number_id=settings.whatsapp_phone_number_id,
        base_url=settings.graph_base_url,
        timeout=settings.send_timeout_seconds,
    )
    instagram = InstagramTransport(
        token=settings.instagram_token,
        base_url=settings.graph_base_url,
        timeout=settings.send_timeout_seconds,
    )
    # no SMS provider is integrated; the guard abandons SMS replies to a human task
    return {
        ChannelType.WHATSAPP: whatsapp,
        ChannelType.INSTAGRAM: instagram,
        ChannelType.WEB: LoggingTransport(),
    }
