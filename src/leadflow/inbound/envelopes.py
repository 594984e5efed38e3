"""Normalize provider webhook bodies into :class:`InboundEnvelope` objects."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from leadflow.core.domain import (
    ChannelType,
    DeliveryStatusUpdate,
    InboundEnvelope,
    MessageType,
)
from leadflow.core.errors import ValidationError

logger = logging.getLogger(__name__)

_WHATSAPP_MEDIA_TYPES = ("image", "document", "audio", "video", "sticker")


@dataclass(slots=True)
class ParsedWebhook:
    envelopes: list[InboundEnvelope] = field(default_factory=list)
    statuses: list[DeliveryStatusUpdate] = field(default_factory=list)
    rejected: int = 0


def parse_webhook(channel: ChannelType, payload: Any) -> ParsedWebhook:
    """Extract every inbound message and status callback from one delivery.

    Individual malformed events are skipped and counted; a body that is not a
    JSON object raises :class:`ValidationError`.
    """

    if not isinstance(payload, Mapping):
        raise ValidationError("webhook body must be a JSON object")

    parsed = ParsedWebhook()
    if isinstance(payload.get("events"), list):
        _parse_generic(channel, payload["events"], parsed)
    elif channel is ChannelType.WHATSAPP:
        _parse_whatsapp(payload, parsed)
    elif channel is ChannelType.INSTAGRAM:
        _parse_instagram(payload, parsed)
    else:
        raise ValidationError(
            "unsupported webhook body", details={"channel": channel.value}
        )
    if parsed.rejected:
        logger.warning(
            "inbound.envelopes.rejected",
            extra={"channel": channel.value, "count": parsed.rejected},
        )
    return parsed


def _parse_whatsapp(payload: Mapping[str, Any], parsed: ParsedWebhook) -> None:
    for value in _whatsapp_values(payload):
        names = {
            str(contact.get("wa_id")): _mapping(contact.get("profile")).get("name")
            for contact in _items(value.get("contacts"))
            if isinstance(contact, Mapping)
        }
        for message in _items(value.get("messages")):
            envelope = _whatsapp_message(message, names)
            if envelope is None:
                parsed.rejected += 1
            else:
                parsed.envelopes.append(envelope)
        for status in _items(value.get("statuses")):
            if not isinstance(status, Mapping) or not status.get("id") or not status.get("status"):
                parsed.rejected += 1
                continue
            parsed.statuses.append(
                DeliveryStatusUpdate(
                    channel=ChannelType.WHATSAPP,
                    provider_message_id=str(status["id"]),
                    status=str(status["status"]).lower(),
                    occurred_at=_timestamp(status.get("timestamp")),
                )
            )


def _whatsapp_values(payload: Mapping[str, Any]) -> Iterator[Mapping[str, Any]]:
    for entry in _items(payload.get("entry")):
        if not isinstance(entry, Mapping):
            continue
        for change in _items(entry.get("changes")):
            if isinstance(change, Mapping) and isinstance(change.get("value"), Mapping):
                yield change["value"]


def _whatsapp_message(
    message: Any, names: Mapping[str, str | None]
) -> InboundEnvelope | None:
    if not isinstance(message, Mapping) or not message.get("id") or not message.get("from"):
        return None
    sender = str(message["from"])
    kind = message.get("type") or "text"
    if not isinstance(kind, str):
        return None
    body = ""
    media_ref = None
    message_type = MessageType.TEXT
    if kind == "text":
        text = message.get("text")
        if not isinstance(text, Mapping):
            return None
        body = str(text.get("body") or "")
    elif kind in _WHATSAPP_MEDIA_TYPES:
        media = _mapping(message.get(kind))
        media_ref = str(media["id"]) if media.get("id") else None
        body = str(media.get("caption") or "")
        message_type = MessageType.MEDIA
    elif kind == "button":
        body = str(_mapping(message.get("button")).get("text") or "")
    elif kind == "interactive":
        interactive = _mapping(message.get("interactive"))
        reply = _mapping(interactive.get("button_reply") or interactive.get("list_reply"))
        body = str(reply.get("title") or "")
    return InboundEnvelope(
        channel=ChannelType.WHATSAPP,
        provider_message_id=str(message["id"]),
        sender_address=sender,
        message_type=message_type,
        body=body.strip(),
        media_ref=media_ref,
        received_at=_timestamp(message.get("timestamp")),
        display_name=names.get(sender),
        wa_id=sender,
        raw=message,
    )


def _parse_instagram(payload: Mapping[str, Any], parsed: ParsedWebhook) -> None:
    for entry in _items(payload.get("entry")):
        if not isinstance(entry, Mapping):
            continue
        for event in _items(entry.get("messaging")):
            message = event.get("message") if isinstance(event, Mapping) else None
            if not isinstance(message, Mapping):
                continue
            if message.get("is_echo"):
                continue
            sender = _mapping(event.get("sender")).get("id")
            if not message.get("mid") or not sender:
                parsed.rejected += 1
                continue
            attachments = _items(message.get("attachments"))
            media_ref = None
            if attachments and isinstance(attachments[0], Mapping):
                url = _mapping(attachments[0].get("payload")).get("url")
                media_ref = str(url) if url else None
            parsed.envelopes.append(
                InboundEnvelope(
                    channel=ChannelType.INSTAGRAM,
                    provider_message_id=str(message["mid"]),
                    sender_address=str(sender),
                    message_type=MessageType.MEDIA if media_ref else MessageType.TEXT,
                    body=str(message.get("text") or "").strip(),
                    media_ref=media_ref,
                    received_at=_timestamp(event.get("timestamp")),
                    raw=event,
                )
            )


def _parse_generic(channel: ChannelType, events: list[Any], parsed: ParsedWebhook) -> None:
    for event in events:
        if not isinstance(event, Mapping):
            parsed.rejected += 1
            continue
        provider_id = event.get("provider_message_id") or event.get("id")
        sender = event.get("sender") or event.get("from")
        if not provider_id or not sender:
            parsed.rejected += 1
            continue
        media_ref = str(event["media_ref"]) if event.get("media_ref") else None
        try:
            message_type = MessageType(event.get("type") or ("media" if media_ref else "text"))
        except ValueError:
            parsed.rejected += 1
            continue
        parsed.envelopes.append(
            InboundEnvelope(
                channel=channel,
                provider_message_id=str(provider_id),
                sender_address=str(sender),
                message_type=message_type,
                body=str(event.get("body") or event.get("text") or "").strip(),
                media_ref=media_ref,
                received_at=_timestamp(event.get("timestamp")),
                display_name=str(event["name"]) if event.get("name") else None,
                wa_id=str(event["wa_id"]) if event.get("wa_id") else None,
                raw=event,
            )
        )


def _timestamp(value: Any) -> datetime:
    """Accept unix seconds, unix milliseconds or ISO strings; default to now."""

    if value is None or value == "":
        return datetime.now(tz=UTC)
    if isinstance(value, str) and not value.isdigit():
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return datetime.now(tz=UTC)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return datetime.now(tz=UTC)
    if number > 10_000_000_000:
        number /= 1000
    try:
        return datetime.fromtimestamp(number, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return datetime.now(tz=UTC)


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _items(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []
