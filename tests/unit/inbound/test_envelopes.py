from __future__ import annotations

from datetime import UTC, datetime

import pytest

from leadflow.core.domain import ChannelType, MessageType
from leadflow.core.errors import ValidationError
from leadflow.inbound.envelopes import parse_webhook

pytestmark = pytest.mark.unit


def _whatsapp_payload(messages=None, statuses=None) -> dict:
    value: dict = {
        "messaging_product": "whatsapp",
        "contacts": [{"wa_id": "971501234567", "profile": {"name": "Ahmed"}}],
    }
    if messages is not None:
        value["messages"] = messages
    if statuses is not None:
        value["statuses"] = statuses
    return {
        "object": "whatsapp_business_account",
        "entry": [{"id": "waba", "changes": [{"field": "messages", "value": value}]}],
    }


def test_whatsapp_text_message() -> None:
    payload = _whatsapp_payload(
        messages=[
            {
                "from": "971501234567",
                "id": "wamid.AAA",
                "timestamp": "1736500000",
                "type": "text",
                "text": {"body": "  Hi there  "},
            }
        ]
    )

    parsed = parse_webhook(ChannelType.WHATSAPP, payload)

    assert parsed.rejected == 0
    [envelope] = parsed.envelopes
    assert envelope.provider_message_id == "wamid.AAA"
    assert envelope.sender_address == "971501234567"
    assert envelope.wa_id == "971501234567"
    assert envelope.display_name == "Ahmed"
    assert envelope.body == "Hi there"
    assert envelope.received_at == datetime.fromtimestamp(1736500000, tz=UTC)


def test_whatsapp_media_interactive_and_malformed_messages() -> None:
    payload = _whatsapp_payload(
        messages=[
            {"from": "971501234567", "id": "wamid.IMG", "type": "image", "image": {"id": "media-1", "caption": "passport"}},
            {
                "from": "971501234567",
                "id": "wamid.BTN",
                "type": "interactive",
                "interactive": {"button_reply": {"id": "b1", "title": "Family visa"}},
            },
            {"id": "wamid.NOSENDER", "type": "text", "text": {"body": "?"}},
        ]
    )

    parsed = parse_webhook(ChannelType.WHATSAPP, payload)

    image, button = parsed.envelopes
    assert image.message_type is MessageType.MEDIA
    assert image.media_ref == "media-1"
    assert image.body == "passport"
    assert button.body == "Family visa"
    assert parsed.rejected == 1


def test_whatsapp_status_callbacks() -> None:
    payload = _whatsapp_payload(
        statuses=[
            {"id": "wamid.OUT", "status": "DELIVERED", "timestamp": "1736500100"},
            {"status": "read"},
        ]
    )

    parsed = parse_webhook(ChannelType.WHATSAPP, payload)

    assert parsed.envelopes == []
    [status] = parsed.statuses
    assert status.provider_message_id == "wamid.OUT"
    assert status.status == "delivered"
    assert parsed.rejected == 1


def test_instagram_messages_skip_echoes() -> None:
    payload = {
        "object": "instagram",
        "entry": [
            {
                "messaging": [
                    {
                        "sender": {"id": "igsid-1"},
                        "timestamp": 1736500000123,
                        "message": {"mid": "mid.1", "text": "golden visa?"},
                    },
                    {"sender": {"id": "page"}, "message": {"mid": "mid.2", "text": "echo", "is_echo": True}},
                    {
                        "sender": {"id": "igsid-1"},
                        "message": {
                            "mid": "mid.3",
                            "attachments": [{"type": "image", "payload": {"url": "https://cdn.test/a.jpg"}}],
                        },
                    },
                ]
            }
        ],
    }

    parsed = parse_webhook(ChannelType.INSTAGRAM, payload)

    assert [envelope.provider_message_id for envelope in parsed.envelopes] == ["mid.1", "mid.3"]
    assert parsed.envelopes[0].received_at == datetime.fromtimestamp(1736500000.123, tz=UTC)
    assert parsed.envelopes[1].message_type is MessageType.MEDIA


def test_generic_events_for_sms_and_web() -> None:
    payload = {
        "events": [
            {"id": "sms-1", "from": "0501234567", "text": "hello", "timestamp": "2026-01-10T09:00:00Z"},
            {"id": "sms-2", "from": "0501234567", "type": "sticker"},
            {"from": "0501234567", "text": "missing id"},
        ]
    }

    parsed = parse_webhook(ChannelType.SMS, payload)

    [envelope] = parsed.envelopes
    assert envelope.channel is ChannelType.SMS
    assert envelope.body == "hello"
    assert envelope.received_at == datetime(2026, 1, 10, 9, 0, tzinfo=UTC)
    assert parsed.rejected == 2


@pytest.mark.parametrize(
    ("channel", "payload"),
    [
        (ChannelType.WHATSAPP, ["not", "an", "object"]),
        (ChannelType.WEB, {"message": "no events list"}),
    ],
)
def test_unusable_bodies_raise(channel: ChannelType, payload) -> None:
    with pytest.raises(ValidationError):
        parse_webhook(channel, payload)


def test_malformed_events_are_rejected_without_dropping_the_batch() -> None:
    payload = _whatsapp_payload(
        messages=[
            {"from": "971501234567", "id": "wamid.BAD", "type": "text", "text": "hi"},
            {"from": "971501234567", "id": "wamid.TYPE", "type": ["text"]},
            {
                "from": "971501234567",
                "id": "wamid.LATE",
                "timestamp": "99999999999999999999",
                "type": "text",
                "text": {"body": "still here"},
            },
            {"from": "971501234567", "id": "wamid.IMG", "type": "image", "image": "media-1"},
        ]
    )

    before = datetime.now(tz=UTC)
    parsed = parse_webhook(ChannelType.WHATSAPP, payload)

    late, image = parsed.envelopes
    assert parsed.rejected == 2
    assert late.body == "still here"
    assert late.received_at >= before
    assert image.media_ref is None


def test_instagram_event_with_unexpected_shapes() -> None:
    payload = {
        "entry": [
            {
                "messaging": [
                    {"sender": "igsid-1", "message": {"mid": "mid.1", "text": "hi"}},
                    {
                        "sender": {"id": "igsid-1"},
                        "timestamp": float("inf"),
                        "message": {"mid": "mid.2", "text": "hello", "attachments": "none"},
                    },
                ]
            }
        ]
    }

    parsed = parse_webhook(ChannelType.INSTAGRAM, payload)

    [envelope] = parsed.envelopes
    assert envelope.provider_message_id == "mid.2"
    assert envelope.media_ref is None
    assert parsed.rejected == 1
