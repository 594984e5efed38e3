from __future__ import annotations

import pytest

from leadflow.cli import build_parser, build_payload
from leadflow.core.domain import ChannelType
from leadflow.inbound.envelopes import parse_webhook

pytestmark = pytest.mark.unit


def test_simulated_payload_parses_as_whatsapp_delivery() -> None:
    payload = build_payload("971501234567", "I need a golden visa", name="Sara")

    parsed = parse_webhook(ChannelType.WHATSAPP, payload)

    [envelope] = parsed.envelopes
    assert envelope.body == "I need a golden visa"
    assert envelope.display_name == "Sara"
    assert envelope.provider_message_id.startswith("wamid.")


def test_each_payload_gets_a_fresh_message_id() -> None:
    first = build_payload("971501234567", "hi")
    second = build_payload("971501234567", "hi")

    first_id = first["entry"][0]["changes"][0]["value"]["messages"][0]["id"]
    second_id = second["entry"][0]["changes"][0]["value"]["messages"][0]["id"]
    assert first_id != second_id
    assert "contacts" not in first["entry"][0]["changes"][0]["value"]


def test_parser_defaults() -> None:
    args = build_parser().parse_args(["--repeat", "2"])

    assert args.host == "http://localhost:8000"
    assert args.secret == "dev-whatsapp"
    assert args.repeat == 2
