from __future__ import annotations

import pytest

from leadflow.core.domain import ChannelType
from leadflow.core.errors import AddressNormalizationError
from leadflow.resolution import canonicalize_address, canonicalize_phone

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    "raw",
    [
        "+971 50 123 4567",
        "+971-50-123-4567",
        "971501234567",
        "00971501234567",
        "050 123 4567",
    ],
)
def test_phone_formats_share_one_canonical_key(raw: str) -> None:
    assert canonicalize_phone(raw, default_country_code="971") == "+971501234567"


@pytest.mark.parametrize("raw", ["", "   ", "123", "+1234567890123456"])
def test_invalid_phone_numbers_are_rejected(raw: str) -> None:
    with pytest.raises(AddressNormalizationError):
        canonicalize_phone(raw, default_country_code="971")


def test_sms_and_whatsapp_use_phone_canonicalization() -> None:
    assert canonicalize_address(ChannelType.SMS, "0501234567") == "+971501234567"
    assert ChannelType.SMS.family == ChannelType.WHATSAPP.family == "phone"


def test_instagram_handles_are_lowercased_and_trimmed() -> None:
    assert canonicalize_address(ChannelType.INSTAGRAM, "  @John.Doe ") == "john.doe"


def test_web_addresses_lowercase_emails_only() -> None:
    assert canonicalize_address(ChannelType.WEB, " Visitor@Example.COM ") == "visitor@example.com"
    assert canonicalize_address(ChannelType.WEB, "Session-ABC") == "Session-ABC"
