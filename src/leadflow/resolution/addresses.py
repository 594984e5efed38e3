"""Channel address canonicalization."""

from __future__ import annotations

import re

from leadflow.core.domain import ChannelType
from leadflow.core.errors import AddressNormalizationError

_NON_DIGITS = re.compile(r"\D")
_WHITESPACE = re.compile(r"\s+")


def canonicalize_phone(raw: str, *, default_country_code: str) -> str:
    """Normalize a phone number to E.164 (``+971501234567``).

    Accepts:
    - E.164 with formatting: ``+971 50 123 4567`` -> ``+971501234567``
    - digits-only international numbers as sent by WhatsApp: ``971501234567``
    - ``00`` international prefix: ``00971501234567``
    - national numbers with a trunk ``0``: ``050 123 4567`` (default country code)

    Raises:
        AddressNormalizationError: when fewer than 8 or more than 15 digits remain.
    """

    cleaned = raw.strip()
    if not cleaned:
        raise AddressNormalizationError("phone number is empty")

    digits = _NON_DIGITS.sub("", cleaned)
    if not cleaned.startswith("+"):
        if digits.startswith("00"):
            digits = digits[2:]
        elif digits.startswith("0"):
            digits = default_country_code + digits.lstrip("0")

    if not 8 <= len(digits) <= 15:
        raise AddressNormalizationError(
            f"invalid phone number '{raw}'",
            details={"digits": len(digits)},
        )
    return f"+{digits}"


def canonicalize_handle(raw: str) -> str:
    handle = _WHITESPACE.sub("", raw).lstrip("@").lower()
    if not handle:
        raise AddressNormalizationError("handle is empty")
    return handle


def canonicalize_address(
    channel: ChannelType, raw: str, *, default_country_code: str = "971"
) -> str:
    """Return the canonical identity key for ``raw`` on ``channel``."""

    if channel.family == "phone":
        return canonicalize_phone(raw, default_country_code=default_country_code)
    if channel is ChannelType.INSTAGRAM:
        return canonicalize_handle(raw)
    value = raw.strip()
    if not value:
        raise AddressNormalizationError("address is empty")
    return value.lower() if "@" in value else value
