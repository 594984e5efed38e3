"""Domain data structures shared across services."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class ChannelType(str, Enum):
    """Supported messaging channels."""

    WHATSAPP = "whatsapp"
    SMS = "sms"
    INSTAGRAM = "instagram"
    WEB = "web"

    @property
    def family(self) -> str:
        """Identity family sharing one address space (phone numbers)."""

        if self in (ChannelType.WHATSAPP, ChannelType.SMS):
            return "phone"
        return self.value


class MessageType(str, Enum):
    TEXT = "text"
    MEDIA = "media"


@dataclass(slots=True)
class InboundEnvelope:
    """One provider event normalized from a webhook body."""

    channel: ChannelType
    provider_message_id: str
    sender_address: str
    message_type: MessageType = MessageType.TEXT
    body: str = ""
    media_ref: str | None = None
    received_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    display_name: str | None = None
    wa_id: str | None = None
    raw: Mapping[str, Any] | None = None


@dataclass(slots=True)
class DeliveryStatusUpdate:
    """Provider callback reporting the fate of an outbound message."""

    channel: ChannelType
    provider_message_id: str
    status: str
    occurred_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))


@dataclass(slots=True)
class ReplyContent:
    """Text (and optional media reference) produced for one outbound reply."""

    text: str
    media_ref: str | None = None
    question_key: str | None = None
