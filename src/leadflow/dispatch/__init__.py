"""Outbound dispatch: guard, leases, transports and reply generation."""

from .generation import (
    ReplyContext,
    ReplyGenerator,
    compose_reply,
    fallback_reply,
    normalize_outbound_text,
)
from .guard import DispatchResult, OutboundDispatchGuard
from .locks import ConversationLockManager
from .risk import RiskAssessment, classify_risk
from .transport import (
    InstagramTransport,
    LoggingTransport,
    MessageTransport,
    SendResult,
    WhatsAppCloudTransport,
    build_transports,
    classify_response,
)

__all__ = [
    "ConversationLockManager",
    "DispatchResult",
    "InstagramTransport",
    "LoggingTransport",
    "MessageTransport",
    "OutboundDispatchGuard",
    "ReplyContext",
    "ReplyGenerator",
    "RiskAssessment",
    "SendResult",
    "WhatsAppCloudTransport",
    "build_transports",
    "classify_response",
    "classify_risk",
    "compose_reply",
    "fallback_reply",
    "normalize_outbound_text",
]
