"""Core utilities and domain building blocks for the inbound automation service."""

from . import config, domain, errors, logging
from .config import (
    AppSettings,
    DispatchSettings,
    FlowSettings,
    GatewaySettings,
    PostgresSettings,
    QueueSettings,
    RedisSettings,
    ResolutionSettings,
)
from .domain import ChannelType, DeliveryStatusUpdate, InboundEnvelope, MessageType
from .logging import configure_logging, get_logger

__all__ = [
    "config",
    "domain",
    "errors",
    "logging",
    "configure_logging",
    "get_logger",
    "AppSettings",
    "DispatchSettings",
    "FlowSettings",
    "GatewaySettings",
    "PostgresSettings",
    "QueueSettings",
    "RedisSettings",
    "ResolutionSettings",
    "ChannelType",
    "DeliveryStatusUpdate",
    "InboundEnvelope",
    "MessageType",
]
