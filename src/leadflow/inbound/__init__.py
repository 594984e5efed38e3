"""Webhook ingress: envelope parsing and the synchronous inbound pipeline."""

from .envelopes import ParsedWebhook, parse_webhook
from .pipeline import InboundOutcome, InboundPipeline

__all__ = ["InboundOutcome", "InboundPipeline", "ParsedWebhook", "parse_webhook"]
