"""Inbound and outbound idempotency guards."""

from .store import IdempotencyStore, RecordResult, channel_value

__all__ = ["IdempotencyStore", "RecordResult", "channel_value"]
