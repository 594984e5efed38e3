"""Utility helpers shared across services."""

from .retry import RetryConfig, RetryState, exponential_backoff, retry

__all__ = [
    "retry",
    "RetryConfig",
    "RetryState",
    "exponential_backoff",
]
