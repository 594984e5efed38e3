"""Retry and backoff helpers for store conflicts and job requeues."""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from typing import ParamSpec, TypeVar

P = ParamSpec("P")
R = TypeVar("R")


@dataclass(frozen=True)
class RetryConfig:
    """Configuration controlling retry behaviour."""

    attempts: int = 3
    base_delay: float = 0.05
    backoff: float = 2.0
    max_delay: float = 1.0
    jitter: float = 0.01


@dataclass
class RetryState:
    """Captures the state of an individual retry loop."""

    attempt: int
    last_exception: Exception | None = None
    delay: float = 0.0


def retry(
    *,
    config: RetryConfig | None = None,
    exceptions: tuple[type[Exception], ...] = (Exception,),
    before_sleep: Callable[[RetryState], None] | None = None,
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Retry a synchronous call that lost a race against a concurrent writer.

    Used around atomic upserts and optimistic flow-state writes: each attempt
    re-reads the winning row, so a handful of attempts is enough.
    """

    retry_config = config or RetryConfig()

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            state = RetryState(attempt=1)

            while True:
                try:
                    return func(*args, **kwargs)
                except exceptions as exc:
                    state.last_exception = exc
                    if state.attempt >= retry_config.attempts:
                        raise

                    state.delay = exponential_backoff(
                        state.attempt,
                        base=retry_config.base_delay,
                        factor=retry_config.backoff,
                        max_delay=retry_config.max_delay,
                        jitter_ratio=0.0,
                    ) + random.uniform(0, retry_config.jitter)
                    if before_sleep is not None:
                        before_sleep(state)
                    time.sleep(state.delay)
                    state.attempt += 1

        return wrapper

    return decorator


def exponential_backoff(
    attempt: int,
    *,
    base: float = 1.0,
    factor: float = 2.0,
    max_delay: float = 60.0,
    jitter_ratio: float = 0.1,
) -> float:
    """Return jittered exponential backoff for the provided attempt number."""

    bounded_attempt = attempt if attempt > 0 else 1
    delay = base * (factor ** (bounded_attempt - 1))
    delay = min(delay, max_delay)
    jitter = random.uniform(0, delay * jitter_ratio) if jitter_ratio else 0.0
    return delay + jitter
