from __future__ import annotations

import importlib

import pytest

from leadflow.utils.retry import RetryConfig, RetryState, exponential_backoff, retry

retry_module = importlib.import_module("leadflow.utils.retry")

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def _no_sleep(monkeypatch):
    monkeypatch.setattr(retry_module.time, "sleep", lambda _: None)


class Conflict(Exception):
    pass


def test_retry_succeeds_after_conflicts() -> None:
    calls: list[int] = []
    states: list[RetryState] = []

    @retry(config=RetryConfig(attempts=3), exceptions=(Conflict,), before_sleep=states.append)
    def flaky() -> str:
        calls.append(1)
        if len(calls) < 3:
            raise Conflict("lost race")
        return "ok"

    assert flaky() == "ok"
    assert len(calls) == 3
    assert [state.attempt for state in states] == [1, 2]


def test_retry_reraises_after_last_attempt() -> None:
    @retry(config=RetryConfig(attempts=2), exceptions=(Conflict,))
    def always() -> None:
        raise Conflict("still losing")

    with pytest.raises(Conflict):
        always()


def test_unlisted_exceptions_are_not_retried() -> None:
    calls: list[int] = []

    @retry(config=RetryConfig(attempts=5), exceptions=(Conflict,))
    def broken() -> None:
        calls.append(1)
        raise ValueError("bug")

    with pytest.raises(ValueError):
        broken()
    assert calls == [1]


def test_exponential_backoff_grows_and_caps() -> None:
    assert exponential_backoff(1, base=2.0, jitter_ratio=0) == 2.0
    assert exponential_backoff(3, base=2.0, jitter_ratio=0) == 8.0
    assert exponential_backoff(10, base=2.0, max_delay=30.0, jitter_ratio=0) == 30.0
    assert exponential_backoff(0, base=1.0, jitter_ratio=0) == 1.0
    assert 4.0 <= exponential_backoff(2, base=2.0, jitter_ratio=0.1) <= 4.4
