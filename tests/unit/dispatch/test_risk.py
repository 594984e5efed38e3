from __future__ import annotations

import pytest

from leadflow.dispatch import classify_risk

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    ("text", "reason"),
    [
        ("I want a refund, this is a scam", "payment_dispute"),
        ("There is an unauthorized charge on my card", "payment_dispute"),
        ("I will contact my lawyer", "legal_or_angry"),
        ("I'm furious about the delay", "legal_or_angry"),
        ("Are you threatening me?", None),
        ("Stop or I will threaten you", "threat"),
    ],
)
def test_high_risk_keywords(text: str, reason: str | None) -> None:
    assessment = classify_risk(text)

    assert assessment.high_risk is (reason is not None)
    assert assessment.reason == reason


def test_long_complex_requests_are_high_risk() -> None:
    text = "Please explain the options for my case. " + "My situation involves several sponsors. " * 6

    assert classify_risk(text).reason == "complex_request"
    assert classify_risk("Please explain the options").high_risk is False


def test_ordinary_enquiries_are_not_high_risk() -> None:
    assessment = classify_risk("Hi, I'm Ahmed from Egypt, I need a family visa")

    assert assessment.high_risk is False
    assert assessment.reason is None
    assert classify_risk("").high_risk is False
