"""High-risk inbound message classifier."""

from __future__ import annotations

import re
from dataclasses import dataclass

_RULES: tuple[tuple[str, re.Pattern[str]], ...] = (
    (
        "payment_dispute",
        re.compile(r"\b(refund|chargeback|dispute|fraud|scam|stolen|unauthori[sz]ed)\b", re.IGNORECASE),
    ),
    (
        "legal_or_angry",
        re.compile(
            r"\b(angry|furious|complaint|sue|lawyer|legal action|court|police)\b", re.IGNORECASE
        ),
    ),
    (
        "threat",
        re.compile(r"\b(threat(?:en)?|kill|harm|hurt you)\b", re.IGNORECASE),
    ),
)
_COMPLEX = re.compile(r"\b(complicated|complex|detailed|explain|clarify|confused)\b", re.IGNORECASE)
_COMPLEX_MIN_LENGTH = 200


@dataclass(slots=True, frozen=True)
class RiskAssessment:
    high_risk: bool
    reason: str | None = None


def classify_risk(text: str) -> RiskAssessment:
    """Flag messages that must go to a human instead of an automated reply."""

    body = text or ""
    for reason, pattern in _RULES:
        if pattern.search(body):
            return RiskAssessment(high_risk=True, reason=reason)
    if len(body) > _COMPLEX_MIN_LENGTH and _COMPLEX.search(body):
        return RiskAssessment(high_risk=True, reason="complex_request")
    return RiskAssessment(high_risk=False)
