"""Explicit date parsing for expiry extraction.

Only exact calendar dates are accepted. Relative phrasing ("soon", "next
month", "in 2 weeks", "after Eid") never produces a date; callers keep the
sentence as a hint instead.
"""

from __future__ import annotations

import re
from datetime import date

_MONTHS = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}
_MONTH_NAMES = r"(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?"

_ISO = re.compile(r"\b(\d{4})[/\-.](\d{1,2})[/\-.](\d{1,2})\b")
_DAY_FIRST = re.compile(r"\b(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2}|\d{4})\b")
_DAY_MONTH_NAME = re.compile(
    rf"\b(\d{{1,2}})(?:st|nd|rd|th)?\s+(?:of\s+)?{_MONTH_NAMES},?\s+(\d{{2}}|\d{{4}})\b",
    re.IGNORECASE,
)
_MONTH_NAME_DAY = re.compile(
    rf"\b{_MONTH_NAMES}\s+(\d{{1,2}})(?:st|nd|rd|th)?,?\s+(\d{{2}}|\d{{4}})\b",
    re.IGNORECASE,
)

RELATIVE_PATTERNS = (
    re.compile(
        r"\b(next|this|in)\s+(?:\d+\s+|a\s+few\s+|a\s+couple\s+of\s+)?"
        r"(days?|weeks?|months?|years?)\b",
        re.IGNORECASE,
    ),
    re.compile(r"\b(soon|tomorrow|today|tonight|end of (?:the )?(?:month|year))\b", re.IGNORECASE),
    re.compile(r"\b(after|before)\s+(?!\d)\w+", re.IGNORECASE),
)


def has_relative_date(text: str) -> bool:
    return any(pattern.search(text) for pattern in RELATIVE_PATTERNS)


def _expand_year(raw: str) -> int:
    year = int(raw)
    if len(raw) == 2:
        return 2000 + year if year <= 49 else 1900 + year
    return year


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_explicit_date(text: str) -> date | None:
    """Return the first exact calendar date in ``text``.

    Accepted: ``2025-03-15``, ``15/03/2025``, ``15-03-25`` (day first),
    ``15 March 2025``, ``15th Mar 2025``, ``March 15, 2025``. Two-digit years
    00-49 map to 20YY and 50-99 to 19YY. Month-year alone and bare years are
    rejected, as are impossible dates such as ``31/02/2025``.
    """

    for match in _ISO.finditer(text):
        parsed = _safe_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        if parsed:
            return parsed

    for match in _DAY_FIRST.finditer(text):
        parsed = _safe_date(
            _expand_year(match.group(3)), int(match.group(2)), int(match.group(1))
        )
        if parsed:
            return parsed

    for match in _DAY_MONTH_NAME.finditer(text):
        month = _MONTHS[match.group(2).lower()[:3]]
        parsed = _safe_date(_expand_year(match.group(3)), month, int(match.group(1)))
        if parsed:
            return parsed

    for match in _MONTH_NAME_DAY.finditer(text):
        month = _MONTHS[match.group(1).lower()[:3]]
        parsed = _safe_date(_expand_year(match.group(3)), month, int(match.group(2)))
        if parsed:
            return parsed

    return None
