"""Deterministic field extraction from free-text message bodies.

Everything here is pure: no I/O, no clock, no randomness. The same message
always yields the same :class:`PartialFields`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from leadflow.core.errors import ExtractionAmbiguous

from .dates import has_relative_date, parse_explicit_date
from .taxonomy import match_service

COUNTRIES: dict[str, str] = {
    "afghanistan": "Afghanistan",
    "algeria": "Algeria",
    "australia": "Australia",
    "bangladesh": "Bangladesh",
    "bahrain": "Bahrain",
    "canada": "Canada",
    "china": "China",
    "egypt": "Egypt",
    "ethiopia": "Ethiopia",
    "france": "France",
    "germany": "Germany",
    "ghana": "Ghana",
    "india": "India",
    "indonesia": "Indonesia",
    "iran": "Iran",
    "iraq": "Iraq",
    "italy": "Italy",
    "japan": "Japan",
    "jordan": "Jordan",
    "kenya": "Kenya",
    "korea": "South Korea",
    "south korea": "South Korea",
    "kuwait": "Kuwait",
    "lebanon": "Lebanon",
    "morocco": "Morocco",
    "nepal": "Nepal",
    "nigeria": "Nigeria",
    "oman": "Oman",
    "pakistan": "Pakistan",
    "palestine": "Palestine",
    "philippines": "Philippines",
    "qatar": "Qatar",
    "russia": "Russia",
    "saudi arabia": "Saudi Arabia",
    "saudi": "Saudi Arabia",
    "south africa": "South Africa",
    "sri lanka": "Sri Lanka",
    "sudan": "Sudan",
    "syria": "Syria",
    "tunisia": "Tunisia",
    "turkey": "Turkey",
    "uganda": "Uganda",
    "uk": "United Kingdom",
    "united kingdom": "United Kingdom",
    "usa": "United States",
    "united states": "United States",
    "yemen": "Yemen",
    "zambia": "Zambia",
}

DEMONYMS: dict[str, str] = {
    "afghan": "Afghanistan",
    "algerian": "Algeria",
    "american": "United States",
    "australian": "Australia",
    "bangladeshi": "Bangladesh",
    "british": "United Kingdom",
    "canadian": "Canada",
    "chinese": "China",
    "egyptian": "Egypt",
    "emirati": "United Arab Emirates",
    "ethiopian": "Ethiopia",
    "filipino": "Philippines",
    "filipina": "Philippines",
    "french": "France",
    "german": "Germany",
    "ghanaian": "Ghana",
    "indian": "India",
    "indonesian": "Indonesia",
    "iranian": "Iran",
    "iraqi": "Iraq",
    "italian": "Italy",
    "japanese": "Japan",
    "jordanian": "Jordan",
    "kenyan": "Kenya",
    "korean": "South Korea",
    "lebanese": "Lebanon",
    "moroccan": "Morocco",
    "nepali": "Nepal",
    "nigerian": "Nigeria",
    "pakistani": "Pakistan",
    "palestinian": "Palestine",
    "russian": "Russia",
    "saudi": "Saudi Arabia",
    "south african": "South Africa",
    "sri lankan": "Sri Lanka",
    "sudanese": "Sudan",
    "syrian": "Syria",
    "tunisian": "Tunisia",
    "turkish": "Turkey",
    "ugandan": "Uganda",
    "yemeni": "Yemen",
    "zambian": "Zambia",
}

NUMBER_WORDS = {
    "zero": 0,
    "no": 0,
    "one": 1,
    "single": 1,
    "two": 2,
    "three": 3,
    "four": 4,
    "five": 5,
    "six": 6,
    "seven": 7,
    "eight": 8,
    "nine": 9,
    "ten": 10,
}
_NUMBER = r"(\d{1,2}|" + "|".join(NUMBER_WORDS) + r")"

_NAME_STOPWORDS = frozenset(
    {
        "here",
        "interested",
        "looking",
        "fine",
        "good",
        "ok",
        "okay",
        "not",
        "from",
        "in",
        "at",
        "sorry",
        "just",
        "trying",
        "planning",
        "hoping",
        "writing",
        "calling",
        "the",
        "a",
        "an",
    }
)

_NAME_ANY_CASE = re.compile(
    r"\b(?:my name is|name's|call me)\s+([a-z][a-z'\-]+(?:\s+[a-z][a-z'\-]+)?)",
    re.IGNORECASE,
)
_NAME_CAPITALISED = re.compile(
    r"\b(?i:i'm|i am|im|this is)\s+([A-Z][a-zA-Z'\-]+(?:\s+[A-Z][a-zA-Z'\-]+)?)"
)
_EMAIL = re.compile(r"\b[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}\b")
_FROM = re.compile(r"\bfrom\s+((?:[A-Za-z]+\s*){1,3})", re.IGNORECASE)
_NATIONALITY_LABEL = re.compile(
    r"\bnationality\s*(?:is|:)?\s*((?:[A-Za-z]+\s*){1,3})", re.IGNORECASE
)
_SELF_DEMONYM = re.compile(
    r"\b(?:i'm|i am|im|we are|we're)\s+(?:an?\s+)?((?:[A-Za-z]+\s*){1,2})", re.IGNORECASE
)
_CITIZEN = re.compile(
    r"\b((?:[A-Za-z]+\s+){0,1}[A-Za-z]+)\s+(?:national|citizen|passport holder)\b",
    re.IGNORECASE,
)
_PARTNERS = re.compile(
    rf"\b{_NUMBER}\s+(?:business\s+)?(?:partners?|shareholders?|owners?)\b", re.IGNORECASE
)
_VISAS = re.compile(rf"\b{_NUMBER}\s+(?:\w+\s+)?visas?\b", re.IGNORECASE)
_FAMILY_MEMBERS = re.compile(
    rf"\b{_NUMBER}\s+(?:kids|children|dependents|family members|members)\b",
    re.IGNORECASE,
)
_ACTIVITY = re.compile(
    r"\b(?:business activity|activity)\s*(?:is|:|will be)\s*([^.!?\n]{2,80})", re.IGNORECASE
)
_MAINLAND = re.compile(r"\bmainland\b", re.IGNORECASE)
_FREEZONE = re.compile(r"\bfree[\s\-]?zone\b", re.IGNORECASE)
_DISCOUNT = re.compile(
    r"\b(discount|cheaper|best price|lower (?:the )?price|reduce (?:the )?price|"
    r"negotiat\w*|too expensive|any offers?|promo(?:tion)? code)\b",
    re.IGNORECASE,
)
_HUMAN_REQUEST = re.compile(
    r"\b(?:speak|talk|chat)\s+(?:to|with)\s+(?:a\s+|an\s+|your\s+)?"
    r"(?:human|agent|person|someone|consultant|manager|representative)\b|\breal person\b",
    re.IGNORECASE,
)
_EXPIRY_CUES = re.compile(
    r"\b(expir\w*|valid (?:until|till|up to)|renew\w*|ends?|due|visa|passport|"
    r"emirates id|eid|licen[cs]e)\b",
    re.IGNORECASE,
)
_EXPIRY_TYPES = (
    (re.compile(r"\bpassport\b", re.IGNORECASE), "passport_expiry"),
    (re.compile(r"\b(emirates id|eid)\b", re.IGNORECASE), "emirates_id_expiry"),
    (re.compile(r"\btrade licen[cs]e\b|\blicen[cs]e\b", re.IGNORECASE), "trade_license_expiry"),
    (re.compile(r"\bvisa\b", re.IGNORECASE), "visa_expiry"),
)
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")

MAX_COUNT = 10


@dataclass(slots=True)
class PartialFields:
    """Fields derived from one message. ``None`` means "not mentioned"."""

    service_intent: str | None = None
    nationality: str | None = None
    expiry_date: date | None = None
    expiry_type: str | None = None
    expiry_hint: str | None = None
    partners_count: int | None = None
    visas_count: int | None = None
    family_members_count: int | None = None
    name: str | None = None
    email: str | None = None
    business_activity: str | None = None
    mainland_or_freezone: str | None = None
    discount_request: bool = False
    human_request: bool = False
    hints: list[str] = field(default_factory=list)

    def to_data(self) -> dict[str, Any]:
        """Return committed (high-confidence) values keyed as stored in lead data."""

        data: dict[str, Any] = {}
        for key in (
            "name",
            "email",
            "nationality",
            "service_intent",
            "partners_count",
            "visas_count",
            "family_members_count",
            "business_activity",
            "mainland_or_freezone",
            "expiry_type",
        ):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.expiry_date is not None:
            data["expiry_date"] = self.expiry_date.isoformat()
        return data

    @property
    def is_empty(self) -> bool:
        return not self.to_data() and not self.expiry_hint and not self.hints


def lookup_country(phrase: str) -> str | None:
    """Resolve the longest leading country name or demonym in ``phrase``."""

    words = phrase.lower().split()
    for size in (3, 2, 1):
        if len(words) < size:
            continue
        candidate = " ".join(words[:size])
        if candidate in COUNTRIES:
            return COUNTRIES[candidate]
        if candidate in DEMONYMS:
            return DEMONYMS[candidate]
    return None


def extract_nationality(text: str) -> str | None:
    for pattern in (_NATIONALITY_LABEL, _FROM, _SELF_DEMONYM):
        for match in pattern.finditer(text):
            country = lookup_country(match.group(1))
            if country:
                return country
    for match in _CITIZEN.finditer(text):
        words = match.group(1).split()
        for start in range(len(words)):
            country = lookup_country(" ".join(words[start:]))
            if country:
                return country
    return None


def extract_name(text: str) -> str | None:
    for pattern in (_NAME_ANY_CASE, _NAME_CAPITALISED):
        for match in pattern.finditer(text):
            words = [
                word
                for word in match.group(1).split()
                if word.lower() not in _NAME_STOPWORDS
            ]
            if not words or lookup_country(words[0]):
                continue
            # a trailing lowercase word belongs to the sentence, not the name
            words = words[:1] + [word for word in words[1:] if word[:1].isupper()]
            return " ".join(word.capitalize() for word in words)
    return None


def parse_count(raw: str) -> int | None:
    token = raw.lower()
    value = NUMBER_WORDS.get(token)
    if value is None:
        value = int(token) if token.isdigit() else None
    if value is None or not 0 <= value <= MAX_COUNT:
        return None
    return value


def _first_count(pattern: re.Pattern[str], text: str) -> int | None:
    match = pattern.search(text)
    return parse_count(match.group(1)) if match else None


def _expiry_sentence(text: str) -> str:
    for sentence in _SENTENCE_SPLIT.split(text.strip()):
        if _EXPIRY_CUES.search(sentence) and has_relative_date(sentence):
            return sentence.strip()[:200]
    return text.strip()[:200]


def extract(message_body: str) -> PartialFields:
    """Derive structured fields from ``message_body``.

    Ambiguous values are reported in ``hints`` and never committed.
    """

    fields = PartialFields()
    text = message_body or ""
    if not text.strip():
        return fields

    try:
        service = match_service(text)
    except ExtractionAmbiguous as exc:
        fields.hints.append(f"service_intent ambiguous: {', '.join(exc.candidates)}")
    else:
        if service is not None:
            fields.service_intent = service.service

    fields.nationality = extract_nationality(text)
    fields.name = extract_name(text)

    email = _EMAIL.search(text)
    if email:
        fields.email = email.group(0).lower()

    if _EXPIRY_CUES.search(text):
        fields.expiry_date = parse_explicit_date(text)
        if fields.expiry_date is not None:
            fields.expiry_type = next(
                (label for pattern, label in _EXPIRY_TYPES if pattern.search(text)),
                None,
            )
        elif has_relative_date(text):
            fields.expiry_hint = _expiry_sentence(text)

    fields.partners_count = _first_count(_PARTNERS, text)
    fields.visas_count = _first_count(_VISAS, text)
    fields.family_members_count = _first_count(_FAMILY_MEMBERS, text)

    activity = _ACTIVITY.search(text)
    if activity:
        fields.business_activity = activity.group(1).strip()

    mainland = bool(_MAINLAND.search(text))
    freezone = bool(_FREEZONE.search(text))
    if mainland and freezone:
        fields.hints.append("mainland_or_freezone ambiguous: mainland, freezone")
    elif mainland:
        fields.mainland_or_freezone = "mainland"
    elif freezone:
        fields.mainland_or_freezone = "freezone"

    fields.discount_request = bool(_DISCOUNT.search(text))
    fields.human_request = bool(_HUMAN_REQUEST.search(text))
    return fields
