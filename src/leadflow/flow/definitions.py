"""Flow keys, step keys, transition table and per-topic question scripts."""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from leadflow.core.errors import InvalidTransitionError
from leadflow.extraction import (
    PartialFields,
    lookup_country,
    parse_count,
    parse_explicit_date,
)


class FlowKey(str, Enum):
    INTAKE = "intake"
    FAMILY_VISA = "family_visa"
    GOLDEN_VISA = "golden_visa"
    FREELANCE_VISA = "freelance_visa"
    EMPLOYMENT_VISA = "employment_visa"
    VISIT_VISA = "visit_visa"
    BUSINESS_SETUP = "business_setup"
    PRO_SERVICES = "pro_services"
    VISA_RENEWAL = "visa_renewal"
    EMIRATES_ID = "emirates_id"


class StepKey(str, Enum):
    START = "start"
    AWAITING_NAME = "awaiting_name"
    AWAITING_SERVICE = "awaiting_service"
    IN_TOPIC_SCRIPT = "in_topic_script"
    HANDOVER = "handover"
    COMPLETED = "completed"


class QuestionKey(str, Enum):
    ASK_NAME = "ask_name"
    ASK_SERVICE = "ask_service"
    ASK_NATIONALITY = "ask_nationality"
    ASK_EMAIL = "ask_email"
    ASK_EXPIRY = "ask_expiry"
    ASK_FAMILY_MEMBERS = "ask_family_members"
    ASK_SPONSOR_VISA = "ask_sponsor_visa"
    ASK_GOLDEN_CATEGORY = "ask_golden_category"
    ASK_PROFESSION = "ask_profession"
    ASK_VISIT_DURATION = "ask_visit_duration"
    ASK_BUSINESS_ACTIVITY = "ask_business_activity"
    ASK_JURISDICTION = "ask_jurisdiction"
    ASK_PARTNERS = "ask_partners"
    ASK_VISAS = "ask_visas"
    ASK_SERVICE_DETAILS = "ask_service_details"


TERMINAL_STEPS = frozenset({StepKey.HANDOVER, StepKey.COMPLETED})

_ACTIVE = frozenset(
    {
        StepKey.AWAITING_NAME,
        StepKey.AWAITING_SERVICE,
        StepKey.IN_TOPIC_SCRIPT,
        StepKey.HANDOVER,
        StepKey.COMPLETED,
    }
)

TRANSITIONS: dict[StepKey, frozenset[StepKey]] = {
    StepKey.START: _ACTIVE,
    StepKey.AWAITING_NAME: _ACTIVE,
    StepKey.AWAITING_SERVICE: _ACTIVE - {StepKey.AWAITING_NAME},
    StepKey.IN_TOPIC_SCRIPT: frozenset(
        {StepKey.IN_TOPIC_SCRIPT, StepKey.HANDOVER, StepKey.COMPLETED}
    ),
    StepKey.COMPLETED: frozenset({StepKey.COMPLETED, StepKey.HANDOVER}),
    StepKey.HANDOVER: frozenset({StepKey.HANDOVER}),
}


def transition(current: StepKey, target: StepKey) -> StepKey:
    """Validate ``current -> target`` against :data:`TRANSITIONS`."""

    if target not in TRANSITIONS[current]:
        raise InvalidTransitionError(current.value, target.value)
    return target


AnswerParser = Callable[[str, PartialFields], Any]

_GREETINGS = frozenset(
    {"hi", "hello", "hey", "salam", "salaam", "yes", "no", "ok", "okay", "thanks", "thank you"}
)
_NAME_TOKEN = re.compile(r"^[A-Za-z][A-Za-z'\-]*$")
_FIRST_NUMBER = re.compile(r"\b(\d{1,2})\b")
_SOLO = re.compile(r"\b(just me|only me|myself|alone|solo|no partners?)\b", re.IGNORECASE)
_DAYS = re.compile(r"\b(30|60|90)\s*days?\b", re.IGNORECASE)
_MONTHS = re.compile(r"\b(one|1|two|2|three|3)\s*months?\b", re.IGNORECASE)

_SPONSOR_TYPES = (
    ("golden", "golden_visa"),
    ("investor", "investor_visa"),
    ("partner", "partner_visa"),
    ("freelance", "freelance_visa"),
    ("employ", "employment_visa"),
    ("work", "employment_visa"),
)
_GOLDEN_CATEGORIES = (
    ("invest", "investor"),
    ("property", "investor"),
    ("real estate", "investor"),
    ("entrepreneur", "entrepreneur"),
    ("founder", "entrepreneur"),
    ("doctor", "professional"),
    ("engineer", "professional"),
    ("professional", "professional"),
    ("scientist", "talent"),
    ("artist", "talent"),
    ("athlete", "talent"),
    ("student", "student"),
)


def _is_free_text_answer(text: str) -> bool:
    stripped = text.strip()
    return (
        2 <= len(stripped) <= 120
        and not stripped.endswith("?")
        and stripped.lower().strip("!. ") not in _GREETINGS
    )


def parse_name(text: str, fields: PartialFields) -> str | None:
    if fields.name:
        return fields.name
    tokens = text.strip().strip("!.").split()
    if not 1 <= len(tokens) <= 3 or " ".join(tokens).lower() in _GREETINGS:
        return None
    if not all(_NAME_TOKEN.match(token) for token in tokens):
        return None
    if lookup_country(tokens[0]) or tokens[0].lower() in _GREETINGS:
        return None
    return " ".join(token.capitalize() for token in tokens)


def parse_service(text: str, fields: PartialFields) -> str | None:
    return fields.service_intent


def parse_nationality(text: str, fields: PartialFields) -> str | None:
    return fields.nationality or lookup_country(text.strip().strip("!."))


def parse_email(text: str, fields: PartialFields) -> str | None:
    return fields.email


def parse_expiry(text: str, fields: PartialFields) -> str | None:
    if fields.expiry_date:
        return fields.expiry_date.isoformat()
    parsed = parse_explicit_date(text)
    return parsed.isoformat() if parsed else None


def _count_answer(text: str) -> int | None:
    stripped = text.strip().strip("!.").lower()
    value = parse_count(stripped)
    if value is not None:
        return value
    match = _FIRST_NUMBER.search(stripped)
    return parse_count(match.group(1)) if match else None


def parse_family_members(text: str, fields: PartialFields) -> int | None:
    if fields.family_members_count is not None:
        return fields.family_members_count
    return _count_answer(text)


def parse_partners(text: str, fields: PartialFields) -> int | None:
    if fields.partners_count is not None:
        return fields.partners_count
    if _SOLO.search(text):
        return 1
    return _count_answer(text)


def parse_visas(text: str, fields: PartialFields) -> int | None:
    if fields.visas_count is not None:
        return fields.visas_count
    return _count_answer(text)


def _keyword_answer(text: str, table: tuple[tuple[str, str], ...]) -> str | None:
    lowered = text.lower()
    for needle, value in table:
        if needle in lowered:
            return value
    return None


def parse_sponsor_visa(text: str, fields: PartialFields) -> str | None:
    return _keyword_answer(text, _SPONSOR_TYPES)


def parse_golden_category(text: str, fields: PartialFields) -> str | None:
    return _keyword_answer(text, _GOLDEN_CATEGORIES)


def parse_visit_duration(text: str, fields: PartialFields) -> int | None:
    days = _DAYS.search(text)
    if days:
        return int(days.group(1))
    months = _MONTHS.search(text)
    if months:
        return 30 * (parse_count(months.group(1)) or 1)
    return None


def parse_jurisdiction(text: str, fields: PartialFields) -> str | None:
    return fields.mainland_or_freezone


def parse_business_activity(text: str, fields: PartialFields) -> str | None:
    if fields.business_activity:
        return fields.business_activity
    return text.strip() if _is_free_text_answer(text) else None


def parse_free_text(text: str, fields: PartialFields) -> str | None:
    return text.strip() if _is_free_text_answer(text) else None


@dataclass(frozen=True, slots=True)
class Question:
    """A required question bound to one collected-data key."""

    key: QuestionKey
    field: str
    prompt: str
    parser: AnswerParser


@dataclass(frozen=True, slots=True)
class FlowDefinition:
    key: FlowKey
    questions: tuple[Question, ...]

    def question(self, key: QuestionKey | str | None) -> Question | None:
        for question in self.questions:
            if question.key == key:
                return question
        return None

    @property
    def required_fields(self) -> tuple[str, ...]:
        return tuple(question.field for question in self.questions)


NAME = Question(QuestionKey.ASK_NAME, "name", "May I know your name?", parse_name)
SERVICE = Question(
    QuestionKey.ASK_SERVICE, "service_intent", "Which service are you looking for?", parse_service
)
NATIONALITY = Question(
    QuestionKey.ASK_NATIONALITY, "nationality", "What is your nationality?", parse_nationality
)
EMAIL = Question(
    QuestionKey.ASK_EMAIL, "email", "What email address should we send details to?", parse_email
)
EXPIRY = Question(
    QuestionKey.ASK_EXPIRY,
    "expiry_date",
    "When does your current visa expire? An exact date helps (e.g. 15/03/2026).",
    parse_expiry,
)
FAMILY_MEMBERS = Question(
    QuestionKey.ASK_FAMILY_MEMBERS,
    "family_members_count",
    "How many family members would you like to sponsor?",
    parse_family_members,
)
SPONSOR_VISA = Question(
    QuestionKey.ASK_SPONSOR_VISA,
    "sponsor_visa_type",
    "What type of UAE visa do you (the sponsor) currently hold?",
    parse_sponsor_visa,
)
GOLDEN_CATEGORY = Question(
    QuestionKey.ASK_GOLDEN_CATEGORY,
    "golden_category",
    "Which category fits you best: investor, entrepreneur, professional, talent or student?",
    parse_golden_category,
)
PROFESSION = Question(
    QuestionKey.ASK_PROFESSION, "profession", "What is your profession?", parse_free_text
)
VISIT_DURATION = Question(
    QuestionKey.ASK_VISIT_DURATION,
    "visit_duration_days",
    "Do you need a 30, 60 or 90 day visit visa?",
    parse_visit_duration,
)
BUSINESS_ACTIVITY = Question(
    QuestionKey.ASK_BUSINESS_ACTIVITY,
    "business_activity",
    "What type of business activity will you be doing?",
    parse_business_activity,
)
JURISDICTION = Question(
    QuestionKey.ASK_JURISDICTION,
    "mainland_or_freezone",
    "Do you prefer Mainland or Freezone?",
    parse_jurisdiction,
)
PARTNERS = Question(
    QuestionKey.ASK_PARTNERS,
    "partners_count",
    "How many partners will be involved?",
    parse_partners,
)
VISAS = Question(
    QuestionKey.ASK_VISAS, "visas_count", "How many visas do you need?", parse_visas
)
SERVICE_DETAILS = Question(
    QuestionKey.ASK_SERVICE_DETAILS,
    "service_details",
    "Which government transaction do you need help with?",
    parse_free_text,
)

FLOWS: dict[FlowKey, FlowDefinition] = {
    FlowKey.INTAKE: FlowDefinition(FlowKey.INTAKE, (NAME, SERVICE)),
    FlowKey.FAMILY_VISA: FlowDefinition(
        FlowKey.FAMILY_VISA, (NAME, NATIONALITY, FAMILY_MEMBERS, SPONSOR_VISA)
    ),
    FlowKey.GOLDEN_VISA: FlowDefinition(
        FlowKey.GOLDEN_VISA, (NAME, NATIONALITY, GOLDEN_CATEGORY, EMAIL)
    ),
    FlowKey.FREELANCE_VISA: FlowDefinition(
        FlowKey.FREELANCE_VISA, (NAME, NATIONALITY, PROFESSION)
    ),
    FlowKey.EMPLOYMENT_VISA: FlowDefinition(
        FlowKey.EMPLOYMENT_VISA, (NAME, NATIONALITY, PROFESSION)
    ),
    FlowKey.VISIT_VISA: FlowDefinition(
        FlowKey.VISIT_VISA, (NAME, NATIONALITY, VISIT_DURATION)
    ),
    FlowKey.BUSINESS_SETUP: FlowDefinition(
        FlowKey.BUSINESS_SETUP, (NAME, BUSINESS_ACTIVITY, JURISDICTION, PARTNERS, VISAS)
    ),
    FlowKey.PRO_SERVICES: FlowDefinition(
        FlowKey.PRO_SERVICES, (NAME, SERVICE_DETAILS, EMAIL)
    ),
    FlowKey.VISA_RENEWAL: FlowDefinition(
        FlowKey.VISA_RENEWAL, (NAME, NATIONALITY, EXPIRY)
    ),
    FlowKey.EMIRATES_ID: FlowDefinition(FlowKey.EMIRATES_ID, (NAME, EXPIRY)),
}

_SERVICE_FLOWS: dict[str, FlowKey] = {
    "family_visa": FlowKey.FAMILY_VISA,
    "golden_visa": FlowKey.GOLDEN_VISA,
    "freelance_visa": FlowKey.FREELANCE_VISA,
    "employment_visa": FlowKey.EMPLOYMENT_VISA,
    "visit_visa": FlowKey.VISIT_VISA,
    "mainland_business_setup": FlowKey.BUSINESS_SETUP,
    "freezone_business_setup": FlowKey.BUSINESS_SETUP,
    "pro_services": FlowKey.PRO_SERVICES,
    "visa_renewal": FlowKey.VISA_RENEWAL,
    "emirates_id": FlowKey.EMIRATES_ID,
}


def flow_for_service(service_intent: str | None) -> FlowKey | None:
    if not service_intent:
        return None
    return _SERVICE_FLOWS.get(service_intent)
