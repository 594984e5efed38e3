from __future__ import annotations

from datetime import date

import pytest

from leadflow.core.errors import ExtractionAmbiguous
from leadflow.extraction import extract, match_service, parse_explicit_date

pytestmark = pytest.mark.unit


def test_extracts_name_nationality_service_and_family_size() -> None:
    fields = extract("Hi, I'm Ahmed from Egypt, I need a family visa for my wife and 2 kids")

    assert fields.name == "Ahmed"
    assert fields.nationality == "Egypt"
    assert fields.service_intent == "family_visa"
    assert fields.family_members_count == 2
    assert fields.discount_request is False
    assert fields.to_data() == {
        "name": "Ahmed",
        "nationality": "Egypt",
        "service_intent": "family_visa",
        "family_members_count": 2,
    }


def test_extraction_is_deterministic() -> None:
    text = "My name is Sara Khan, Indian national, golden visa please"

    assert extract(text) == extract(text)
    fields = extract(text)
    assert fields.name == "Sara Khan"
    assert fields.nationality == "India"
    assert fields.service_intent == "golden_visa"


def test_explicit_expiry_date_is_committed_with_type() -> None:
    fields = extract("My visa expires on 2025-03-15")

    assert fields.expiry_date == date(2025, 3, 15)
    assert fields.expiry_type == "visa_expiry"
    assert fields.expiry_hint is None
    assert fields.to_data()["expiry_date"] == "2025-03-15"


def test_relative_expiry_becomes_hint_never_date() -> None:
    fields = extract("My visa expires soon")

    assert fields.expiry_date is None
    assert fields.expiry_hint == "My visa expires soon"
    assert "expiry_date" not in fields.to_data()


def test_passport_expiry_next_month_is_a_hint() -> None:
    fields = extract("Hello. My passport expires next month. Can you help?")

    assert fields.expiry_date is None
    assert fields.expiry_hint == "My passport expires next month."


@pytest.mark.parametrize(
    "text",
    [
        "My visa expires on 2025-03-15, please call me today",
        "My visa expires on 2025-03-15 and I want to renew before that",
    ],
)
def test_exact_date_wins_over_relative_wording(text: str) -> None:
    fields = extract(text)

    assert fields.expiry_date == date(2025, 3, 15)
    assert fields.expiry_type == "visa_expiry"
    assert fields.expiry_hint is None


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("2025-03-15", date(2025, 3, 15)),
        ("15/03/2025", date(2025, 3, 15)),
        ("15-03-25", date(2025, 3, 15)),
        ("01.02.75", date(1975, 2, 1)),
        ("10 Feb 2026", date(2026, 2, 10)),
        ("10th February 2026", date(2026, 2, 10)),
        ("Feb 10, 2026", date(2026, 2, 10)),
    ],
)
def test_explicit_date_formats(text: str, expected: date) -> None:
    assert parse_explicit_date(f"valid until {text}") == expected


@pytest.mark.parametrize("text", ["31/02/2025", "March 2026", "2026", "in 2 weeks", "after Eid"])
def test_non_dates_are_rejected(text: str) -> None:
    assert parse_explicit_date(text) is None


def test_service_synonyms_misspellings_and_translations() -> None:
    assert extract("I want a spouse visa").service_intent == "family_visa"
    assert extract("need bussiness setup info").service_intent == "mainland_business_setup"
    assert extract("أريد تأشيرة ذهبية").service_intent == "golden_visa"
    assert extract("hello there").service_intent is None


def test_tied_services_are_reported_as_ambiguous() -> None:
    with pytest.raises(ExtractionAmbiguous) as exc_info:
        match_service("golden visa renewal")
    assert set(exc_info.value.candidates) == {"golden_visa", "visa_renewal"}

    fields = extract("golden visa renewal")
    assert fields.service_intent is None
    assert fields.hints and fields.hints[0].startswith("service_intent ambiguous")


def test_counts_flags_and_business_fields() -> None:
    fields = extract(
        "We are three partners and need 4 visas. Business activity is general trading. "
        "Mainland please. Any discount?"
    )

    assert fields.partners_count == 3
    assert fields.visas_count == 4
    assert fields.business_activity == "general trading"
    assert fields.mainland_or_freezone == "mainland"
    assert fields.discount_request is True


def test_human_request_and_email() -> None:
    fields = extract("Can I talk to a consultant? my email is Sara@Example.com")

    assert fields.human_request is True
    assert fields.email == "sara@example.com"


def test_empty_body_yields_empty_fields() -> None:
    assert extract("").is_empty
    assert extract("   ").to_data() == {}
