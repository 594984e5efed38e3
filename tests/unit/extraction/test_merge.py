from __future__ import annotations

import pytest

from leadflow.extraction import MANUAL_FIELDS_KEY, merge_collected, missing_keys

pytestmark = pytest.mark.unit


def test_merge_never_overwrites_existing_values() -> None:
    merged = merge_collected({"name": "Ahmed"}, {"name": "Mohammed", "nationality": "Egypt"})

    assert merged == {"name": "Ahmed", "nationality": "Egypt"}


def test_merge_ignores_empty_incoming_values() -> None:
    merged = merge_collected(
        {"email": "a@example.com"},
        {"email": "", "nationality": None, "notes": "  ", "visas_count": 0},
    )

    assert merged == {"email": "a@example.com", "visas_count": 0}


def test_merge_fills_empty_existing_values_and_recurses() -> None:
    merged = merge_collected(
        {"name": "", "company": {"activity": "trading"}},
        {"name": "Sara", "company": {"activity": "consulting", "visas": 2}},
    )

    assert merged == {"name": "Sara", "company": {"activity": "trading", "visas": 2}}


def test_manual_fields_are_protected() -> None:
    existing = {MANUAL_FIELDS_KEY: ["service_intent"]}

    merged = merge_collected(existing, {"service_intent": "golden_visa", "name": "Sara"})
    protected = merge_collected({}, {"stage_note": "x"}, protected=["stage_note"])

    assert "service_intent" not in merged
    assert merged["name"] == "Sara"
    assert protected == {}


def test_merge_does_not_mutate_inputs() -> None:
    existing = {"name": "Ahmed"}
    merge_collected(existing, {"email": "a@example.com"})

    assert existing == {"name": "Ahmed"}


def test_missing_keys_preserves_order() -> None:
    assert missing_keys({"name": "Ahmed", "email": ""}, ["name", "email", "nationality"]) == [
        "email",
        "nationality",
    ]
