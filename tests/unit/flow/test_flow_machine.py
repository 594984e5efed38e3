from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from leadflow.core.config import FlowSettings
from leadflow.core.errors import InvalidTransitionError
from leadflow.extraction import extract
from leadflow.flow import FlowAction, FlowEngine, FlowKey, FlowState, StepKey, transition

pytestmark = pytest.mark.unit

NOW = datetime(2026, 1, 10, 9, 0, tzinfo=UTC)


def _advance(engine: FlowEngine, state: FlowState, text: str, now: datetime = NOW, **kwargs):
    return engine.advance(state, text, extract(text), now, **kwargs)


def test_family_visa_asks_only_for_missing_fields_then_completes() -> None:
    engine = FlowEngine(FlowSettings())
    state = FlowState()

    first = _advance(engine, state, "Hi, I'm Ahmed from Egypt, I need a family visa for my wife and 2 kids")

    assert first.action is FlowAction.ASK
    assert first.question_key == "ask_sponsor_visa"
    assert first.state.flow_key is FlowKey.FAMILY_VISA
    assert first.state.step is StepKey.IN_TOPIC_SCRIPT
    assert first.state.questions_asked == 1
    assert state.questions_asked == 0

    second = _advance(engine, first.state, "I hold a golden visa", NOW + timedelta(minutes=2))

    assert second.action is FlowAction.COMPLETE
    assert second.state.step is StepKey.COMPLETED
    assert second.state.collected["sponsor_visa_type"] == "golden_visa"
    assert second.state.collected["service_intent"] == "family_visa"
    assert second.limit_reached is False

    third = _advance(engine, second.state, "thanks", NOW + timedelta(minutes=3))
    assert third.action is FlowAction.REPLY


def test_answered_questions_are_never_asked_again() -> None:
    engine = FlowEngine(FlowSettings())

    first = _advance(engine, FlowState(), "hello")
    assert first.question_key == "ask_name"
    assert first.state.step is StepKey.AWAITING_NAME

    second = _advance(engine, first.state, "Ahmed", NOW + timedelta(minutes=1))
    assert second.state.collected["name"] == "Ahmed"
    assert second.question_key == "ask_service"
    assert second.state.step is StepKey.AWAITING_SERVICE

    third = _advance(engine, second.state, "Family visa please", NOW + timedelta(minutes=2))
    assert third.state.flow_key is FlowKey.FAMILY_VISA
    assert third.question_key == "ask_nationality"
    assert third.state.question_history == ["ask_name", "ask_service", "ask_nationality"]


def test_stale_answers_are_not_attributed_to_the_question() -> None:
    engine = FlowEngine(FlowSettings(question_window_minutes=60))
    first = _advance(engine, FlowState(), "hello")

    late = _advance(engine, first.state, "Ahmed", NOW + timedelta(hours=2))

    assert "name" not in late.state.collected
    assert late.question_key == "ask_service"


def test_question_ceiling_hands_over_when_fields_are_missing() -> None:
    engine = FlowEngine(FlowSettings(max_questions=2))
    state = FlowState()

    for minute in range(2):
        decision = _advance(engine, state, "hello", NOW + timedelta(minutes=minute))
        assert decision.action is FlowAction.ASK
        state = decision.state

    final = _advance(engine, state, "hello", NOW + timedelta(minutes=3))

    assert final.action is FlowAction.HANDOVER
    assert final.reason == "question_ceiling"
    assert final.limit_reached is True
    assert final.state.questions_asked == 2
    assert final.state.step is StepKey.HANDOVER


def test_question_ceiling_completes_when_nothing_is_missing() -> None:
    engine = FlowEngine(FlowSettings(max_questions=1))
    first = _advance(engine, FlowState(), "Hi, I'm Ahmed from Egypt, I need a family visa for my wife and 2 kids")

    final = _advance(engine, first.state, "golden visa", NOW + timedelta(minutes=1))

    assert final.action is FlowAction.COMPLETE
    assert final.limit_reached is True


def test_ceiling_overrides_apply_per_flow() -> None:
    settings = FlowSettings(max_questions=5, max_questions_overrides={"intake": 1})

    assert settings.ceiling_for("intake") == 1
    assert settings.ceiling_for("family_visa") == 5


def test_unanswered_questions_hand_over() -> None:
    engine = FlowEngine(FlowSettings(max_questions=10))

    first = _advance(engine, FlowState(), "hello")
    second = _advance(engine, first.state, "hello", NOW + timedelta(minutes=1))
    third = _advance(engine, second.state, "hello", NOW + timedelta(minutes=2))

    assert first.question_key == "ask_name"
    assert second.question_key == "ask_service"
    assert third.action is FlowAction.HANDOVER
    assert third.reason == "unanswered_questions"


def test_escape_hatches_hand_over() -> None:
    engine = FlowEngine(FlowSettings(restricted_nationalities=["Afghanistan"]))

    risky = _advance(engine, FlowState(), "hello", high_risk=True)
    discount = _advance(engine, FlowState(), "Any discount?")
    human = _advance(engine, FlowState(), "Can I talk to a human?")
    restricted = _advance(engine, FlowState(), "I'm from Afghanistan")

    assert (risky.action, risky.reason) == (FlowAction.HANDOVER, "high_risk")
    assert discount.reason == "discount_request"
    assert human.reason == "human_request"
    assert restricted.reason == "restricted_nationality"

    after = _advance(engine, risky.state, "hello again")
    assert after.action is FlowAction.NONE
    assert after.state.step is StepKey.HANDOVER


def test_invalid_transitions_raise() -> None:
    assert transition(StepKey.START, StepKey.IN_TOPIC_SCRIPT) is StepKey.IN_TOPIC_SCRIPT

    with pytest.raises(InvalidTransitionError):
        transition(StepKey.HANDOVER, StepKey.IN_TOPIC_SCRIPT)
    with pytest.raises(InvalidTransitionError):
        transition(StepKey.IN_TOPIC_SCRIPT, StepKey.AWAITING_NAME)


def test_unanswered_question_is_not_asked_twice() -> None:
    engine = FlowEngine(FlowSettings())
    state = FlowState()
    asked: list[str] = []

    for minute, text in enumerate(["hello", "hmm?", "what?", "ok"]):
        decision = _advance(engine, state, text, NOW + timedelta(minutes=minute))
        state = decision.state
        if decision.question_key:
            assert decision.question_key not in asked
            asked.append(decision.question_key)

    assert asked == ["ask_name", "ask_service"]
    assert state.collected == {}
    assert state.step is StepKey.HANDOVER
