"""Deterministic conversation automaton.

``FlowEngine.advance`` is pure: it takes the persisted state plus one inbound
message and returns the next state and the action to take. Persistence lives
in :mod:`leadflow.flow.repository`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from leadflow.core.config import FlowSettings
from leadflow.core.errors import FlowLimitReached
from leadflow.extraction import PartialFields, is_empty, merge_collected

from .definitions import (
    FLOWS,
    TERMINAL_STEPS,
    FlowDefinition,
    FlowKey,
    Question,
    QuestionKey,
    StepKey,
    flow_for_service,
    transition,
)

logger = logging.getLogger(__name__)

_SERVICE_DEFAULTS: dict[str, dict[str, Any]] = {
    "freezone_business_setup": {"mainland_or_freezone": "freezone"},
}


class FlowAction(str, Enum):
    ASK = "ask"
    COMPLETE = "complete"
    HANDOVER = "handover"
    REPLY = "reply"
    NONE = "none"


@dataclass(slots=True)
class FlowState:
    """Persisted automaton state for one conversation."""

    flow_key: FlowKey | None = None
    step: StepKey = StepKey.START
    last_question_key: str | None = None
    last_question_at: datetime | None = None
    collected: dict[str, Any] = field(default_factory=dict)
    questions_asked: int = 0
    question_history: list[str] = field(default_factory=list)
    version: int = 0

    def copy(self) -> FlowState:
        return replace(
            self,
            collected=dict(self.collected),
            question_history=list(self.question_history),
        )

    @property
    def is_terminal(self) -> bool:
        return self.step in TERMINAL_STEPS


@dataclass(slots=True)
class FlowDecision:
    state: FlowState
    action: FlowAction
    question: Question | None = None
    reason: str | None = None
    limit_reached: bool = False

    @property
    def question_key(self) -> str | None:
        return self.question.key.value if self.question else None


class FlowEngine:
    """Pick the next question, or stop, for one inbound message."""

    def __init__(self, settings: FlowSettings) -> None:
        self._settings = settings
        self._restricted = {
            value.strip().lower() for value in settings.restricted_nationalities
        }

    def advance(
        self,
        state: FlowState,
        message: str,
        fields: PartialFields,
        now: datetime,
        *,
        high_risk: bool = False,
    ) -> FlowDecision:
        new = state.copy()
        new.collected = merge_collected(new.collected, fields.to_data())

        if new.step is StepKey.HANDOVER:
            return FlowDecision(new, FlowAction.NONE, reason="handover")

        escape = self._escape_hatch(new, fields, high_risk=high_risk)
        if escape is not None:
            return self._handover(new, escape)
        if new.step is StepKey.COMPLETED:
            return FlowDecision(new, FlowAction.REPLY, reason="completed")

        self._parse_pending_answer(new, message, fields, now)

        if new.flow_key is None or new.flow_key is FlowKey.INTAKE:
            new.flow_key = flow_for_service(new.collected.get("service_intent")) or FlowKey.INTAKE
            for key, value in _SERVICE_DEFAULTS.get(
                new.collected.get("service_intent") or "", {}
            ).items():
                new.collected.setdefault(key, value)

        # nationality may have arrived through the answer parser
        escape = self._escape_hatch(new, fields, high_risk=False)
        if escape is not None:
            return self._handover(new, escape)

        definition = FLOWS[new.flow_key]
        missing = self._missing(definition, new.collected)
        ceiling = self._settings.ceiling_for(new.flow_key.value)

        if new.questions_asked >= ceiling:
            limit = FlowLimitReached(new.flow_key.value, ceiling)
            logger.info("flow.limit_reached", extra=limit.details)
            if not missing:
                return self._complete(new, limit_reached=True)
            decision = self._handover(new, "question_ceiling")
            decision.limit_reached = True
            return decision

        if not missing:
            return self._complete(new)

        question = self._next_question(new, missing)
        if question is None:
            return self._handover(new, "unanswered_questions")

        new.step = transition(new.step, self._step_for(new.flow_key, question))
        new.last_question_key = question.key.value
        new.last_question_at = now
        new.questions_asked += 1
        new.question_history.append(question.key.value)
        return FlowDecision(new, FlowAction.ASK, question=question)

    def _parse_pending_answer(
        self, state: FlowState, message: str, fields: PartialFields, now: datetime
    ) -> None:
        if not state.last_question_key or state.flow_key is None:
            return
        asked_at = state.last_question_at
        if asked_at is not None and now - asked_at > timedelta(
            minutes=self._settings.question_window_minutes
        ):
            return
        question = FLOWS[state.flow_key].question(state.last_question_key)
        if question is None or not is_empty(state.collected.get(question.field)):
            return
        value = question.parser(message, fields)
        if not is_empty(value):
            state.collected[question.field] = value

    def _escape_hatch(
        self, state: FlowState, fields: PartialFields, *, high_risk: bool
    ) -> str | None:
        if high_risk:
            return "high_risk"
        if fields.human_request:
            return "human_request"
        if fields.discount_request:
            return "discount_request"
        nationality = state.collected.get("nationality")
        if nationality and str(nationality).lower() in self._restricted:
            return "restricted_nationality"
        return None

    def _missing(self, definition: FlowDefinition, collected: dict[str, Any]) -> list[Question]:
        return [q for q in definition.questions if is_empty(collected.get(q.field))]

    def _next_question(self, state: FlowState, missing: list[Question]) -> Question | None:
        for question in missing:
            if question.key.value not in state.question_history:
                return question
        return None

    def _step_for(self, flow_key: FlowKey, question: Question) -> StepKey:
        if flow_key is FlowKey.INTAKE:
            if question.key is QuestionKey.ASK_NAME:
                return StepKey.AWAITING_NAME
            return StepKey.AWAITING_SERVICE
        return StepKey.IN_TOPIC_SCRIPT

    def _complete(self, state: FlowState, *, limit_reached: bool = False) -> FlowDecision:
        state.step = transition(state.step, StepKey.COMPLETED)
        state.last_question_key = None
        return FlowDecision(
            state, FlowAction.COMPLETE, reason="completed", limit_reached=limit_reached
        )

    def _handover(self, state: FlowState, reason: str) -> FlowDecision:
        state.step = transition(state.step, StepKey.HANDOVER)
        state.last_question_key = None
        logger.info(
            "flow.handover",
            extra={"reason": reason, "flow_key": state.flow_key.value if state.flow_key else None},
        )
        return FlowDecision(state, FlowAction.HANDOVER, reason=reason)
