"""Conversation flow state machine."""

from .definitions import (
    FLOWS,
    TERMINAL_STEPS,
    TRANSITIONS,
    FlowDefinition,
    FlowKey,
    Question,
    QuestionKey,
    StepKey,
    flow_for_service,
    transition,
)
from .machine import FlowAction, FlowDecision, FlowEngine, FlowState
from .repository import FlowStateRepository

__all__ = [
    "FLOWS",
    "TERMINAL_STEPS",
    "TRANSITIONS",
    "FlowAction",
    "FlowDecision",
    "FlowDefinition",
    "FlowEngine",
    "FlowKey",
    "FlowState",
    "FlowStateRepository",
    "Question",
    "QuestionKey",
    "StepKey",
    "flow_for_service",
    "transition",
]
