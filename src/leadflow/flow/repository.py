"""Load and persist :class:`FlowState` on the conversation row."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import update
from sqlmodel import Session, select

from leadflow.core.db import models
from leadflow.core.errors import FlowStateConflict, NotFoundError

from .definitions import FlowKey, StepKey
from .machine import FlowState

logger = logging.getLogger(__name__)


class FlowStateRepository:
    """Optimistic persistence keyed by ``Conversation.state_version``."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def load(self, conversation: models.Conversation) -> FlowState:
        return FlowState(
            flow_key=FlowKey(conversation.flow_key) if conversation.flow_key else None,
            step=StepKey(conversation.flow_step) if conversation.flow_step else StepKey.START,
            last_question_key=conversation.last_question_key,
            last_question_at=models.as_utc(conversation.last_question_at),
            collected=dict(conversation.collected_data or {}),
            questions_asked=conversation.questions_asked or 0,
            question_history=list(conversation.question_history or []),
            version=conversation.state_version or 0,
        )

    def reload(self, conversation_id: UUID) -> tuple[models.Conversation, FlowState]:
        conversation = self._session.exec(
            select(models.Conversation)
            .where(models.Conversation.id == conversation_id)
            .execution_options(populate_existing=True)
        ).first()
        if conversation is None:
            raise NotFoundError("conversation not found", details={"id": str(conversation_id)})
        return conversation, self.load(conversation)

    def save(
        self, conversation_id: UUID, state: FlowState, *, expected_version: int
    ) -> FlowState:
        """Write ``state`` only if nobody else advanced the flow meanwhile.

        Raises:
            FlowStateConflict: when ``state_version`` no longer equals
                ``expected_version``.
        """

        result = self._session.exec(
            update(models.Conversation)
            .where(
                models.Conversation.id == conversation_id,
                models.Conversation.state_version == expected_version,
            )
            .values(
                flow_key=state.flow_key.value if state.flow_key else None,
                flow_step=state.step.value,
                last_question_key=state.last_question_key,
                last_question_at=state.last_question_at,
                collected_data=dict(state.collected),
                questions_asked=state.questions_asked,
                question_history=list(state.question_history),
                state_version=expected_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning(
                "flow.state.version_mismatch",
                extra={
                    "conversation_id": str(conversation_id),
                    "expected_version": expected_version,
                },
            )
            raise FlowStateConflict(str(conversation_id), expected_version)
        state.version = expected_version + 1
        return state
