"""Human-visible follow-up tasks created by automation."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from prometheus_client import Counter
from sqlmodel import Session, select

from leadflow.core.db import models
from leadflow.core.db.upsert import insert_ignore

logger = logging.getLogger(__name__)

FOLLOWUP_TASKS_CREATED = Counter(
    "leadflow_followup_tasks_created_total",
    "Follow-up tasks created by automation.",
    ["kind"],
)


class FollowUpService:
    """Create follow-up tasks at most once per idempotency key.

    Does not commit; tasks become visible with the caller's transaction.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def create_task(
        self,
        kind: models.TaskKind,
        title: str,
        *,
        idempotency_key: str,
        conversation_id: UUID | None = None,
        lead_id: UUID | None = None,
        due_at: datetime | None = None,
        details: dict[str, Any] | None = None,
    ) -> bool:
        created = insert_ignore(
            self._session,
            models.FollowUpTask,
            {
                "kind": kind.value,
                "title": title[:255],
                "status": models.TaskStatus.OPEN.value,
                "conversation_id": conversation_id,
                "lead_id": lead_id,
                "due_at": due_at,
                "details": details,
                "idempotency_key": idempotency_key,
            },
            conflict_columns=("idempotency_key",),
        )
        if created:
            FOLLOWUP_TASKS_CREATED.labels(kind.value).inc()
            logger.info(
                "followup.task.created",
                extra={"kind": kind.value, "idempotency_key": idempotency_key},
            )
        return created

    def open_tasks(
        self,
        *,
        conversation_id: UUID | None = None,
        kind: models.TaskKind | None = None,
    ) -> list[models.FollowUpTask]:
        statement = select(models.FollowUpTask).where(
            models.FollowUpTask.status == models.TaskStatus.OPEN.value
        )
        if conversation_id:
            statement = statement.where(models.FollowUpTask.conversation_id == conversation_id)
        if kind:
            statement = statement.where(models.FollowUpTask.kind == kind.value)
        return list(self._session.exec(statement.order_by(models.FollowUpTask.created_at)))
