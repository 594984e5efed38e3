"""Durable per-conversation leases serializing outbound replies."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import UTC, datetime, timedelta
from uuid import UUID

from prometheus_client import Counter
from sqlalchemy import delete, or_, update
from sqlmodel import Session

from leadflow.core.config import DispatchSettings
from leadflow.core.db import models
from leadflow.core.db.session import store_guard
from leadflow.core.db.upsert import insert_ignore

logger = logging.getLogger(__name__)

LOCK_CONTENTION = Counter(
    "leadflow_conversation_lock_contention_total",
    "Conversation lease acquisitions that had to wait or gave up.",
    ["outcome"],
)


class ConversationLockManager:
    """Acquire, release and expire ``conversation_locks`` rows.

    A lease is taken by inserting the row, or by a conditional update that
    only succeeds when the current lease has expired (or already belongs to
    the same holder). Every write commits immediately so other workers see it.
    """

    def __init__(self, session: Session, settings: DispatchSettings) -> None:
        self._session = session
        self._settings = settings

    def try_acquire(
        self, conversation_id: UUID, holder: str, *, now: datetime | None = None
    ) -> bool:
        now = now or datetime.now(tz=UTC)
        expires_at = now + timedelta(seconds=self._settings.lock_ttl_seconds)
        with store_guard():
            acquired = insert_ignore(
                self._session,
                models.ConversationLock,
                {
                    "conversation_id": conversation_id,
                    "holder": holder,
                    "acquired_at": now,
                    "expires_at": expires_at,
                },
                conflict_columns=("conversation_id",),
            )
            if not acquired:
                result = self._session.exec(
                    update(models.ConversationLock)
                    .where(
                        models.ConversationLock.conversation_id == conversation_id,
                        or_(
                            models.ConversationLock.expires_at <= now,
                            models.ConversationLock.holder == holder,
                        ),
                    )
                    .values(holder=holder, acquired_at=now, expires_at=expires_at)
                    .execution_options(synchronize_session=False)
                )
                acquired = result.rowcount > 0
            self._session.commit()
        return acquired

    async def acquire(self, conversation_id: UUID, holder: str) -> bool:
        """Poll :meth:`try_acquire` for at most ``lock_wait_seconds``."""

        deadline = time.monotonic() + self._settings.lock_wait_seconds
        waited = False
        while True:
            if self.try_acquire(conversation_id, holder):
                if waited:
                    LOCK_CONTENTION.labels("acquired_after_wait").inc()
                return True
            if time.monotonic() >= deadline:
                LOCK_CONTENTION.labels("busy").inc()
                logger.info(
                    "dispatch.lock.busy",
                    extra={"conversation_id": str(conversation_id), "holder": holder},
                )
                return False
            waited = True
            await asyncio.sleep(self._settings.lock_poll_seconds)

    def release(self, conversation_id: UUID, holder: str) -> bool:
        with store_guard():
            result = self._session.exec(
                delete(models.ConversationLock).where(
                    models.ConversationLock.conversation_id == conversation_id,
                    models.ConversationLock.holder == holder,
                )
            )
            self._session.commit()
        return result.rowcount > 0

    def purge_expired(self, *, now: datetime | None = None) -> int:
        now = now or datetime.now(tz=UTC)
        with store_guard():
            result = self._session.exec(
                delete(models.ConversationLock).where(
                    models.ConversationLock.expires_at <= now
                )
            )
            self._session.commit()
        if result.rowcount:
            logger.info("dispatch.lock.purged", extra={"count": result.rowcount})
        return result.rowcount or 0
