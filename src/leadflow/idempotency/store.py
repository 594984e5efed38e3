"""Durable idempotency records for inbound events and outbound replies.

The unique constraints on ``inbound_idempotency`` and ``outbound_idempotency``
are the only source of truth for "has this already happened". Every record
call commits before returning so callers can start side effects safely.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID

from prometheus_client import Counter
from sqlalchemy import update
from sqlmodel import Session, select

from leadflow.core.db import models
from leadflow.core.db.session import store_guard
from leadflow.core.db.upsert import insert_ignore
from leadflow.core.domain import ChannelType

logger = logging.getLogger(__name__)

IDEMPOTENCY_DECISIONS = Counter(
    "leadflow_idempotency_decisions_total",
    "Idempotency record outcomes by direction.",
    ["direction", "outcome"],
)


@dataclass(slots=True, frozen=True)
class RecordResult:
    """Outcome of an idempotency record attempt."""

    is_new: bool
    channel: str
    key: str
    reclaimed: bool = False


def channel_value(channel: ChannelType | str) -> str:
    return channel.value if isinstance(channel, ChannelType) else str(channel).lower()


class IdempotencyStore:
    """Record-first guards for inbound processing and outbound dispatch."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def record_inbound(
        self, channel: ChannelType | str, provider_message_id: str
    ) -> RecordResult:
        """Mark an inbound event as seen; ``is_new=False`` means stop processing.

        A record left ``failed`` by an earlier attempt is claimed back so the
        provider's retry can finish the work.
        """

        channel_key = channel_value(channel)
        with store_guard():
            created = insert_ignore(
                self._session,
                models.InboundIdempotencyRecord,
                {
                    "channel": channel_key,
                    "provider_message_id": provider_message_id,
                    "status": models.InboundStatus.PENDING.value,
                },
                conflict_columns=("channel", "provider_message_id"),
            )
            reclaimed = False
            if not created:
                reclaimed = self._reclaim(
                    models.InboundIdempotencyRecord,
                    models.InboundIdempotencyRecord.provider_message_id,
                    channel_key,
                    provider_message_id,
                    reclaimable=models.InboundStatus.FAILED.value,
                    pending=models.InboundStatus.PENDING.value,
                )
            self._session.commit()

        is_new = created or reclaimed
        IDEMPOTENCY_DECISIONS.labels("inbound", _outcome(created, reclaimed)).inc()
        if not is_new:
            logger.info(
                "idempotency.inbound.duplicate",
                extra={"channel": channel_key, "provider_message_id": provider_message_id},
            )
        return RecordResult(
            is_new=is_new, channel=channel_key, key=provider_message_id, reclaimed=reclaimed
        )

    def complete_inbound(self, channel: ChannelType | str, provider_message_id: str) -> None:
        self._set_inbound_status(
            channel, provider_message_id, models.InboundStatus.COMPLETED, error=None
        )

    def fail_inbound(
        self, channel: ChannelType | str, provider_message_id: str, error: str
    ) -> None:
        self._set_inbound_status(
            channel, provider_message_id, models.InboundStatus.FAILED, error=error
        )

    def record_outbound(
        self,
        channel: ChannelType | str,
        trigger_message_id: str,
        *,
        conversation_id: UUID,
    ) -> RecordResult:
        """Claim the right to reply to ``trigger_message_id``.

        Must be committed before the send attempt: a crash after sending then
        leaves a ``pending`` record, which blocks a duplicate on retry and is
        later picked up by :meth:`reconcile_stale_outbound`.
        """

        channel_key = channel_value(channel)
        with store_guard():
            created = insert_ignore(
                self._session,
                models.OutboundIdempotencyRecord,
                {
                    "channel": channel_key,
                    "trigger_message_id": trigger_message_id,
                    "conversation_id": conversation_id,
                    "status": models.OutboundStatus.PENDING.value,
                },
                conflict_columns=("channel", "trigger_message_id"),
            )
            reclaimed = False
            if not created:
                reclaimed = self._reclaim(
                    models.OutboundIdempotencyRecord,
                    models.OutboundIdempotencyRecord.trigger_message_id,
                    channel_key,
                    trigger_message_id,
                    reclaimable=models.OutboundStatus.FAILED.value,
                    pending=models.OutboundStatus.PENDING.value,
                )
            self._session.commit()

        IDEMPOTENCY_DECISIONS.labels("outbound", _outcome(created, reclaimed)).inc()
        return RecordResult(
            is_new=created or reclaimed,
            channel=channel_key,
            key=trigger_message_id,
            reclaimed=reclaimed,
        )

    def mark_outbound_sent(
        self,
        channel: ChannelType | str,
        trigger_message_id: str,
        *,
        provider_message_id: str | None,
        message_id: UUID,
    ) -> None:
        self._update_outbound(
            channel,
            trigger_message_id,
            status=models.OutboundStatus.SENT.value,
            provider_message_id=provider_message_id,
            message_id=message_id,
            error=None,
        )

    def mark_outbound_failed(
        self,
        channel: ChannelType | str,
        trigger_message_id: str,
        *,
        error: str,
        retryable: bool,
    ) -> None:
        """Release (retryable) or abandon (terminal) an outbound claim."""

        status = (
            models.OutboundStatus.FAILED if retryable else models.OutboundStatus.ABANDONED
        )
        self._update_outbound(
            channel, trigger_message_id, status=status.value, error=error
        )

    def get_outbound(
        self, channel: ChannelType | str, trigger_message_id: str
    ) -> models.OutboundIdempotencyRecord | None:
        statement = select(models.OutboundIdempotencyRecord).where(
            models.OutboundIdempotencyRecord.channel == channel_value(channel),
            models.OutboundIdempotencyRecord.trigger_message_id == trigger_message_id,
        )
        return self._session.exec(statement).first()

    def reconcile_stale_outbound(
        self, *, older_than: timedelta, now: datetime | None = None
    ) -> list[models.OutboundIdempotencyRecord]:
        """Flag outbound claims stuck in ``pending`` as ``unconfirmed``.

        These are sends whose outcome was never recorded (worker crashed
        between the send and the record update). They are never resent
        automatically; the caller opens a verification task for a human.
        """

        cutoff = (now or datetime.now(tz=UTC)) - older_than
        with store_guard():
            stale = list(
                self._session.exec(
                    select(models.OutboundIdempotencyRecord).where(
                        models.OutboundIdempotencyRecord.status
                        == models.OutboundStatus.PENDING.value,
                        models.OutboundIdempotencyRecord.updated_at < cutoff,
                    )
                )
            )
            flagged: list[models.OutboundIdempotencyRecord] = []
            for record in stale:
                result = self._session.exec(
                    update(models.OutboundIdempotencyRecord)
                    .where(
                        models.OutboundIdempotencyRecord.id == record.id,
                        models.OutboundIdempotencyRecord.status
                        == models.OutboundStatus.PENDING.value,
                    )
                    .values(status=models.OutboundStatus.UNCONFIRMED.value)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount:
                    flagged.append(record)
            self._session.commit()

        for record in flagged:
            self._session.refresh(record)
            logger.warning(
                "idempotency.outbound.unconfirmed",
                extra={
                    "channel": record.channel,
                    "trigger_message_id": record.trigger_message_id,
                    "conversation_id": str(record.conversation_id),
                },
            )
        return flagged

    def _reclaim(
        self,
        model: type[models.InboundIdempotencyRecord] | type[models.OutboundIdempotencyRecord],
        key_column: object,
        channel: str,
        key: str,
        *,
        reclaimable: str,
        pending: str,
    ) -> bool:
        result = self._session.exec(
            update(model)
            .where(model.channel == channel, key_column == key, model.status == reclaimable)
            .values(status=pending, error=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    def _set_inbound_status(
        self,
        channel: ChannelType | str,
        provider_message_id: str,
        status: models.InboundStatus,
        *,
        error: str | None,
    ) -> None:
        with store_guard():
            self._session.exec(
                update(models.InboundIdempotencyRecord)
                .where(
                    models.InboundIdempotencyRecord.channel == channel_value(channel),
                    models.InboundIdempotencyRecord.provider_message_id
                    == provider_message_id,
                )
                .values(status=status.value, error=error)
                .execution_options(synchronize_session=False)
            )
            self._session.commit()

    def _update_outbound(
        self, channel: ChannelType | str, trigger_message_id: str, **values: object
    ) -> None:
        with store_guard():
            self._session.exec(
                update(models.OutboundIdempotencyRecord)
                .where(
                    models.OutboundIdempotencyRecord.channel == channel_value(channel),
                    models.OutboundIdempotencyRecord.trigger_message_id
                    == trigger_message_id,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            self._session.commit()


def _outcome(created: bool, reclaimed: bool) -> str:
    if created:
        return "new"
    if reclaimed:
        return "reclaimed"
    return "duplicate"
