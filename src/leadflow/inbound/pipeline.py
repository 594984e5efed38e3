"""Synchronous ingress path for one inbound event.

Everything here runs inside the webhook request: record the idempotency key,
resolve entities, store the message, extract fields, advance the flow and
enqueue at most one job. Generation and sending happen in the worker pool.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from prometheus_client import Counter
from sqlalchemy import update
from sqlmodel import Session, select

from leadflow.automation.notifier import JobNotifier
from leadflow.automation.queue import JobQueue, JobType
from leadflow.core.config import AppSettings
from leadflow.core.db import models
from leadflow.core.db.session import store_guard
from leadflow.core.db.upsert import insert_ignore
from leadflow.core.domain import DeliveryStatusUpdate, InboundEnvelope
from leadflow.core.errors import FlowStateConflict, StoreUnavailableError
from leadflow.dispatch.risk import RiskAssessment, classify_risk
from leadflow.extraction import PartialFields, extract
from leadflow.flow import FlowAction, FlowDecision, FlowEngine, FlowKey, FlowStateRepository
from leadflow.followups import FollowUpService
from leadflow.idempotency import IdempotencyStore
from leadflow.resolution import EntityResolver, Resolution
from leadflow.utils.retry import RetryConfig, RetryState, retry

logger = logging.getLogger(__name__)

INBOUND_EVENTS = Counter(
    "leadflow_inbound_events_total",
    "Inbound webhook events by outcome.",
    ["channel", "outcome"],
)

FLOW_RETRY = RetryConfig(attempts=3, base_delay=0.02, max_delay=0.2)
REPLY_NEEDED_DELAY = timedelta(minutes=10)

_STATUS_RANK = {
    models.DeliveryStatus.PENDING.value: 0,
    models.DeliveryStatus.SENT.value: 1,
    models.DeliveryStatus.DELIVERED.value: 2,
    models.DeliveryStatus.READ.value: 3,
    models.DeliveryStatus.FAILED.value: 2,
}


@dataclass(slots=True, frozen=True)
class InboundOutcome:
    provider_message_id: str
    status: str
    conversation_id: UUID | None = None
    action: str | None = None
    job_id: UUID | None = None
    job_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider_message_id": self.provider_message_id,
            "status": self.status,
            "conversation_id": str(self.conversation_id) if self.conversation_id else None,
            "action": self.action,
            "job_id": str(self.job_id) if self.job_id else None,
        }


class InboundPipeline:
    """Process inbound envelopes with record-first idempotency."""

    def __init__(
        self,
        session: Session,
        settings: AppSettings,
        *,
        notifier: JobNotifier | None = None,
    ) -> None:
        self._session = session
        self._settings = settings
        self._notifier = notifier
        self._idempotency = IdempotencyStore(session)
        self._resolver = EntityResolver(session, settings)
        self._flows = FlowStateRepository(session)
        self._engine = FlowEngine(settings.flow)

    def process(self, envelope: InboundEnvelope) -> InboundOutcome:
        """Handle one event; only :class:`StoreUnavailableError` escapes."""

        channel = envelope.channel
        record = self._idempotency.record_inbound(channel, envelope.provider_message_id)
        if not record.is_new:
            INBOUND_EVENTS.labels(channel.value, "duplicate").inc()
            return InboundOutcome(envelope.provider_message_id, "duplicate")

        try:
            with store_guard():
                outcome = self._process_new(envelope)
        except StoreUnavailableError:
            raise
        except Exception as exc:
            self._session.rollback()
            logger.exception(
                "inbound.failed",
                extra={
                    "channel": channel.value,
                    "provider_message_id": envelope.provider_message_id,
                },
            )
            self._idempotency.fail_inbound(
                channel, envelope.provider_message_id, str(exc) or type(exc).__name__
            )
            INBOUND_EVENTS.labels(channel.value, "failed").inc()
            return InboundOutcome(envelope.provider_message_id, "failed")

        self._idempotency.complete_inbound(channel, envelope.provider_message_id)
        INBOUND_EVENTS.labels(channel.value, "processed").inc()
        if outcome.job_id is not None and self._notifier is not None:
            self._notifier.notify(outcome.job_type or "")
        return outcome

    def apply_status(self, status: DeliveryStatusUpdate) -> bool:
        """Advance an outbound message's delivery status; never moves it backwards."""

        with store_guard():
            message = self._session.exec(
                select(models.Message).where(
                    models.Message.channel == status.channel.value,
                    models.Message.provider_message_id == status.provider_message_id,
                    models.Message.direction == models.MessageDirection.OUTBOUND.value,
                )
            ).first()
            if message is None or status.status not in _STATUS_RANK:
                return False
            if _STATUS_RANK[status.status] <= _STATUS_RANK.get(message.delivery_status, 0):
                return False
            message.delivery_status = status.status
            self._session.add(message)
            self._session.commit()
        logger.info(
            "inbound.status.applied",
            extra={"provider_message_id": status.provider_message_id, "status": status.status},
        )
        return True

    def _process_new(self, envelope: InboundEnvelope) -> InboundOutcome:
        resolution = self._resolver.resolve(
            envelope.channel,
            envelope.sender_address,
            envelope.received_at,
            display_name=envelope.display_name,
            wa_id=envelope.wa_id,
        )
        self._store_message(envelope, resolution)

        fields = extract(envelope.body)
        self._resolver.apply_extraction(resolution.lead, resolution.contact, fields)
        risk = classify_risk(envelope.body)
        self._session.commit()

        attempt = retry(
            config=FLOW_RETRY,
            exceptions=(FlowStateConflict,),
            before_sleep=self._rollback,
        )(self._advance_and_schedule)
        return attempt(envelope, resolution, fields, risk)

    def _store_message(self, envelope: InboundEnvelope, resolution: Resolution) -> None:
        created = insert_ignore(
            self._session,
            models.Message,
            {
                "conversation_id": resolution.conversation.id,
                "lead_id": resolution.lead.id,
                "direction": models.MessageDirection.INBOUND.value,
                "channel": envelope.channel.value,
                "provider_message_id": envelope.provider_message_id,
                "message_type": envelope.message_type.value,
                "body": envelope.body,
                "media_ref": envelope.media_ref,
                "delivery_status": models.DeliveryStatus.RECEIVED.value,
            },
            conflict_columns=("channel", "provider_message_id"),
        )
        if not created:
            logger.info(
                "inbound.message.exists",
                extra={"provider_message_id": envelope.provider_message_id},
            )

    def _advance_and_schedule(
        self,
        envelope: InboundEnvelope,
        resolution: Resolution,
        fields: PartialFields,
        risk: RiskAssessment,
    ) -> InboundOutcome:
        conversation, state = self._flows.reload(resolution.conversation.id)
        lead_id = resolution.lead.id
        tasks = FollowUpService(self._session)
        now = datetime.now(tz=UTC)

        if risk.high_risk:
            tasks.create_task(
                models.TaskKind.HIGH_RISK,
                f"High-risk message needs a human ({risk.reason})",
                idempotency_key=f"high_risk:{envelope.channel.value}:{envelope.provider_message_id}",
                conversation_id=conversation.id,
                lead_id=lead_id,
                due_at=now,
                details={"reason": risk.reason, "body": envelope.body[:500]},
            )

        if conversation.assigned_to:
            self._reply_needed(tasks, envelope, conversation.id, lead_id, now)
            self._session.commit()
            return InboundOutcome(
                envelope.provider_message_id, "processed", conversation.id, "human_owned"
            )

        decision = self._engine.advance(
            state, envelope.body, fields, now, high_risk=risk.high_risk
        )
        self._flows.save(conversation.id, decision.state, expected_version=state.version)

        job_id = None
        job_type: JobType | None = None
        if decision.action is FlowAction.NONE:
            self._reply_needed(tasks, envelope, conversation.id, lead_id, now)
        elif decision.action is FlowAction.HANDOVER:
            tasks.create_task(
                models.TaskKind.HANDOVER,
                f"Conversation handed over ({decision.reason})",
                idempotency_key=f"handover:{conversation.id}",
                conversation_id=conversation.id,
                lead_id=lead_id,
                due_at=now,
                details={"reason": decision.reason, "limit_reached": decision.limit_reached},
            )
            if not risk.high_risk:
                job_type = JobType.HANDOVER_NOTICE
                job_id = self._enqueue(
                    JobType.HANDOVER_NOTICE,
                    envelope,
                    resolution,
                    decision,
                    idempotency_key=f"handover_notice:{conversation.id}",
                    priority=10,
                )
        else:
            if decision.action is FlowAction.COMPLETE:
                self._on_complete(tasks, decision, conversation.id, lead_id, now)
            job_type = JobType.AUTO_REPLY
            job_id = self._enqueue(
                JobType.AUTO_REPLY,
                envelope,
                resolution,
                decision,
                idempotency_key=f"auto_reply:{envelope.channel.value}:{envelope.provider_message_id}",
            )

        self._session.commit()
        logger.info(
            "inbound.processed",
            extra={
                "conversation_id": str(conversation.id),
                "action": decision.action.value,
                "question_key": decision.question_key,
                "flow_key": decision.state.flow_key.value if decision.state.flow_key else None,
            },
        )
        return InboundOutcome(
            envelope.provider_message_id,
            "processed",
            conversation.id,
            decision.action.value,
            job_id,
            job_type.value if job_type else None,
        )

    def _enqueue(
        self,
        job_type: JobType,
        envelope: InboundEnvelope,
        resolution: Resolution,
        decision: FlowDecision,
        *,
        idempotency_key: str,
        priority: int = 0,
    ) -> UUID:
        collected = {
            key: value for key, value in decision.state.collected.items() if not key.startswith("_")
        }
        payload = {
            "conversation_id": str(resolution.conversation.id),
            "lead_id": str(resolution.lead.id),
            "channel": envelope.channel.value,
            "trigger_message_id": envelope.provider_message_id,
            "action": decision.action.value,
            "reason": decision.reason,
            "question_key": decision.question_key,
            "question_prompt": decision.question.prompt if decision.question else None,
            "body": envelope.body,
            "contact_name": collected.get("name") or resolution.contact.display_name,
            "service_intent": collected.get("service_intent"),
            "collected": collected,
        }
        return JobQueue(self._session, self._settings.queue).enqueue(
            job_type.value, payload, priority=priority, idempotency_key=idempotency_key
        )

    def _on_complete(
        self,
        tasks: FollowUpService,
        decision: FlowDecision,
        conversation_id: UUID,
        lead_id: UUID,
        now: datetime,
    ) -> None:
        self._session.exec(
            update(models.Lead)
            .where(
                models.Lead.id == lead_id,
                models.Lead.stage.in_(
                    (models.LeadStage.NEW.value, models.LeadStage.CONTACTED.value)
                ),
            )
            .values(stage=models.LeadStage.QUALIFIED.value)
            .execution_options(synchronize_session=False)
        )
        if decision.state.flow_key is FlowKey.BUSINESS_SETUP:
            tasks.create_task(
                models.TaskKind.QUOTE,
                "Prepare a business setup quote",
                idempotency_key=f"quote:{lead_id}",
                conversation_id=conversation_id,
                lead_id=lead_id,
                due_at=now,
                details={
                    key: decision.state.collected.get(key)
                    for key in (
                        "business_activity",
                        "mainland_or_freezone",
                        "partners_count",
                        "visas_count",
                    )
                },
            )

    def _reply_needed(
        self,
        tasks: FollowUpService,
        envelope: InboundEnvelope,
        conversation_id: UUID,
        lead_id: UUID,
        now: datetime,
    ) -> None:
        tasks.create_task(
            models.TaskKind.REPLY_NEEDED,
            "Customer wrote in a human-handled conversation",
            idempotency_key=f"reply_needed:{lead_id}:{envelope.provider_message_id}",
            conversation_id=conversation_id,
            lead_id=lead_id,
            due_at=now + REPLY_NEEDED_DELAY,
            details={"body": envelope.body[:500]},
        )

    def _rollback(self, state: RetryState) -> None:
        logger.warning(
            "inbound.flow.conflict.retry",
            extra={"attempt": state.attempt, "error": str(state.last_exception)},
        )
        self._session.rollback()
