"""The single legal path from a decided reply to an external send call."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from prometheus_client import Counter
from sqlalchemy import or_, update
from sqlmodel import Session, select

from leadflow.core.config import AppSettings
from leadflow.core.db import models
from leadflow.core.db.session import store_guard
from leadflow.core.domain import ChannelType, ReplyContent
from leadflow.core.errors import (
    DispatchLockBusy,
    FlowStateConflict,
    GenerationTimeout,
    NotFoundError,
    TransportError,
    TransportErrorClass,
)
from leadflow.flow import FlowStateRepository
from leadflow.followups import FollowUpService
from leadflow.idempotency import IdempotencyStore

from .locks import ConversationLockManager
from .transport import MessageTransport, SendResult

logger = logging.getLogger(__name__)

DISPATCH_OUTCOMES = Counter(
    "leadflow_dispatch_outcomes_total",
    "Outbound dispatch attempts by outcome.",
    ["channel", "outcome"],
)

GenerateFn = Callable[[], Awaitable[ReplyContent]]

DEFAULT_ACKNOWLEDGEMENT = ReplyContent(
    text="Thanks for your message! A consultant will get back to you shortly."
)


@dataclass(slots=True, frozen=True)
class DispatchResult:
    sent: bool
    skipped: bool
    message_id: UUID | None = None
    reason: str | None = None
    provider_message_id: str | None = None


class OutboundDispatchGuard:
    """Send at most one reply per triggering inbound event.

    Order matters: the outbound idempotency record is committed before the
    lease is taken and long before the transport is called, so a crash after
    the send can never produce a second send for the same trigger.
    """

    def __init__(
        self,
        session: Session,
        settings: AppSettings,
        transports: Mapping[ChannelType, MessageTransport],
        *,
        holder: str,
    ) -> None:
        self._session = session
        self._settings = settings
        self._transports = transports
        self._holder = holder
        self._idempotency = IdempotencyStore(session)
        self._locks = ConversationLockManager(session, settings.dispatch)

    async def send_reply(
        self,
        conversation_id: UUID,
        trigger_inbound_id: str,
        generate_fn: GenerateFn,
        *,
        fallback: ReplyContent | None = None,
    ) -> DispatchResult:
        conversation = self._load_conversation(conversation_id)
        channel = ChannelType(conversation.channel)

        if conversation.assigned_to:
            return self._skip(channel, conversation_id, trigger_inbound_id, "human_assigned")

        record = self._idempotency.record_outbound(
            channel, trigger_inbound_id, conversation_id=conversation_id
        )
        if not record.is_new:
            return self._skip(channel, conversation_id, trigger_inbound_id, "duplicate")

        if not await self._locks.acquire(conversation_id, self._holder):
            self._idempotency.mark_outbound_failed(
                channel, trigger_inbound_id, error="conversation lock busy", retryable=True
            )
            DISPATCH_OUTCOMES.labels(channel.value, "lock_busy").inc()
            raise DispatchLockBusy(str(conversation_id))

        try:
            content = await self._generate(generate_fn, fallback, conversation_id)
            try:
                result = await self._send(channel, conversation, content)
            except TransportError as exc:
                self._record_transport_failure(
                    channel, conversation, trigger_inbound_id, content, exc
                )
                raise
            message_id = self._persist(
                channel, conversation, trigger_inbound_id, content, result
            )
        finally:
            self._locks.release(conversation_id, self._holder)

        DISPATCH_OUTCOMES.labels(channel.value, "sent").inc()
        logger.info(
            "dispatch.sent",
            extra={
                "conversation_id": str(conversation_id),
                "trigger_message_id": trigger_inbound_id,
                "provider_message_id": result.provider_message_id,
                "question_key": content.question_key,
            },
        )
        return DispatchResult(
            sent=True,
            skipped=False,
            message_id=message_id,
            provider_message_id=result.provider_message_id,
        )

    def _load_conversation(self, conversation_id: UUID) -> models.Conversation:
        with store_guard():
            conversation = self._session.exec(
                select(models.Conversation)
                .where(models.Conversation.id == conversation_id)
                .execution_options(populate_existing=True)
            ).first()
        if conversation is None:
            raise NotFoundError(
                "conversation not found", details={"id": str(conversation_id)}
            )
        return conversation

    def _skip(
        self, channel: ChannelType, conversation_id: UUID, trigger: str, reason: str
    ) -> DispatchResult:
        DISPATCH_OUTCOMES.labels(channel.value, reason).inc()
        logger.info(
            "dispatch.skipped",
            extra={
                "conversation_id": str(conversation_id),
                "trigger_message_id": trigger,
                "reason": reason,
            },
        )
        return DispatchResult(sent=False, skipped=True, reason=reason)

    async def _generate(
        self,
        generate_fn: GenerateFn,
        fallback: ReplyContent | None,
        conversation_id: UUID,
    ) -> ReplyContent:
        timeout = self._settings.llm.generation_timeout_seconds
        try:
            content = await asyncio.wait_for(generate_fn(), timeout=timeout)
        except TimeoutError:
            error = GenerationTimeout(timeout)
            logger.warning(
                "dispatch.generation.timeout",
                extra={"conversation_id": str(conversation_id), **error.details},
            )
            return fallback or DEFAULT_ACKNOWLEDGEMENT
        except Exception as exc:
            logger.warning(
                "dispatch.generation.failed",
                extra={"conversation_id": str(conversation_id), "error": str(exc)},
            )
            return fallback or DEFAULT_ACKNOWLEDGEMENT
        if not content.text.strip():
            return fallback or DEFAULT_ACKNOWLEDGEMENT
        return content

    async def _send(
        self,
        channel: ChannelType,
        conversation: models.Conversation,
        content: ReplyContent,
    ) -> SendResult:
        transport = self._transports.get(channel)
        if transport is None:
            raise TransportError(
                TransportErrorClass.AUTH, f"no transport configured for {channel.value}"
            )
        contact = self._session.get(models.Contact, conversation.contact_id)
        if contact is None:
            raise NotFoundError(
                "contact not found", details={"id": str(conversation.contact_id)}
            )
        to = contact.canonical_address
        if channel is ChannelType.WHATSAPP and contact.wa_id:
            to = contact.wa_id

        try:
            return await transport.send(to, content.text, content.media_ref)
        except TransportError as exc:
            if exc.error_class is not TransportErrorClass.EXPIRED or not content.media_ref:
                raise
            logger.warning(
                "dispatch.media_expired",
                extra={"conversation_id": str(conversation.id), "media_ref": content.media_ref},
            )
            content.media_ref = None
        # a second expired error is terminal
        return await transport.send(to, content.text, None)

    def _persist(
        self,
        channel: ChannelType,
        conversation: models.Conversation,
        trigger_inbound_id: str,
        content: ReplyContent,
        result: SendResult,
    ) -> UUID:
        now = datetime.now(tz=UTC)
        message = models.Message(
            conversation_id=conversation.id,
            lead_id=conversation.current_lead_id,
            direction=models.MessageDirection.OUTBOUND.value,
            channel=channel.value,
            provider_message_id=result.provider_message_id,
            message_type="media" if content.media_ref else "text",
            body=content.text,
            media_ref=content.media_ref,
            delivery_status=models.DeliveryStatus.SENT.value,
            question_key=content.question_key,
            sent_at=now,
        )
        with store_guard():
            self._session.add(message)
            self._session.exec(
                update(models.Conversation)
                .where(
                    models.Conversation.id == conversation.id,
                    or_(
                        models.Conversation.last_outbound_at.is_(None),
                        models.Conversation.last_outbound_at < now,
                    ),
                )
                .values(last_outbound_at=now)
                .execution_options(synchronize_session=False)
            )
            self._session.flush()
            message_id = message.id
        # commits the message together with the record update
        self._idempotency.mark_outbound_sent(
            channel,
            trigger_inbound_id,
            provider_message_id=result.provider_message_id,
            message_id=message_id,
        )
        return message_id

    def _record_transport_failure(
        self,
        channel: ChannelType,
        conversation: models.Conversation,
        trigger_inbound_id: str,
        content: ReplyContent,
        exc: TransportError,
    ) -> None:
        DISPATCH_OUTCOMES.labels(channel.value, f"error_{exc.error_class.value}").inc()
        if exc.retryable:
            self._idempotency.mark_outbound_failed(
                channel, trigger_inbound_id, error=exc.message, retryable=True
            )
            return

        with store_guard():
            FollowUpService(self._session).create_task(
                models.TaskKind.DISPATCH_FAILED,
                f"Reply could not be delivered ({exc.error_class.value})",
                idempotency_key=f"dispatch_failed:{channel.value}:{trigger_inbound_id}",
                conversation_id=conversation.id,
                lead_id=conversation.current_lead_id,
                due_at=datetime.now(tz=UTC),
                details={"error_class": exc.error_class.value, "error": exc.message},
            )
        self._withdraw_question(conversation.id, content.question_key)
        # commits the task together with the abandoned record
        self._idempotency.mark_outbound_failed(
            channel, trigger_inbound_id, error=exc.message, retryable=False
        )
        logger.error(
            "dispatch.abandoned",
            extra={
                "conversation_id": str(conversation.id),
                "trigger_message_id": trigger_inbound_id,
                "error_class": exc.error_class.value,
            },
        )

    def _withdraw_question(self, conversation_id: UUID, question_key: str | None) -> None:
        """Forget a question whose reply never reached the customer."""

        if not question_key:
            return
        repository = FlowStateRepository(self._session)
        with store_guard():
            _, state = repository.reload(conversation_id)
            if state.last_question_key != question_key:
                return
            state.last_question_key = None
            state.last_question_at = None
            if state.question_history and state.question_history[-1] == question_key:
                state.question_history.pop()
                state.questions_asked = max(0, state.questions_asked - 1)
            try:
                repository.save(conversation_id, state, expected_version=state.version)
            except FlowStateConflict:
                # a newer inbound already moved the flow on
                return
        logger.info(
            "dispatch.question_withdrawn",
            extra={"conversation_id": str(conversation_id), "question_key": question_key},
        )
