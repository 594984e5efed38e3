"""Job handlers executed by the worker pool."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlmodel import Session

from leadflow.core.config import AppSettings
from leadflow.core.domain import ChannelType
from leadflow.dispatch import (
    DispatchResult,
    MessageTransport,
    OutboundDispatchGuard,
    ReplyContext,
    ReplyGenerator,
    compose_reply,
    fallback_reply,
)

from .queue import ClaimedJob, JobType

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class JobContext:
    """Collaborators handed to a handler for one job."""

    session: Session
    settings: AppSettings
    transports: Mapping[ChannelType, MessageTransport]
    generator: ReplyGenerator
    worker_id: str

    def guard(self) -> OutboundDispatchGuard:
        return OutboundDispatchGuard(
            self.session, self.settings, self.transports, holder=self.worker_id
        )


JobHandler = Callable[[JobContext, ClaimedJob], Awaitable[Any]]


def reply_context(payload: Mapping[str, Any]) -> ReplyContext:
    return ReplyContext(
        channel=payload.get("channel", ChannelType.WEB.value),
        inbound_text=payload.get("body") or "",
        action=payload.get("action") or "reply",
        question_key=payload.get("question_key"),
        question_prompt=payload.get("question_prompt"),
        contact_name=payload.get("contact_name"),
        service_intent=payload.get("service_intent"),
        collected=dict(payload.get("collected") or {}),
    )


async def handle_auto_reply(context: JobContext, job: ClaimedJob) -> DispatchResult:
    """Generate and send the reply decided for one inbound event."""

    payload = job.payload
    reply = reply_context(payload)
    result = await context.guard().send_reply(
        UUID(payload["conversation_id"]),
        payload["trigger_message_id"],
        lambda: context.generator.generate(reply),
        fallback=fallback_reply(reply),
    )
    logger.info(
        "automation.auto_reply.done",
        extra={"job_id": str(job.id), "sent": result.sent, "reason": result.reason},
    )
    return result


async def handle_handover_notice(context: JobContext, job: ClaimedJob) -> DispatchResult:
    """Send one short acknowledgement that a consultant takes over."""

    payload = job.payload
    reply = reply_context({**payload, "action": "handover", "question_prompt": None})

    async def _compose():
        return compose_reply(reply)

    result = await context.guard().send_reply(
        UUID(payload["conversation_id"]),
        payload["trigger_message_id"],
        _compose,
    )
    logger.info(
        "automation.handover_notice.done",
        extra={"job_id": str(job.id), "sent": result.sent, "reason": result.reason},
    )
    return result


DEFAULT_HANDLERS: dict[str, JobHandler] = {
    JobType.AUTO_REPLY.value: handle_auto_reply,
    JobType.HANDOVER_NOTICE.value: handle_handover_notice,
}
