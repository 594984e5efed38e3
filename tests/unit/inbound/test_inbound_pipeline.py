"""Inbound pipeline tests: idempotency, flow decisions and scheduling."""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from leadflow.core.config import AppSettings
from leadflow.core.db import models
from leadflow.core.domain import ChannelType, DeliveryStatusUpdate, InboundEnvelope
from leadflow.inbound.pipeline import InboundPipeline
from leadflow.resolution import EntityResolver

pytestmark = pytest.mark.unit


class StubNotifier:
    def __init__(self) -> None:
        self.notified: list[str] = []

    def notify(self, job_type: str) -> None:
        self.notified.append(job_type)


def _session() -> Session:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return Session(engine)


def _envelope(body: str, provider_message_id: str = "wamid.AAA") -> InboundEnvelope:
    return InboundEnvelope(
        channel=ChannelType.WHATSAPP,
        provider_message_id=provider_message_id,
        sender_address="971501234567",
        body=body,
        received_at=datetime.now(tz=UTC),
        wa_id="971501234567",
    )


def _jobs(session: Session) -> list[models.AutomationJob]:
    return list(session.exec(select(models.AutomationJob)))


def _tasks(session: Session, kind: models.TaskKind) -> list[models.FollowUpTask]:
    return list(
        session.exec(select(models.FollowUpTask).where(models.FollowUpTask.kind == kind.value))
    )


def test_first_message_asks_next_question_and_enqueues_reply() -> None:
    session = _session()
    notifier = StubNotifier()
    pipeline = InboundPipeline(session, AppSettings(), notifier=notifier)

    outcome = pipeline.process(
        _envelope("Hi, I'm Ahmed from Egypt, I need a family visa for my wife and 2 kids")
    )

    assert outcome.status == "processed"
    assert outcome.action == "ask"
    assert outcome.job_type == "auto_reply"
    [job] = _jobs(session)
    assert job.id == outcome.job_id
    assert job.idempotency_key == "auto_reply:whatsapp:wamid.AAA"
    assert job.payload["question_key"] == "ask_sponsor_visa"
    assert job.payload["trigger_message_id"] == "wamid.AAA"
    assert job.payload["contact_name"] == "Ahmed"
    assert notifier.notified == ["auto_reply"]

    conversation = session.get(models.Conversation, outcome.conversation_id)
    assert conversation.flow_key == "family_visa"
    assert conversation.last_question_key == "ask_sponsor_visa"
    assert conversation.state_version == 1
    lead = session.get(models.Lead, conversation.current_lead_id)
    assert lead.service_type == "family_visa"
    assert lead.data_json["family_members_count"] == 2


def test_redelivered_event_is_a_duplicate() -> None:
    session = _session()
    pipeline = InboundPipeline(session, AppSettings())
    envelope = _envelope("Hello")

    first = pipeline.process(envelope)
    second = pipeline.process(envelope)

    assert first.status == "processed"
    assert second.status == "duplicate"
    assert len(session.exec(select(models.Message)).all()) == 1
    assert len(_jobs(session)) == 1


def test_complete_flow_qualifies_lead() -> None:
    session = _session()
    pipeline = InboundPipeline(session, AppSettings())

    outcome = pipeline.process(
        _envelope("Hi, my name is Sara, I need to renew my emirates id, it expires on 15/03/2026")
    )

    assert outcome.action == "complete"
    assert outcome.job_type == "auto_reply"
    conversation = session.get(models.Conversation, outcome.conversation_id)
    lead = session.exec(
        select(models.Lead)
        .where(models.Lead.id == conversation.current_lead_id)
        .execution_options(populate_existing=True)
    ).one()
    assert lead.stage == models.LeadStage.QUALIFIED.value
    assert lead.data_json["expiry_date"] == "2026-03-15"
    assert conversation.flow_step == "completed"


def test_completed_business_setup_opens_quote_task() -> None:
    session = _session()
    pipeline = InboundPipeline(session, AppSettings())

    outcome = pipeline.process(
        _envelope(
            "My name is Omar. I want a freezone company, business activity is general trading. "
            "We are 2 partners and need 3 visas."
        )
    )

    assert outcome.action == "complete"
    [task] = _tasks(session, models.TaskKind.QUOTE)
    assert task.details == {
        "business_activity": "general trading",
        "mainland_or_freezone": "freezone",
        "partners_count": 2,
        "visas_count": 3,
    }


def test_high_risk_message_hands_over_without_automated_reply() -> None:
    session = _session()
    pipeline = InboundPipeline(session, AppSettings())

    outcome = pipeline.process(_envelope("I want a refund, this is a scam"))

    assert outcome.action == "handover"
    assert outcome.job_id is None
    assert _jobs(session) == []
    assert len(_tasks(session, models.TaskKind.HIGH_RISK)) == 1
    [handover] = _tasks(session, models.TaskKind.HANDOVER)
    assert handover.details["reason"] == "high_risk"


def test_discount_request_hands_over_with_notice() -> None:
    session = _session()
    pipeline = InboundPipeline(session, AppSettings())

    outcome = pipeline.process(_envelope("Do you have any discount on golden visa?"))

    assert outcome.action == "handover"
    assert outcome.job_type == "handover_notice"
    [job] = _jobs(session)
    assert job.priority == 10
    assert job.idempotency_key == f"handover_notice:{outcome.conversation_id}"


def test_human_owned_conversation_gets_reply_needed_task() -> None:
    session = _session()
    pipeline = InboundPipeline(session, AppSettings())
    first = pipeline.process(_envelope("Hello", "wamid.1"))
    conversation = session.get(models.Conversation, first.conversation_id)
    conversation.assigned_to = "agent@example.com"
    session.add(conversation)
    session.commit()

    outcome = pipeline.process(_envelope("Any update?", "wamid.2"))

    assert outcome.action == "human_owned"
    assert outcome.job_id is None
    [task] = _tasks(session, models.TaskKind.REPLY_NEEDED)
    assert task.idempotency_key == f"reply_needed:{conversation.current_lead_id}:wamid.2"
    assert len(_jobs(session)) == 1


def test_processing_failure_is_recorded_and_reclaimed_on_redelivery(monkeypatch) -> None:
    session = _session()
    pipeline = InboundPipeline(session, AppSettings())

    def boom(self, *args, **kwargs):
        raise RuntimeError("resolver exploded")

    monkeypatch.setattr(EntityResolver, "resolve", boom)
    failed = pipeline.process(_envelope("Hello"))
    monkeypatch.undo()

    assert failed.status == "failed"
    record = session.exec(
        select(models.InboundIdempotencyRecord).execution_options(populate_existing=True)
    ).one()
    assert record.status == models.InboundStatus.FAILED.value
    assert record.error == "resolver exploded"

    retried = pipeline.process(_envelope("Hello"))
    assert retried.status == "processed"


def test_delivery_status_only_moves_forward() -> None:
    session = _session()
    session.add(
        models.Message(
            conversation_id=uuid4(),
            direction=models.MessageDirection.OUTBOUND.value,
            channel="whatsapp",
            provider_message_id="wamid.OUT",
            body="Hi",
            delivery_status=models.DeliveryStatus.SENT.value,
        )
    )
    session.commit()
    pipeline = InboundPipeline(session, AppSettings())

    def update(status: str, provider_message_id: str = "wamid.OUT") -> bool:
        return pipeline.apply_status(
            DeliveryStatusUpdate(ChannelType.WHATSAPP, provider_message_id, status)
        )

    assert update("delivered") is True
    assert update("sent") is False
    assert update("read") is True
    assert update("failed") is False
    assert update("delivered", "wamid.UNKNOWN") is False
    message = session.exec(select(models.Message)).one()
    assert message.delivery_status == "read"
