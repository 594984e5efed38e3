"""SQLModel declarative models for core entities.

Uniqueness that must survive concurrent webhook deliveries lives here as
schema constraints: Contact canonical key, Conversation (contact, channel),
Message (channel, provider message id) and both idempotency keys.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlmodel import Field, Relationship, SQLModel


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps read back from stores without tz support."""

    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def created_at_field() -> Any:
    return Field(
        default_factory=_utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
        ),
    )


def updated_at_field() -> Any:
    return Field(
        default_factory=_utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
            onupdate=func.now(),
        ),
    )


def optional_timestamp_field() -> Any:
    return Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )


class UUIDPrimaryKey(SQLModel, table=False):
    """Mixin providing a UUID primary key."""

    id: UUID = Field(default_factory=uuid4, primary_key=True, nullable=False)


class Contact(UUIDPrimaryKey, table=True):
    """A real-world correspondent, unique per canonical address and channel family."""

    __tablename__ = "contacts"

    created_at: datetime = created_at_field()
    updated_at: datetime = updated_at_field()

    channel_family: str = Field(sa_column=Column(String(length=32), nullable=False))
    canonical_address: str = Field(
        sa_column=Column(String(length=255), nullable=False)
    )
    raw_address: str = Field(sa_column=Column(String(length=255), nullable=False))
    wa_id: str | None = Field(
        default=None, sa_column=Column(String(length=64), nullable=True)
    )
    display_name: str | None = Field(
        default=None, sa_column=Column(String(length=200), nullable=True)
    )
    nationality: str | None = Field(
        default=None, sa_column=Column(String(length=100), nullable=True)
    )
    email: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )

    __table_args__ = (
        UniqueConstraint(
            "channel_family", "canonical_address", name="uq_contact_canonical_address"
        ),
    )


class ConversationStatus(str, Enum):
    OPEN = "open"
    ARCHIVED = "archived"


class Conversation(UUIDPrimaryKey, table=True):
    """Channel-scoped thread with one contact, carrying the flow automaton state."""

    __tablename__ = "conversations"

    created_at: datetime = created_at_field()
    updated_at: datetime = updated_at_field()

    contact_id: UUID = Field(foreign_key="contacts.id", nullable=False, index=True)
    channel: str = Field(sa_column=Column(String(length=32), nullable=False))
    status: str = Field(
        default=ConversationStatus.OPEN.value,
        sa_column=Column(
            String(length=16), nullable=False, default=ConversationStatus.OPEN.value
        ),
    )
    assigned_to: str | None = Field(
        default=None, sa_column=Column(String(length=120), nullable=True)
    )
    current_lead_id: UUID | None = Field(
        default=None, foreign_key="leads.id", nullable=True
    )
    last_inbound_at: datetime | None = optional_timestamp_field()
    last_outbound_at: datetime | None = optional_timestamp_field()

    flow_key: str | None = Field(
        default=None, sa_column=Column(String(length=64), nullable=True)
    )
    flow_step: str | None = Field(
        default=None, sa_column=Column(String(length=64), nullable=True)
    )
    last_question_key: str | None = Field(
        default=None, sa_column=Column(String(length=64), nullable=True)
    )
    last_question_at: datetime | None = optional_timestamp_field()
    collected_data: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON, nullable=False)
    )
    questions_asked: int = Field(
        default=0, sa_column=Column(Integer, nullable=False, default=0)
    )
    question_history: list[str] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    state_version: int = Field(
        default=0, sa_column=Column(Integer, nullable=False, default=0)
    )

    contact: Optional["Contact"] = Relationship()

    __table_args__ = (
        UniqueConstraint("contact_id", "channel", name="uq_conversation_contact_channel"),
    )


class LeadStage(str, Enum):
    NEW = "new"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    PROPOSAL_SENT = "proposal_sent"
    ON_HOLD = "on_hold"
    COMPLETED_WON = "completed_won"
    LOST = "lost"


TERMINAL_LEAD_STAGES = frozenset(
    {LeadStage.COMPLETED_WON.value, LeadStage.LOST.value, LeadStage.ON_HOLD.value}
)


class Lead(UUIDPrimaryKey, table=True):
    """Business opportunity tied to a contact."""

    __tablename__ = "leads"

    created_at: datetime = created_at_field()
    updated_at: datetime = updated_at_field()

    contact_id: UUID = Field(foreign_key="contacts.id", nullable=False, index=True)
    stage: str = Field(
        default=LeadStage.NEW.value,
        sa_column=Column(String(length=32), nullable=False, default=LeadStage.NEW.value),
    )
    service_type: str | None = Field(
        default=None, sa_column=Column(String(length=64), nullable=True)
    )
    data_json: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON, nullable=False)
    )
    expiry_hints: list[str] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    next_follow_up_at: datetime | None = optional_timestamp_field()
    assigned_owner: str | None = Field(
        default=None, sa_column=Column(String(length=120), nullable=True)
    )
    last_contact_at: datetime | None = optional_timestamp_field()


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class DeliveryStatus(str, Enum):
    RECEIVED = "received"
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class Message(UUIDPrimaryKey, table=True):
    """Individual inbound/outbound messages within a conversation."""

    __tablename__ = "messages"

    created_at: datetime = created_at_field()
    updated_at: datetime = updated_at_field()

    conversation_id: UUID = Field(
        foreign_key="conversations.id", nullable=False, index=True
    )
    lead_id: UUID | None = Field(default=None, foreign_key="leads.id", nullable=True)
    direction: str = Field(sa_column=Column(String(length=16), nullable=False))
    channel: str = Field(sa_column=Column(String(length=32), nullable=False))
    provider_message_id: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )
    message_type: str = Field(
        default="text",
        sa_column=Column(String(length=16), nullable=False, default="text"),
    )
    body: str = Field(default="", sa_column=Column(Text, nullable=False))
    media_ref: str | None = Field(
        default=None, sa_column=Column(String(length=512), nullable=True)
    )
    delivery_status: str = Field(
        sa_column=Column(String(length=16), nullable=False)
    )
    question_key: str | None = Field(
        default=None, sa_column=Column(String(length=64), nullable=True)
    )
    sent_at: datetime | None = optional_timestamp_field()

    __table_args__ = (
        UniqueConstraint(
            "channel", "provider_message_id", name="uq_message_channel_provider_id"
        ),
    )


class InboundStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class InboundIdempotencyRecord(UUIDPrimaryKey, table=True):
    """Marks an inbound provider event as seen before any side effect."""

    __tablename__ = "inbound_idempotency"

    created_at: datetime = created_at_field()
    updated_at: datetime = updated_at_field()

    channel: str = Field(sa_column=Column(String(length=32), nullable=False))
    provider_message_id: str = Field(
        sa_column=Column(String(length=255), nullable=False)
    )
    status: str = Field(
        default=InboundStatus.PENDING.value,
        sa_column=Column(
            String(length=16), nullable=False, default=InboundStatus.PENDING.value
        ),
    )
    error: str | None = Field(default=None, sa_column=Column(Text, nullable=True))

    __table_args__ = (
        UniqueConstraint(
            "channel", "provider_message_id", name="uq_inbound_channel_provider_id"
        ),
    )


class OutboundStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    ABANDONED = "abandoned"
    UNCONFIRMED = "unconfirmed"


class OutboundIdempotencyRecord(UUIDPrimaryKey, table=True):
    """Marks that an automated reply was produced for a triggering inbound event."""

    __tablename__ = "outbound_idempotency"

    created_at: datetime = created_at_field()
    updated_at: datetime = updated_at_field()

    channel: str = Field(sa_column=Column(String(length=32), nullable=False))
    trigger_message_id: str = Field(
        sa_column=Column(String(length=255), nullable=False)
    )
    conversation_id: UUID = Field(foreign_key="conversations.id", nullable=False)
    status: str = Field(
        default=OutboundStatus.PENDING.value,
        sa_column=Column(
            String(length=16), nullable=False, default=OutboundStatus.PENDING.value
        ),
    )
    provider_message_id: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )
    message_id: UUID | None = Field(
        default=None, foreign_key="messages.id", nullable=True
    )
    error: str | None = Field(default=None, sa_column=Column(Text, nullable=True))

    __table_args__ = (
        UniqueConstraint(
            "channel", "trigger_message_id", name="uq_outbound_channel_trigger"
        ),
    )


class ConversationLock(SQLModel, table=True):
    """Durable per-conversation lease serializing outbound replies."""

    __tablename__ = "conversation_locks"

    conversation_id: UUID = Field(
        primary_key=True, foreign_key="conversations.id", nullable=False
    )
    holder: str = Field(sa_column=Column(String(length=120), nullable=False))
    acquired_at: datetime = created_at_field()
    expires_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )


class AutomationJobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class AutomationJob(UUIDPrimaryKey, table=True):
    """Deferred unit of work consumed by the worker pool."""

    __tablename__ = "automation_jobs"

    created_at: datetime = created_at_field()
    updated_at: datetime = updated_at_field()

    job_type: str = Field(sa_column=Column(String(length=64), nullable=False))
    status: str = Field(
        default=AutomationJobStatus.PENDING.value,
        sa_column=Column(
            String(length=16), nullable=False, default=AutomationJobStatus.PENDING.value
        ),
    )
    priority: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    attempts: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    max_attempts: int = Field(
        default=3, sa_column=Column(Integer, nullable=False, default=3)
    )
    scheduled_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    claimed_by: str | None = Field(
        default=None, sa_column=Column(String(length=120), nullable=True)
    )
    claimed_at: datetime | None = optional_timestamp_field()
    completed_at: datetime | None = optional_timestamp_field()
    payload: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON, nullable=False)
    )
    failure_reason: str | None = Field(
        default=None, sa_column=Column(Text, nullable=True)
    )
    idempotency_key: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_automation_job_idempotency_key"),
        Index("ix_automation_jobs_claim", "status", "priority", "scheduled_at"),
    )


class TaskKind(str, Enum):
    REPLY_NEEDED = "reply_needed"
    HANDOVER = "handover"
    DISPATCH_FAILED = "dispatch_failed"
    HIGH_RISK = "high_risk"
    VERIFY_DELIVERY = "verify_delivery"
    QUOTE = "quote"


class TaskStatus(str, Enum):
    OPEN = "open"
    DONE = "done"


class FollowUpTask(UUIDPrimaryKey, table=True):
    """Human-visible follow-up created by automation."""

    __tablename__ = "followup_tasks"

    created_at: datetime = created_at_field()
    updated_at: datetime = updated_at_field()

    kind: str = Field(sa_column=Column(String(length=32), nullable=False))
    title: str = Field(sa_column=Column(String(length=255), nullable=False))
    status: str = Field(
        default=TaskStatus.OPEN.value,
        sa_column=Column(String(length=16), nullable=False, default=TaskStatus.OPEN.value),
    )
    conversation_id: UUID | None = Field(
        default=None, foreign_key="conversations.id", nullable=True
    )
    lead_id: UUID | None = Field(default=None, foreign_key="leads.id", nullable=True)
    due_at: datetime | None = optional_timestamp_field()
    details: dict[str, Any] | None = Field(
        default=None, sa_column=Column(JSON, nullable=True)
    )
    idempotency_key: str = Field(
        sa_column=Column(String(length=255), nullable=False, unique=True)
    )


metadata = SQLModel.metadata
