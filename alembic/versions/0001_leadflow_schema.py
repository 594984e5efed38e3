"""Create contacts, conversations, leads, messages, idempotency, lock, job and task tables."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_leadflow_schema"
down_revision = None
branch_labels = None
depends_on = None

UUID = postgresql.UUID(as_uuid=True)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "contacts",
        sa.Column("id", UUID, primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("channel_family", sa.String(length=32), nullable=False),
        sa.Column("canonical_address", sa.String(length=255), nullable=False),
        sa.Column("raw_address", sa.String(length=255), nullable=False),
        sa.Column("wa_id", sa.String(length=64), nullable=True),
        sa.Column("display_name", sa.String(length=200), nullable=True),
        sa.Column("nationality", sa.String(length=100), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.UniqueConstraint("channel_family", "canonical_address", name="uq_contact_canonical_address"),
    )

    op.create_table(
        "leads",
        sa.Column("id", UUID, primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("contact_id", UUID, nullable=False),
        sa.Column("stage", sa.String(length=32), nullable=False, server_default="new"),
        sa.Column("service_type", sa.String(length=64), nullable=True),
        sa.Column("data_json", sa.JSON(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("expiry_hints", sa.JSON(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("next_follow_up_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_owner", sa.String(length=120), nullable=True),
        sa.Column("last_contact_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["contact_id"], ["contacts.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_leads_contact_id", "leads", ["contact_id"])
    op.create_index("ix_leads_contact_stage_updated", "leads", ["contact_id", "stage", "updated_at"])

    op.create_table(
        "conversations",
        sa.Column("id", UUID, primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("contact_id", UUID, nullable=False),
        sa.Column("channel", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="open"),
        sa.Column("assigned_to", sa.String(length=120), nullable=True),
        sa.Column("current_lead_id", UUID, nullable=True),
        sa.Column("last_inbound_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_outbound_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("flow_key", sa.String(length=64), nullable=True),
        sa.Column("flow_step", sa.String(length=64), nullable=True),
        sa.Column("last_question_key", sa.String(length=64), nullable=True),
        sa.Column("last_question_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("collected_data", sa.JSON(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("questions_asked", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("question_history", sa.JSON(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("state_version", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["contact_id"], ["contacts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["current_lead_id"], ["leads.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("contact_id", "channel", name="uq_conversation_contact_channel"),
    )
    op.create_index("ix_conversations_contact_id", "conversations", ["contact_id"])

    op.create_table(
        "messages",
        sa.Column("id", UUID, primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("conversation_id", UUID, nullable=False),
        sa.Column("lead_id", UUID, nullable=True),
        sa.Column("direction", sa.String(length=16), nullable=False),
        sa.Column("channel", sa.String(length=32), nullable=False),
        sa.Column("provider_message_id", sa.String(length=255), nullable=True),
        sa.Column("message_type", sa.String(length=16), nullable=False, server_default="text"),
        sa.Column("body", sa.Text(), nullable=False, server_default=""),
        sa.Column("media_ref", sa.String(length=512), nullable=True),
        sa.Column("delivery_status", sa.String(length=16), nullable=False),
        sa.Column("question_key", sa.String(length=64), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("channel", "provider_message_id", name="uq_message_channel_provider_id"),
    )
    op.create_index("ix_messages_conversation_id", "messages", ["conversation_id"])

    op.create_table(
        "inbound_idempotency",
        sa.Column("id", UUID, primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("channel", sa.String(length=32), nullable=False),
        sa.Column("provider_message_id", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.UniqueConstraint("channel", "provider_message_id", name="uq_inbound_channel_provider_id"),
    )

    op.create_table(
        "outbound_idempotency",
        sa.Column("id", UUID, primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("channel", sa.String(length=32), nullable=False),
        sa.Column("trigger_message_id", sa.String(length=255), nullable=False),
        sa.Column("conversation_id", UUID, nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("provider_message_id", sa.String(length=255), nullable=True),
        sa.Column("message_id", UUID, nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["message_id"], ["messages.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("channel", "trigger_message_id", name="uq_outbound_channel_trigger"),
    )
    op.create_index(
        "ix_outbound_idempotency_status_updated", "outbound_idempotency", ["status", "updated_at"]
    )

    op.create_table(
        "conversation_locks",
        sa.Column("conversation_id", UUID, primary_key=True, nullable=False),
        sa.Column("holder", sa.String(length=120), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
    )

    op.create_table(
        "automation_jobs",
        sa.Column("id", UUID, primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("job_type", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("claimed_by", sa.String(length=120), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("idempotency_key", sa.String(length=255), nullable=True),
        sa.UniqueConstraint("idempotency_key", name="uq_automation_job_idempotency_key"),
    )
    op.create_index(
        "ix_automation_jobs_claim", "automation_jobs", ["status", "priority", "scheduled_at"]
    )

    op.create_table(
        "followup_tasks",
        sa.Column("id", UUID, primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="open"),
        sa.Column("conversation_id", UUID, nullable=True),
        sa.Column("lead_id", UUID, nullable=True),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("idempotency_key", name="uq_followup_task_idempotency_key"),
    )
    op.create_index("ix_followup_tasks_status_due", "followup_tasks", ["status", "due_at"])


def downgrade() -> None:
    op.drop_index("ix_followup_tasks_status_due", table_name="followup_tasks")
    op.drop_table("followup_tasks")
    op.drop_index("ix_automation_jobs_claim", table_name="automation_jobs")
    op.drop_table("automation_jobs")
    op.drop_table("conversation_locks")
    op.drop_index("ix_outbound_idempotency_status_updated", table_name="outbound_idempotency")
    op.drop_table("outbound_idempotency")
    op.drop_table("inbound_idempotency")
    op.drop_index("ix_messages_conversation_id", table_name="messages")
    op.drop_table("messages")
    op.drop_index("ix_conversations_contact_id", table_name="conversations")
    op.drop_table("conversations")
    op.drop_index("ix_leads_contact_stage_updated", table_name="leads")
    op.drop_index("ix_leads_contact_id", table_name="leads")
    op.drop_table("leads")
    op.drop_table("contacts")
