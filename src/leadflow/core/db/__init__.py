"""Database models and helpers for the inbound automation service."""

from . import models, session
from .models import (
    AutomationJob,
    AutomationJobStatus,
    Contact,
    Conversation,
    ConversationLock,
    FollowUpTask,
    InboundIdempotencyRecord,
    Lead,
    LeadStage,
    Message,
    MessageDirection,
    OutboundIdempotencyRecord,
    metadata,
)
from .session import create_engine_from_settings, init_db, session_scope, store_guard
from .upsert import insert_ignore

__all__ = [
    "models",
    "session",
    "Contact",
    "Conversation",
    "ConversationLock",
    "Lead",
    "LeadStage",
    "Message",
    "MessageDirection",
    "InboundIdempotencyRecord",
    "OutboundIdempotencyRecord",
    "AutomationJob",
    "AutomationJobStatus",
    "FollowUpTask",
    "metadata",
    "create_engine_from_settings",
    "init_db",
    "insert_ignore",
    "session_scope",
    "store_guard",
]
