"""Find-or-create Contact, Conversation and Lead for an inbound event."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from prometheus_client import Counter
from sqlalchemy import or_, update
from sqlmodel import Session, select

from leadflow.core.config import AppSettings
from leadflow.core.db import models
from leadflow.core.db.upsert import insert_ignore
from leadflow.core.domain import ChannelType
from leadflow.core.errors import ResolutionConflict
from leadflow.extraction import PartialFields, merge_collected
from leadflow.utils.retry import RetryConfig, RetryState, retry

from .addresses import canonicalize_address

logger = logging.getLogger(__name__)

RESOLUTION_OUTCOMES = Counter(
    "leadflow_resolution_total",
    "Entity resolution outcomes.",
    ["entity", "outcome"],
)

RESOLUTION_RETRY = RetryConfig(attempts=3, base_delay=0.02, max_delay=0.2)


@dataclass(slots=True)
class Resolution:
    contact: models.Contact
    conversation: models.Conversation
    lead: models.Lead
    is_new_lead: bool
    is_new_contact: bool = False
    is_new_conversation: bool = False


class EntityResolver:
    """Resolve raw inbound identities onto durable entities.

    Contact and Conversation creation go through ``INSERT ... ON CONFLICT DO
    NOTHING`` followed by a read-back, so concurrent deliveries for a brand-new
    address converge on one row each. Lead reuse is serialized per contact by
    locking the contact row before the search.
    """

    def __init__(self, session: Session, settings: AppSettings) -> None:
        self._session = session
        self._settings = settings

    def resolve(
        self,
        channel: ChannelType,
        raw_address: str,
        timestamp: datetime,
        *,
        display_name: str | None = None,
        wa_id: str | None = None,
    ) -> Resolution:
        canonical = canonicalize_address(
            channel,
            raw_address,
            default_country_code=self._settings.gateway.default_country_code,
        )
        attempt = retry(
            config=RESOLUTION_RETRY,
            exceptions=(ResolutionConflict,),
            before_sleep=self._rollback,
        )(self._resolve_once)
        resolution = attempt(
            channel,
            canonical,
            raw_address,
            timestamp,
            display_name=display_name,
            wa_id=wa_id,
        )
        self._session.commit()
        logger.info(
            "resolution.resolved",
            extra={
                "channel": channel.value,
                "contact_id": str(resolution.contact.id),
                "conversation_id": str(resolution.conversation.id),
                "lead_id": str(resolution.lead.id),
                "is_new_lead": resolution.is_new_lead,
            },
        )
        return resolution

    def apply_extraction(
        self,
        lead: models.Lead,
        contact: models.Contact,
        fields: PartialFields,
    ) -> bool:
        """Merge extracted fields into the lead and contact; never overwrites.

        Returns ``True`` when anything changed. The caller commits.
        """

        changed = False
        merged = merge_collected(lead.data_json, fields.to_data())
        if merged != (lead.data_json or {}):
            lead.data_json = merged
            changed = True
        if not lead.service_type and fields.service_intent:
            lead.service_type = fields.service_intent
            changed = True

        hints = [hint for hint in [fields.expiry_hint, *fields.hints] if hint]
        new_hints = [hint for hint in hints if hint not in (lead.expiry_hints or [])]
        if new_hints:
            lead.expiry_hints = [*(lead.expiry_hints or []), *new_hints]
            changed = True

        for attribute, value in (
            ("nationality", fields.nationality),
            ("display_name", fields.name),
            ("email", fields.email),
        ):
            if value and not getattr(contact, attribute):
                setattr(contact, attribute, value)
                changed = True

        if changed:
            self._session.add(lead)
            self._session.add(contact)
        return changed

    def _resolve_once(
        self,
        channel: ChannelType,
        canonical: str,
        raw_address: str,
        timestamp: datetime,
        *,
        display_name: str | None,
        wa_id: str | None,
    ) -> Resolution:
        contact, contact_created = self._upsert_contact(
            channel, canonical, raw_address, display_name=display_name, wa_id=wa_id
        )
        conversation, conversation_created = self._upsert_conversation(
            contact, channel, timestamp
        )
        lead, lead_created = self._reuse_or_create_lead(contact, timestamp)
        if conversation.current_lead_id != lead.id:
            conversation.current_lead_id = lead.id
            self._session.add(conversation)
        self._session.flush()
        return Resolution(
            contact=contact,
            conversation=conversation,
            lead=lead,
            is_new_lead=lead_created,
            is_new_contact=contact_created,
            is_new_conversation=conversation_created,
        )

    def _upsert_contact(
        self,
        channel: ChannelType,
        canonical: str,
        raw_address: str,
        *,
        display_name: str | None,
        wa_id: str | None,
    ) -> tuple[models.Contact, bool]:
        created = insert_ignore(
            self._session,
            models.Contact,
            {
                "channel_family": channel.family,
                "canonical_address": canonical,
                "raw_address": raw_address,
                "display_name": display_name,
                "wa_id": wa_id,
            },
            conflict_columns=("channel_family", "canonical_address"),
        )
        contact = self._session.exec(
            select(models.Contact)
            .where(
                models.Contact.channel_family == channel.family,
                models.Contact.canonical_address == canonical,
            )
            .execution_options(populate_existing=True)
        ).first()
        if contact is None:
            raise ResolutionConflict("contact", canonical)

        if not created:
            if wa_id and not contact.wa_id:
                contact.wa_id = wa_id
            if display_name and not contact.display_name:
                contact.display_name = display_name
            self._session.add(contact)
        RESOLUTION_OUTCOMES.labels("contact", "created" if created else "matched").inc()
        return contact, created

    def _upsert_conversation(
        self, contact: models.Contact, channel: ChannelType, timestamp: datetime
    ) -> tuple[models.Conversation, bool]:
        created = insert_ignore(
            self._session,
            models.Conversation,
            {
                "contact_id": contact.id,
                "channel": channel.value,
                "status": models.ConversationStatus.OPEN.value,
                "last_inbound_at": timestamp,
                "collected_data": {},
                "question_history": [],
                "questions_asked": 0,
                "state_version": 0,
            },
            conflict_columns=("contact_id", "channel"),
        )
        if not created:
            # out-of-order deliveries must not move the timestamp backwards
            self._session.exec(
                update(models.Conversation)
                .where(
                    models.Conversation.contact_id == contact.id,
                    models.Conversation.channel == channel.value,
                    or_(
                        models.Conversation.last_inbound_at.is_(None),
                        models.Conversation.last_inbound_at < timestamp,
                    ),
                )
                .values(last_inbound_at=timestamp)
                .execution_options(synchronize_session=False)
            )
        conversation = self._session.exec(
            select(models.Conversation)
            .where(
                models.Conversation.contact_id == contact.id,
                models.Conversation.channel == channel.value,
            )
            .execution_options(populate_existing=True)
        ).first()
        if conversation is None:
            raise ResolutionConflict("conversation", f"{contact.id}:{channel.value}")
        RESOLUTION_OUTCOMES.labels(
            "conversation", "created" if created else "matched"
        ).inc()
        return conversation, created

    def _reuse_or_create_lead(
        self, contact: models.Contact, timestamp: datetime
    ) -> tuple[models.Lead, bool]:
        # serializes lead creation for one contact across concurrent writers
        self._session.exec(
            select(models.Contact.id)
            .where(models.Contact.id == contact.id)
            .with_for_update()
        ).first()

        window = timedelta(days=self._settings.resolution.lead_reuse_window_days)
        lead = self._session.exec(
            select(models.Lead)
            .where(
                models.Lead.contact_id == contact.id,
                models.Lead.stage.not_in(models.TERMINAL_LEAD_STAGES),
                models.Lead.updated_at >= timestamp - window,
            )
            .order_by(models.Lead.updated_at.desc())
        ).first()

        if lead is not None:
            last_contact = models.as_utc(lead.last_contact_at)
            if last_contact is None or last_contact < timestamp:
                lead.last_contact_at = timestamp
            self._session.add(lead)
            RESOLUTION_OUTCOMES.labels("lead", "reused").inc()
            return lead, False

        lead = models.Lead(
            contact_id=contact.id,
            stage=models.LeadStage.NEW.value,
            last_contact_at=timestamp,
        )
        self._session.add(lead)
        self._session.flush()
        RESOLUTION_OUTCOMES.labels("lead", "created").inc()
        return lead, True

    def _rollback(self, state: RetryState) -> None:
        logger.warning(
            "resolution.conflict.retry",
            extra={"attempt": state.attempt, "error": str(state.last_exception)},
        )
        self._session.rollback()
