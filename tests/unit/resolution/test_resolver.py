"""Entity resolver tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from leadflow.core.config import AppSettings
from leadflow.core.db import models
from leadflow.core.domain import ChannelType
from leadflow.extraction import MANUAL_FIELDS_KEY, extract
from leadflow.resolution import EntityResolver

pytestmark = pytest.mark.unit


def _session() -> Session:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return Session(engine)


def _resolver(session: Session) -> EntityResolver:
    return EntityResolver(session, AppSettings())


def test_formatting_variants_resolve_to_one_contact() -> None:
    session = _session()
    resolver = _resolver(session)
    now = datetime.now(tz=UTC)

    first = resolver.resolve(ChannelType.WHATSAPP, "+971 50 123 4567", now, display_name="Ahmed")
    second = resolver.resolve(ChannelType.WHATSAPP, "00971501234567", now + timedelta(minutes=1))

    assert first.is_new_contact is True
    assert second.is_new_contact is False
    assert first.contact.id == second.contact.id
    assert first.conversation.id == second.conversation.id
    assert first.lead.id == second.lead.id
    assert second.is_new_lead is False
    assert second.contact.canonical_address == "+971501234567"
    assert second.contact.display_name == "Ahmed"
    assert len(session.exec(select(models.Contact)).all()) == 1


def test_phone_channels_share_contact_but_not_conversation() -> None:
    session = _session()
    resolver = _resolver(session)
    now = datetime.now(tz=UTC)

    whatsapp = resolver.resolve(ChannelType.WHATSAPP, "971501234567", now, wa_id="971501234567")
    sms = resolver.resolve(ChannelType.SMS, "0501234567", now)

    assert whatsapp.contact.id == sms.contact.id
    assert whatsapp.conversation.id != sms.conversation.id
    assert sms.conversation.channel == "sms"
    assert sms.contact.wa_id == "971501234567"


def test_conversation_points_at_current_lead() -> None:
    session = _session()
    resolution = _resolver(session).resolve(ChannelType.WHATSAPP, "971501234567", datetime.now(tz=UTC))

    assert resolution.is_new_lead is True
    assert resolution.lead.stage == models.LeadStage.NEW.value
    assert resolution.conversation.current_lead_id == resolution.lead.id


def test_new_lead_after_reuse_window() -> None:
    session = _session()
    resolver = _resolver(session)
    now = datetime.now(tz=UTC)

    first = resolver.resolve(ChannelType.WHATSAPP, "971501234567", now)
    later = resolver.resolve(ChannelType.WHATSAPP, "971501234567", now + timedelta(days=40))

    assert later.is_new_lead is True
    assert later.lead.id != first.lead.id
    assert later.conversation.current_lead_id == later.lead.id


def test_terminal_lead_is_not_reused() -> None:
    session = _session()
    resolver = _resolver(session)
    now = datetime.now(tz=UTC)
    first = resolver.resolve(ChannelType.WHATSAPP, "971501234567", now)
    first.lead.stage = models.LeadStage.LOST.value
    session.add(first.lead)
    session.commit()

    again = resolver.resolve(ChannelType.WHATSAPP, "971501234567", now + timedelta(minutes=5))

    assert again.is_new_lead is True
    assert again.lead.id != first.lead.id


def test_out_of_order_delivery_keeps_latest_inbound_timestamp() -> None:
    session = _session()
    resolver = _resolver(session)
    later = datetime.now(tz=UTC)
    earlier = later - timedelta(minutes=3)

    resolver.resolve(ChannelType.WHATSAPP, "971501234567", later)
    resolution = resolver.resolve(ChannelType.WHATSAPP, "971501234567", earlier)

    assert models.as_utc(resolution.conversation.last_inbound_at) == later


def test_apply_extraction_fills_but_never_overwrites() -> None:
    session = _session()
    resolver = _resolver(session)
    resolution = resolver.resolve(ChannelType.WHATSAPP, "971501234567", datetime.now(tz=UTC))
    lead, contact = resolution.lead, resolution.contact
    lead.data_json = {"nationality": "India", MANUAL_FIELDS_KEY: ["email"], "email": "old@example.com"}

    changed = resolver.apply_extraction(
        lead,
        contact,
        extract("I'm Ahmed from Egypt, need a family visa. Email me at new@example.com"),
    )
    session.commit()

    assert changed is True
    assert lead.data_json["nationality"] == "India"
    assert lead.data_json["email"] == "old@example.com"
    assert lead.data_json["name"] == "Ahmed"
    assert lead.service_type == "family_visa"
    assert contact.nationality == "Egypt"
    assert contact.display_name == "Ahmed"


def test_relative_expiry_is_kept_as_hint() -> None:
    session = _session()
    resolver = _resolver(session)
    resolution = resolver.resolve(ChannelType.WHATSAPP, "971501234567", datetime.now(tz=UTC))

    resolver.apply_extraction(resolution.lead, resolution.contact, extract("My visa expires soon"))
    resolver.apply_extraction(resolution.lead, resolution.contact, extract("My visa expires soon"))

    assert resolution.lead.expiry_hints == ["My visa expires soon"]
    assert "expiry_date" not in resolution.lead.data_json
