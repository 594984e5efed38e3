from __future__ import annotations

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from leadflow.core.config import DispatchSettings
from leadflow.core.db import models
from leadflow.dispatch import ConversationLockManager

pytestmark = pytest.mark.unit


def _session() -> Session:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return Session(engine)


def _manager(session: Session, **overrides) -> ConversationLockManager:
    settings = DispatchSettings(lock_ttl_seconds=30, lock_wait_seconds=0, **overrides)
    return ConversationLockManager(session, settings)


def test_second_holder_is_refused_while_lease_is_live() -> None:
    manager = _manager(_session())
    conversation_id = uuid4()
    now = datetime.now(tz=UTC)

    assert manager.try_acquire(conversation_id, "worker-1", now=now) is True
    assert manager.try_acquire(conversation_id, "worker-2", now=now) is False
    assert manager.try_acquire(conversation_id, "worker-1", now=now) is True


def test_expired_lease_can_be_taken_over() -> None:
    session = _session()
    manager = _manager(session)
    conversation_id = uuid4()
    now = datetime.now(tz=UTC)
    manager.try_acquire(conversation_id, "crashed", now=now - timedelta(minutes=5))

    assert manager.try_acquire(conversation_id, "worker-2", now=now) is True
    lock = session.exec(
        select(models.ConversationLock).execution_options(populate_existing=True)
    ).one()
    assert lock.holder == "worker-2"


def test_release_only_by_holder() -> None:
    manager = _manager(_session())
    conversation_id = uuid4()
    manager.try_acquire(conversation_id, "worker-1")

    assert manager.release(conversation_id, "worker-2") is False
    assert manager.release(conversation_id, "worker-1") is True
    assert manager.try_acquire(conversation_id, "worker-2") is True


def test_purge_expired_removes_only_dead_leases() -> None:
    session = _session()
    manager = _manager(session)
    now = datetime.now(tz=UTC)
    manager.try_acquire(uuid4(), "crashed", now=now - timedelta(minutes=5))
    live = uuid4()
    manager.try_acquire(live, "worker-1", now=now)

    assert manager.purge_expired(now=now) == 1
    remaining = session.exec(select(models.ConversationLock)).all()
    assert [lock.conversation_id for lock in remaining] == [live]


@pytest.mark.asyncio
async def test_acquire_gives_up_after_wait() -> None:
    manager = _manager(_session(), lock_poll_seconds=0.01)
    conversation_id = uuid4()
    manager.try_acquire(conversation_id, "worker-1")

    assert await manager.acquire(conversation_id, "worker-2") is False
    assert await manager.acquire(conversation_id, "worker-1") is True
