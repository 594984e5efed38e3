"""Dependency wiring for the channel gateway service."""

from __future__ import annotations

from collections.abc import Iterator
from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlalchemy.engine import Engine
from sqlmodel import Session

from leadflow.automation.notifier import JobNotifier
from leadflow.core.config import AppSettings
from leadflow.core.db.session import create_engine_from_settings, session_scope


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return AppSettings.load()


SettingsDep = Annotated[AppSettings, Depends(get_settings)]


_engine: Engine | None = None
_notifier: JobNotifier | None = None


def get_engine(settings: SettingsDep) -> Engine:
    global _engine
    if _engine is None:
        _engine = create_engine_from_settings(settings)
    return _engine


EngineDep = Annotated[Engine, Depends(get_engine)]


def get_session(engine: EngineDep) -> Iterator[Session]:
    with session_scope(engine) as session:
        yield session


SessionDep = Annotated[Session, Depends(get_session)]


def get_notifier(settings: SettingsDep) -> JobNotifier:
    global _notifier
    if _notifier is None:
        _notifier = JobNotifier.from_settings(settings.redis)
    return _notifier


NotifierDep = Annotated[JobNotifier, Depends(get_notifier)]


def close_notifier() -> None:
    global _notifier
    if _notifier is not None:
        _notifier.close()
        _notifier = None
