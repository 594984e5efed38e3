"""Database session helpers built on SQLModel."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlmodel import Session, SQLModel, create_engine

from leadflow.core.config import AppSettings
from leadflow.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

EngineCacheKey = tuple[str, bool]
_ENGINE_CACHE: dict[EngineCacheKey, Engine] = {}


def create_engine_from_settings(settings: AppSettings, *, echo: bool = False) -> Engine:
    """Create (or reuse) a SQLModel engine based on ``AppSettings``."""

    dsn = settings.postgres.dsn
    cache_key: EngineCacheKey = (dsn, echo)
    if cache_key not in _ENGINE_CACHE:
        engine = create_engine(
            dsn,
            echo=echo,
            pool_pre_ping=True,
        )
        _ENGINE_CACHE[cache_key] = engine
    return _ENGINE_CACHE[cache_key]


def init_db(engine: Engine) -> None:
    """Create all tables for the metadata on the provided engine."""

    from . import models  # noqa: F401  Ensures models are imported before metadata usage.

    SQLModel.metadata.create_all(engine)


@contextmanager
def session_scope(engine: Engine) -> Iterator[Session]:
    """Provide a session whose connectivity failures surface as ``StoreUnavailableError``.

    Callers commit explicitly at their own checkpoints; uncommitted work is
    rolled back when the scope exits.
    """

    with Session(engine) as session:
        with store_guard():
            yield session


@contextmanager
def store_guard() -> Iterator[None]:
    """Translate driver connectivity errors so callers can fail closed."""

    try:
        yield
    except OperationalError as exc:
        logger.error("store.unreachable", extra={"error": str(exc)})
        raise StoreUnavailableError() from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            logger.error("store.connection_invalidated", extra={"error": str(exc)})
            raise StoreUnavailableError() from exc
        raise
