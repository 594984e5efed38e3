"""Dialect-aware ``INSERT ... ON CONFLICT DO NOTHING`` helpers."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session, SQLModel

_INSERTERS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def insert_ignore(
    session: Session,
    model: type[SQLModel],
    values: Mapping[str, Any],
    *,
    conflict_columns: Sequence[str],
) -> bool:
    """Insert a row unless ``conflict_columns`` already identify one.

    Returns ``True`` when this call created the row. The check and the write
    are a single statement, so concurrent callers cannot both win.
    """

    dialect = session.get_bind().dialect.name
    inserter = _INSERTERS.get(dialect)
    if inserter is None:
        raise NotImplementedError(f"atomic upsert unsupported for dialect {dialect}")

    columns = model.__table__.c
    row = dict(values)
    if "id" in columns and "id" not in row:
        row["id"] = uuid4()
    now = datetime.now(tz=UTC)
    for stamp in ("created_at", "updated_at"):
        if stamp in columns and stamp not in row:
            row[stamp] = now

    statement = (
        inserter(model.__table__)
        .values(**row)
        .on_conflict_do_nothing(index_elements=list(conflict_columns))
    )
    result = session.exec(statement)
    return result.rowcount > 0
