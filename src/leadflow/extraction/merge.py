"""Additive merge of extracted fields into stored lead data."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

MANUAL_FIELDS_KEY = "_manual_fields"


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def merge_collected(
    existing: Mapping[str, Any] | None,
    incoming: Mapping[str, Any] | None,
    protected: Iterable[str] = (),
) -> dict[str, Any]:
    """Merge ``incoming`` into a copy of ``existing`` without losing data.

    - empty incoming values are ignored
    - existing non-empty values are never overwritten
    - nested mappings are merged recursively under the same rules
    - keys named in ``protected`` or in ``existing["_manual_fields"]`` are
      human-entered and left untouched
    """

    merged: dict[str, Any] = dict(existing or {})
    locked = set(protected) | set(merged.get(MANUAL_FIELDS_KEY) or ())

    for key, value in (incoming or {}).items():
        if key == MANUAL_FIELDS_KEY or key in locked or is_empty(value):
            continue
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = merge_collected(current, value)
        elif is_empty(current):
            merged[key] = value
    return merged


def missing_keys(data: Mapping[str, Any], keys: Iterable[str]) -> list[str]:
    return [key for key in keys if is_empty(data.get(key))]
