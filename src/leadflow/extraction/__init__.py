"""Pure field extraction from inbound message bodies."""

from .dates import has_relative_date, parse_explicit_date
from .extractor import PartialFields, extract, lookup_country, parse_count
from .merge import MANUAL_FIELDS_KEY, is_empty, merge_collected, missing_keys
from .taxonomy import SERVICE_KEYS, SERVICE_TAXONOMY, ServiceMatch, match_service

__all__ = [
    "MANUAL_FIELDS_KEY",
    "PartialFields",
    "SERVICE_KEYS",
    "SERVICE_TAXONOMY",
    "ServiceMatch",
    "extract",
    "has_relative_date",
    "is_empty",
    "lookup_country",
    "match_service",
    "merge_collected",
    "missing_keys",
    "parse_count",
    "parse_explicit_date",
]
