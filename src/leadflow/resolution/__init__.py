"""Identity resolution for inbound events."""

from .addresses import canonicalize_address, canonicalize_handle, canonicalize_phone
from .resolver import EntityResolver, Resolution

__all__ = [
    "EntityResolver",
    "Resolution",
    "canonicalize_address",
    "canonicalize_handle",
    "canonicalize_phone",
]
