"""Signature verification for provider webhooks."""

from __future__ import annotations

import hashlib
import hmac

from leadflow.core.errors import UnauthorizedError


class SignatureVerificationError(UnauthorizedError):
    """Raised when a webhook signature is missing or does not match."""


def compute_signature(secret: str, payload: bytes) -> str:
    """Return the ``sha256=<hex>`` signature providers send for ``payload``."""

    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def validate_hmac_signature(secret: str | None, payload: bytes, signature: str | None) -> None:
    """Validate an HMAC-SHA256 signature, with or without the ``sha256=`` prefix."""

    if not secret:
        raise SignatureVerificationError("no webhook secret configured for channel")
    if not signature:
        raise SignatureVerificationError("missing signature")
    provided = signature.split("=", 1)[1] if signature.startswith("sha256=") else signature
    expected = compute_signature(secret, payload).split("=", 1)[1]
    if not hmac.compare_digest(expected, provided.strip().lower()):
        raise SignatureVerificationError("signature mismatch")
