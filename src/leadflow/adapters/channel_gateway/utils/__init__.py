"""Gateway helpers."""

from .security import SignatureVerificationError, compute_signature, validate_hmac_signature

__all__ = ["SignatureVerificationError", "compute_signature", "validate_hmac_signature"]
