"""Shared exception hierarchy for services."""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from http import HTTPStatus
from typing import Any


class CoreError(Exception):
    """Base exception capturing rich problem details."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR,
        code: str = "core_error",
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = int(status_code)
        self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """FastAPI/JSON-serializable representation of the error."""

        payload: dict[str, Any] = {
            "type": f"https://docs.example.com/errors/{self.code}",
            "title": self.message,
            "status": self.status_code,
            "code": self.code,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(CoreError):
    """Raised when a resource cannot be located."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=HTTPStatus.NOT_FOUND,
            code="not_found",
            details=details,
        )


class ValidationError(CoreError):
    """Raised when an upstream request fails validation."""

    def __init__(
        self,
        message: str,
        *,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            status_code=HTTPStatus.UNPROCESSABLE_ENTITY,
            code="validation_error",
            details=details,
        )


class UnauthorizedError(CoreError):
    """Raised when authentication fails or is missing."""

    def __init__(self, message: str = "unauthorized") -> None:
        super().__init__(
            message=message,
            status_code=HTTPStatus.UNAUTHORIZED,
            code="unauthorized",
        )


class ConflictError(CoreError):
    """Raised when a request conflicts with existing state."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "conflict",
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            status_code=HTTPStatus.CONFLICT,
            code=code,
            details=details,
        )


class StoreUnavailableError(CoreError):
    """Raised when the durable store cannot be reached; callers must fail closed."""

    def __init__(self, message: str = "store unavailable") -> None:
        super().__init__(
            message=message,
            status_code=HTTPStatus.SERVICE_UNAVAILABLE,
            code="store_unavailable",
        )


class ResolutionConflict(ConflictError):
    """A concurrent upsert won the race; the atomic upsert should be retried."""

    def __init__(self, entity: str, key: str) -> None:
        super().__init__(
            f"concurrent upsert conflict for {entity}",
            code="resolution_conflict",
            details={"entity": entity, "key": key},
        )


class AddressNormalizationError(ValidationError):
    """Raised when a raw channel address cannot be canonicalized."""


class ExtractionAmbiguous(CoreError):
    """Low-confidence extraction; the value is kept as a hint only."""

    def __init__(self, field: str, candidates: list[str]) -> None:
        super().__init__(
            f"ambiguous value for {field}",
            status_code=HTTPStatus.OK,
            code="extraction_ambiguous",
            details={"field": field, "candidates": candidates},
        )
        self.field = field
        self.candidates = candidates


class FlowLimitReached(CoreError):
    """The per-flow question ceiling was reached."""

    def __init__(self, flow_key: str, ceiling: int) -> None:
        super().__init__(
            f"question ceiling {ceiling} reached for {flow_key}",
            status_code=HTTPStatus.OK,
            code="flow_limit_reached",
            details={"flow_key": flow_key, "ceiling": ceiling},
        )


class InvalidTransitionError(CoreError):
    """Raised when a flow step transition is not in the transition table."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            f"invalid flow transition {current} -> {target}",
            code="invalid_transition",
            details={"current": current, "target": target},
        )


class FlowStateConflict(ConflictError):
    """Raised when the persisted flow state changed under the caller."""

    def __init__(self, conversation_id: str, expected_version: int) -> None:
        super().__init__(
            "flow state version mismatch",
            code="flow_state_conflict",
            details={
                "conversation_id": conversation_id,
                "expected_version": expected_version,
            },
        )


class DispatchLockBusy(CoreError):
    """Another worker holds the conversation lease."""

    def __init__(self, conversation_id: str) -> None:
        super().__init__(
            "conversation lock busy",
            status_code=HTTPStatus.CONFLICT,
            code="dispatch_lock_busy",
            details={"conversation_id": conversation_id},
        )


class TransportErrorClass(str, Enum):
    """Classification of provider send failures."""

    AUTH = "auth"
    RATE_LIMITED = "rate_limited"
    EXPIRED = "expired"
    TRANSIENT = "transient"
    INVALID_ADDRESS = "invalid_address"


_RETRYABLE = {TransportErrorClass.TRANSIENT, TransportErrorClass.RATE_LIMITED}


class TransportError(CoreError):
    """Raised by send transports with a classified failure."""

    def __init__(
        self,
        error_class: TransportErrorClass,
        message: str,
        *,
        retry_after: float | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message,
            status_code=HTTPStatus.BAD_GATEWAY,
            code=f"transport_{error_class.value}",
            details=details,
        )
        self.error_class = error_class
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        return self.error_class in _RETRYABLE


class GenerationTimeout(CoreError):
    """Reply generation exceeded its time budget."""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(
            f"reply generation exceeded {timeout_seconds}s",
            status_code=HTTPStatus.GATEWAY_TIMEOUT,
            code="generation_timeout",
            details={"timeout_seconds": timeout_seconds},
        )
