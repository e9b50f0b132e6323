"""Alert error taxonomy — every error carries a stable code and a message."""

from __future__ import annotations

from typing import Any


class AlertError(Exception):
    """Base exception for all alert errors."""

    code = "ALERT_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class InvalidInputError(AlertError):
    """Malformed, out-of-range or missing field(s)."""

    code = "INVALID_INPUT"

    def __init__(self, message: str, fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.fields: list[str] = fields or []

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["fields"] = list(self.fields)
        return body


class ConflictError(AlertError):
    """An open alert already exists for the trip, or a write lost a race."""

    code = "CONFLICT"


class NotFoundError(AlertError):
    """No alert with the requested id."""

    code = "NOT_FOUND"


class ForbiddenError(AlertError):
    """The actor is not allowed to perform the operation."""

    code = "FORBIDDEN"


class InvalidTransitionError(AlertError):
    """The requested change violates the lifecycle state machine."""

    code = "INVALID_TRANSITION"


class LimitExceededError(AlertError):
    """A contact or occupant bound would be exceeded."""

    code = "LIMIT_EXCEEDED"


class DependencyFailureError(AlertError):
    """The store or another collaborator is unavailable."""

    code = "DEPENDENCY_FAILURE"


class GeocodingError(Exception):
    """Reverse geocoding failed. Never surfaced to callers."""
