from __future__ import annotations

from typing import Any


class CoworkHubError(Exception):
    """Base error for CoworkHub domain services."""

    status_code = 500
    default_code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details


class ValidationError(CoworkHubError):
    """Input or state violates a business rule."""

    status_code = 400
    default_code = "VALIDATION_ERROR"


class PermissionDeniedError(CoworkHubError):
    """Authenticated principal may not act on this resource."""

    status_code = 403
    default_code = "AUTH_FORBIDDEN"


class NotFoundError(CoworkHubError):
    """Resource is missing or belongs to another tenant."""

    status_code = 404
    default_code = "NOT_FOUND"


class ConflictError(CoworkHubError):
    """Write conflicts with existing state (duplicates, overlaps)."""

    status_code = 409
    default_code = "CONFLICT"


class GoneError(CoworkHubError):
    """Resource existed but is no longer available."""

    status_code = 410
    default_code = "GONE"


class DatabaseError(CoworkHubError):
    """Database layer failure."""

    status_code = 500
    default_code = "DB_ERROR"
