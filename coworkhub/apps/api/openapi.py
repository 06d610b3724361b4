from __future__ import annotations

from typing import Any

from coworkhub.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, *, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {
            "application/json": {
                "example": _error_example(code=code, message=message, details=details),
            }
        },
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: _response(
        "Bad request",
        code="BOOKING_CONFLICT",
        message="Space is already booked for the requested time",
    ),
    401: _response("Unauthorized", code="AUTH_UNAUTHORIZED", message="Missing or invalid bearer token"),
    403: _response("Forbidden", code="AUTH_FORBIDDEN", message="Insufficient role for this operation"),
    404: _response("Not found", code="CONTRACT_NOT_FOUND", message="Contract not found"),
    409: _response(
        "Conflict",
        code="SPACE_NAME_CONFLICT",
        message="A space with this name already exists",
    ),
    410: _response("Gone", code="EXPORT_EXPIRED", message="Export has expired"),
    422: _response(
        "Validation error",
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": [{"loc": ["body", "quantity"], "msg": "Input should be greater than 0"}]},
    ),
    500: _response("Internal server error", code="INTERNAL_ERROR", message="Internal server error"),
}
