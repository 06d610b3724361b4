from __future__ import annotations

from typing import Any, Generic, TypeVar
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel


API_VERSION = "v1"
_VERSION_PREFIX = f"/{API_VERSION}"

DataT = TypeVar("DataT")


class ResponseMeta(BaseModel):
    request_id: str
    api_version: str = API_VERSION


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class SuccessEnvelope(BaseModel, Generic[DataT]):
    """Body of every successful ``/v1`` response."""

    data: DataT
    meta: ResponseMeta


class ErrorEnvelope(BaseModel):
    error: ErrorDetail
    meta: ResponseMeta


def is_versioned_request(request: Request) -> bool:
    path = request.url.path
    return path == _VERSION_PREFIX or path.startswith(f"{_VERSION_PREFIX}/")


def _meta(request: Request) -> dict[str, Any]:
    # Set by the request middleware; handlers invoked outside it mint one.
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")
    if not request_id:
        request_id = str(uuid4())
    request.state.request_id = request_id
    return ResponseMeta(request_id=request_id).model_dump()


def success_response(*, request: Request, data: Any) -> Any:
    if not is_versioned_request(request):
        return data
    return {"data": data, "meta": _meta(request)}


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error = ErrorDetail(code=code, message=message, details=details)
    return {"error": error.model_dump(exclude_none=True), "meta": _meta(request)}
