from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from coworkhub.apps.api.response import error_response, is_versioned_request
from coworkhub.core.errors import CoworkHubError
from coworkhub.persistence.guards import TenantPredicateError


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    410: "GONE",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
}


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # HTTPException details are either {"code","message",...} dicts or plain strings.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    # Router-level 404/405 come from Starlette, not FastAPI.
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def domain_exception_handler(request: Request, exc: CoworkHubError) -> JSONResponse:
    """Render service-layer errors with their own status, code and details."""
    if exc.status_code >= 500:
        logger.error("domain_error code=%s path=%s", exc.code, request.url.path, exc_info=exc)
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.message}, status_code=exc.status_code)
    payload = error_response(
        request=request,
        code=exc.code,
        message=exc.message,
        details=jsonable_encoder(exc.details) if exc.details else None,
    )
    return JSONResponse(content=payload, status_code=exc.status_code)


async def tenant_predicate_exception_handler(request: Request, exc: TenantPredicateError) -> JSONResponse:
    logger.error("tenant_predicate_missing path=%s", request.url.path, exc_info=exc)
    payload = error_response(
        request=request,
        code="TENANT_PREDICATE_REQUIRED",
        message="Tenant scope was missing from a data access",
    )
    return JSONResponse(content=payload, status_code=500)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": jsonable_encoder(exc.errors())}, status_code=422)
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(content=payload, status_code=422)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Never leak stack traces to clients.
    logger.error("unhandled_exception path=%s", request.url.path, exc_info=exc)
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": "Internal Server Error"}, status_code=500)
    payload = error_response(
        request=request,
        code="INTERNAL_ERROR",
        message="Internal server error",
    )
    return JSONResponse(content=payload, status_code=500)
