from __future__ import annotations

from typing import Any, AsyncGenerator
import asyncio
import time

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.core.clock import as_utc, utc_now
from coworkhub.core.config import get_settings
from coworkhub.domain.models import ApiKey, User
from coworkhub.persistence.db import get_session
from coworkhub.services.auth.api_keys import hash_api_key, normalize_role, role_allows
from coworkhub.services.audit import get_request_context, record_event
from coworkhub.services.security_events import record_access_denied


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request, closed on success and error alike.
    async with get_session() as session:
        yield session


class Principal(BaseModel):
    subject_id: str
    tenant_id: str
    role: str
    api_key_id: str
    auth_method: str = "api_key"


_auth_cache: dict[str, tuple[float, Principal]] = {}
_auth_cache_lock = asyncio.Lock()


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _forbidden_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "AUTH_FORBIDDEN", "message": message},
    )


def _extract_error_code(exc: HTTPException) -> str | None:
    detail = exc.detail
    if isinstance(detail, dict):
        return detail.get("code")
    return None


def _request_metadata(request: Request) -> dict[str, str]:
    # Path and method only; headers may carry credentials.
    return {"path": request.url.path, "method": request.method}


async def _record_auth_event(
    db: AsyncSession,
    request: Request,
    *,
    event_type: str,
    outcome: str,
    tenant_id: str | None = None,
    actor_type: str = "anonymous",
    actor_id: str | None = None,
    actor_role: str | None = None,
    metadata: dict[str, Any] | None = None,
    error: HTTPException | None = None,
) -> None:
    request_ctx = get_request_context(request)
    await record_event(
        session=db,
        tenant_id=tenant_id,
        actor_type=actor_type,
        actor_id=actor_id,
        actor_role=actor_role,
        event_type=event_type,
        outcome=outcome,
        resource_type="auth",
        request_id=request_ctx["request_id"],
        ip_address=request_ctx["ip_address"],
        user_agent=request_ctx["user_agent"],
        metadata={**_request_metadata(request), **(metadata or {})},
        error_code=_extract_error_code(error) if error is not None else None,
        commit=True,
        best_effort=True,
    )


async def _get_cached_principal(key_hash: str, ttl_s: int) -> Principal | None:
    if ttl_s <= 0:
        return None
    now = time.time()
    async with _auth_cache_lock:
        entry = _auth_cache.get(key_hash)
        if not entry:
            return None
        expires_at, principal = entry
        if expires_at <= now:
            _auth_cache.pop(key_hash, None)
            return None
        return principal


async def _set_cached_principal(key_hash: str, principal: Principal, ttl_s: int) -> None:
    # Short fixed expiry so revocations take effect quickly.
    if ttl_s <= 0:
        return
    async with _auth_cache_lock:
        _auth_cache[key_hash] = (time.time() + ttl_s, principal)


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _auth_error("Missing or invalid bearer token")
    return parts[1]


def _principal_from_dev_headers(request: Request) -> Principal:
    """Build a principal from X-Tenant-Id / X-Role / X-User-Id for local development."""
    tenant_id = request.headers.get("X-Tenant-Id")
    if not tenant_id:
        raise _auth_error("X-Tenant-Id header is required in dev bypass mode")
    role_header = request.headers.get("X-Role", "admin")
    try:
        role = normalize_role(role_header)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "AUTH_INVALID_ROLE", "message": str(exc)},
        ) from exc
    return Principal(
        subject_id=request.headers.get("X-User-Id") or f"dev-{tenant_id}",
        tenant_id=tenant_id,
        role=role,
        api_key_id="dev-bypass",
        auth_method="dev_bypass",
    )


async def reject_tenant_id_in_body(request: Request) -> None:
    # The tenant always comes from the credential.
    content_type = (request.headers.get("content-type") or "").lower()
    if not content_type.startswith("application/json"):
        return
    try:
        payload = await request.json()
    except ValueError:
        return
    if isinstance(payload, dict) and "tenant_id" in payload:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "TENANT_ID_NOT_ALLOWED",
                "message": "tenant_id must be derived from the API key",
            },
        )


async def _dev_bypass_principal(request: Request, db: AsyncSession) -> Principal:
    principal = _principal_from_dev_headers(request)
    await _record_auth_event(
        db,
        request,
        event_type="auth.access.success",
        outcome="success",
        tenant_id=principal.tenant_id,
        actor_type="system",
        actor_id=principal.subject_id,
        actor_role=principal.role,
        metadata={"auth_mode": "dev_bypass"},
    )
    return principal


async def get_current_principal(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Principal:
    """Resolve the bearer API key into a tenant-bound principal.

    Every outcome, success or failure, is written to the audit log before
    returning or raising.
    """
    settings = get_settings()
    header_value = request.headers.get(settings.auth_api_key_header)
    try:
        bearer_token = _parse_bearer_token(header_value)
    except HTTPException as exc:
        await _record_auth_event(db, request, event_type="auth.access.failure", outcome="failure", error=exc)
        raise

    if not settings.auth_enabled or not bearer_token:
        if settings.auth_dev_bypass:
            return await _dev_bypass_principal(request, db)
        if not settings.auth_enabled:
            error = _auth_error("Authentication disabled; set AUTH_DEV_BYPASS=true for dev access")
        else:
            error = _auth_error("Missing API key")
        await _record_auth_event(db, request, event_type="auth.access.failure", outcome="failure", error=error)
        raise error

    key_hash = hash_api_key(bearer_token)
    cached = await _get_cached_principal(key_hash, settings.auth_cache_ttl_s)
    if cached:
        await _record_auth_event(
            db,
            request,
            event_type="auth.access.success",
            outcome="success",
            tenant_id=cached.tenant_id,
            actor_type="api_key",
            actor_id=cached.api_key_id,
            actor_role=cached.role,
            metadata={"auth_cache": True},
        )
        return cached

    try:
        result = await db.execute(
            select(ApiKey, User)
            .join(User, ApiKey.user_id == User.id)
            .where(ApiKey.key_hash == key_hash)
        )
    except SQLAlchemyError as exc:
        error = HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": "AUTH_UNAVAILABLE", "message": "Authentication unavailable"},
        )
        await _record_auth_event(
            db, request, event_type="auth.access.failure", outcome="failure", actor_type="system", error=error
        )
        raise error from exc

    row = result.first()
    if row is None:
        error = _auth_error("Invalid API key")
        await _record_auth_event(db, request, event_type="auth.access.failure", outcome="failure", error=error)
        raise error
    api_key, user = row
    key_actor = {
        "tenant_id": api_key.tenant_id,
        "actor_type": "api_key",
        "actor_id": api_key.id,
        "actor_role": user.role,
        "metadata": {"user_id": user.id},
    }
    if api_key.revoked_at is not None or not user.is_active:
        error = _auth_error("API key is revoked or inactive")
        await _record_auth_event(
            db, request, event_type="auth.access.failure", outcome="failure", error=error, **key_actor
        )
        raise error
    now = utc_now()
    if api_key.expires_at is not None and as_utc(api_key.expires_at) <= now:
        error = _auth_error("API key expired")
        await _record_auth_event(
            db, request, event_type="auth.api_key.expired", outcome="failure", error=error, **key_actor
        )
        raise error
    if api_key.tenant_id != user.tenant_id:
        error = _forbidden_error("Tenant mismatch for API key")
        await _record_auth_event(
            db, request, event_type="auth.access.failure", outcome="failure", error=error, **key_actor
        )
        raise error

    try:
        role = normalize_role(user.role)
    except ValueError as exc:
        error = _forbidden_error(str(exc))
        await _record_auth_event(
            db, request, event_type="auth.access.failure", outcome="failure", error=error, **key_actor
        )
        raise error from exc

    principal = Principal(
        subject_id=user.id,
        tenant_id=user.tenant_id,
        role=role,
        api_key_id=api_key.id,
        auth_method="api_key",
    )
    await _set_cached_principal(key_hash, principal, settings.auth_cache_ttl_s)
    # Committed together with the success audit row below.
    api_key.last_used_at = now
    user.last_login_at = now
    await _record_auth_event(
        db,
        request,
        event_type="auth.access.success",
        outcome="success",
        tenant_id=principal.tenant_id,
        actor_type="api_key",
        actor_id=principal.api_key_id,
        actor_role=principal.role,
        metadata={"user_id": principal.subject_id},
    )
    return principal


def require_role(minimum_role: str):
    """Dependency factory enforcing ``minimum_role`` on a route.

    Denials are audited and also stored as UNAUTHORIZED_ACCESS security events.
    """

    async def _dependency(
        request: Request,
        principal: Principal = Depends(get_current_principal),
        db: AsyncSession = Depends(get_db),
    ) -> Principal:
        if role_allows(role=principal.role, minimum_role=minimum_role):
            return principal
        error = _forbidden_error("Insufficient role for this operation")
        await _record_auth_event(
            db,
            request,
            event_type="rbac.forbidden",
            outcome="failure",
            tenant_id=principal.tenant_id,
            actor_type=principal.auth_method,
            actor_id=principal.api_key_id,
            actor_role=principal.role,
            metadata={"required_role": minimum_role},
            error=error,
        )
        await record_access_denied(
            db,
            tenant_id=principal.tenant_id,
            user_id=principal.subject_id,
            ip_address=get_request_context(request)["ip_address"],
            required_role=minimum_role,
            actual_role=principal.role,
            path=request.url.path,
        )
        raise error

    return _dependency
