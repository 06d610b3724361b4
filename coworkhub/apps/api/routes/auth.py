from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.apps.api.auditing import audit_action
from coworkhub.apps.api.deps import Principal, get_current_principal, get_db, reject_tenant_id_in_body, require_role
from coworkhub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from coworkhub.apps.api.response import SuccessEnvelope, success_response
from coworkhub.core.clock import as_utc
from coworkhub.domain.models import ApiKey, AuditEvent, User
from coworkhub.persistence.repos import audit as audit_repo
from coworkhub.services.auth import api_keys as api_keys_service


router = APIRouter(tags=["auth"], responses=DEFAULT_ERROR_RESPONSES)


class MeResponse(BaseModel):
    subject_id: str
    tenant_id: str
    role: str
    api_key_id: str
    auth_method: str


class ApiKeyCreateRequest(BaseModel):
    model_config = {"extra": "forbid"}

    name: str | None = Field(default=None, max_length=128)
    role: Literal["reader", "editor", "admin"]
    user_id: str | None = Field(default=None, max_length=64)
    email: str | None = Field(default=None, max_length=320)
    display_name: str | None = Field(default=None, max_length=128)


class ApiKeyResponse(BaseModel):
    key_id: str
    key_prefix: str
    user_id: str
    name: str | None
    role: str
    created_at: str
    last_used_at: str | None
    revoked_at: str | None
    is_active: bool


class ApiKeyCreateResponse(ApiKeyResponse):
    api_key: str


class AuditEventResponse(BaseModel):
    id: int
    occurred_at: str
    actor_type: str
    actor_id: str | None
    actor_role: str | None
    event_type: str
    action: str | None
    outcome: str
    resource_type: str | None
    resource_id: str | None
    request_id: str | None
    ip_address: str | None
    metadata_json: dict[str, Any] | None
    error_code: str | None


class AuditEventsPage(BaseModel):
    items: list[AuditEventResponse]
    next_offset: int | None


def _iso(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value else None


def _key_response(api_key: ApiKey, user: User) -> ApiKeyResponse:
    return ApiKeyResponse(
        key_id=api_key.id,
        key_prefix=api_key.key_prefix,
        user_id=user.id,
        name=api_key.name,
        role=user.role,
        created_at=_iso(api_key.created_at),
        last_used_at=_iso(api_key.last_used_at),
        revoked_at=_iso(api_key.revoked_at),
        is_active=bool(user.is_active) and api_key.revoked_at is None,
    )


def _event_response(event: AuditEvent) -> AuditEventResponse:
    return AuditEventResponse(
        id=event.id,
        occurred_at=_iso(event.occurred_at),
        actor_type=event.actor_type,
        actor_id=event.actor_id,
        actor_role=event.actor_role,
        event_type=event.event_type,
        action=event.action,
        outcome=event.outcome,
        resource_type=event.resource_type,
        resource_id=event.resource_id,
        request_id=event.request_id,
        ip_address=event.ip_address,
        metadata_json=event.metadata_json,
        error_code=event.error_code,
    )


@router.get("/me", response_model=SuccessEnvelope[MeResponse] | MeResponse)
async def me(request: Request, principal: Principal = Depends(get_current_principal)) -> dict:
    payload = MeResponse(**principal.model_dump())
    return success_response(request=request, data=payload)


@router.post(
    "/admin/api-keys",
    status_code=201,
    response_model=SuccessEnvelope[ApiKeyCreateResponse] | ApiKeyCreateResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def create_api_key(
    request: Request,
    payload: ApiKeyCreateRequest,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # The raw key is returned exactly once.
    user, api_key, raw_key = await api_keys_service.provision_api_key(
        db,
        tenant_id=principal.tenant_id,
        role=payload.role,
        name=payload.name,
        user_id=payload.user_id,
        email=payload.email,
        display_name=payload.display_name,
    )
    response = ApiKeyCreateResponse(**_key_response(api_key, user).model_dump(), api_key=raw_key)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="auth.api_key.created",
        action="CREATE",
        resource_type="ApiKey",
        resource_id=response.key_id,
        metadata={"user_id": response.user_id, "role": response.role, "key_prefix": response.key_prefix},
    )
    return success_response(request=request, data=response)


@router.get("/admin/api-keys", response_model=SuccessEnvelope[list[ApiKeyResponse]] | list[ApiKeyResponse])
async def list_api_keys(
    request: Request,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rows = await api_keys_service.list_api_keys(db, tenant_id=principal.tenant_id)
    return success_response(request=request, data=[_key_response(api_key, user) for api_key, user in rows])


@router.post(
    "/admin/api-keys/{key_id}/revoke",
    response_model=SuccessEnvelope[ApiKeyResponse] | ApiKeyResponse,
)
async def revoke_api_key(
    key_id: str,
    request: Request,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    api_key, user = await api_keys_service.revoke_api_key(db, tenant_id=principal.tenant_id, key_id=key_id)
    response = _key_response(api_key, user)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="auth.api_key.revoked",
        action="UPDATE",
        resource_type="ApiKey",
        resource_id=response.key_id,
    )
    return success_response(request=request, data=response)


@router.get("/audit/events", response_model=SuccessEnvelope[AuditEventsPage] | AuditEventsPage)
async def list_audit_events(
    request: Request,
    event_type: str | None = None,
    action: str | None = None,
    outcome: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    events = await audit_repo.list_events(
        db,
        tenant_id=principal.tenant_id,
        event_type=event_type,
        action=action,
        outcome=outcome,
        resource_type=resource_type,
        resource_id=resource_id,
        occurred_from=since,
        occurred_to=until,
        offset=offset,
        limit=limit + 1,
    )
    next_offset = None
    if len(events) > limit:
        events = events[:limit]
        next_offset = offset + limit
    page = AuditEventsPage(items=[_event_response(event) for event in events], next_offset=next_offset)
    return success_response(request=request, data=page)
