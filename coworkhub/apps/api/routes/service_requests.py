from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.apps.api.auditing import audit_action
from coworkhub.apps.api.deps import Principal, get_db, reject_tenant_id_in_body, require_role
from coworkhub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from coworkhub.apps.api.response import SuccessEnvelope, success_response
from coworkhub.core.clock import as_utc
from coworkhub.domain.enums import RequestPriority, RequestStatus
from coworkhub.domain.models import ServiceRequest, ServiceRequestStatusHistory
from coworkhub.services import service_requests as requests_service
from coworkhub.services.auth.api_keys import is_admin


router = APIRouter(prefix="/service-requests", tags=["service-requests"], responses=DEFAULT_ERROR_RESPONSES)


class ServiceRequestCreateRequest(BaseModel):
    model_config = {"extra": "forbid"}

    service_id: str
    quantity: int = Field(default=1, ge=1)
    priority: RequestPriority = "NORMAL"
    requested_delivery_time: datetime | None = None
    notes: str | None = None
    customizations: dict[str, Any] = Field(default_factory=dict)
    attachments: list[str] = Field(default_factory=list)


class ServiceRequestUpdateRequest(BaseModel):
    model_config = {"extra": "forbid"}

    quantity: int | None = Field(default=None, ge=1)
    priority: RequestPriority | None = None
    requested_delivery_time: datetime | None = None
    notes: str | None = None
    customizations: dict[str, Any] | None = None
    attachments: list[str] | None = None


class ReasonRequest(BaseModel):
    model_config = {"extra": "forbid"}

    reason: str | None = Field(default=None, max_length=1000)


class HoldRequest(BaseModel):
    model_config = {"extra": "forbid"}

    reason: str = Field(min_length=1, max_length=1000)


class ApprovalRequest(BaseModel):
    model_config = {"extra": "forbid"}

    approve: bool
    reason: str | None = Field(default=None, max_length=1000)
    notes: str | None = None
    scheduled_delivery_time: datetime | None = None


class AssignRequest(BaseModel):
    model_config = {"extra": "forbid"}

    assigned_to: str = Field(min_length=1)
    notes: str | None = None


class ProgressRequest(BaseModel):
    model_config = {"extra": "forbid"}

    progress_notes: str = Field(min_length=1)
    attachments: list[str] | None = None


class CompleteRequest(BaseModel):
    model_config = {"extra": "forbid"}

    actual_delivery_time: datetime | None = None
    notes: str | None = None
    attachments: list[str] | None = None


class ServiceRequestResponse(BaseModel):
    id: str
    service_id: str
    user_id: str
    quantity: int
    total_amount: float
    priority: str
    status: str
    requested_delivery_time: str | None
    scheduled_delivery_time: str | None
    actual_delivery_time: str | None
    notes: str | None
    customizations: dict[str, Any]
    attachments: list[str]
    requires_approval: bool
    approved_by: str | None
    approved_at: str | None
    rejection_reason: str | None
    assigned_to: str | None
    progress_notes: str | None
    completed_at: str | None
    created_at: str | None


class RequestPageResponse(BaseModel):
    requests: list[ServiceRequestResponse]
    total: int
    has_more: bool


class StatusHistoryResponse(BaseModel):
    status: str
    changed_by: str
    reason: str | None
    notes: str | None
    timestamp: str


def _iso(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value else None


def _to_response(item: ServiceRequest) -> ServiceRequestResponse:
    return ServiceRequestResponse(
        id=item.id,
        service_id=item.service_id,
        user_id=item.user_id,
        quantity=item.quantity,
        total_amount=float(item.total_amount),
        priority=item.priority,
        status=item.status,
        requested_delivery_time=_iso(item.requested_delivery_time),
        scheduled_delivery_time=_iso(item.scheduled_delivery_time),
        actual_delivery_time=_iso(item.actual_delivery_time),
        notes=item.notes,
        customizations=dict(item.customizations or {}),
        attachments=list(item.attachments or []),
        requires_approval=item.requires_approval,
        approved_by=item.approved_by,
        approved_at=_iso(item.approved_at),
        rejection_reason=item.rejection_reason,
        assigned_to=item.assigned_to,
        progress_notes=item.progress_notes,
        completed_at=_iso(item.completed_at),
        created_at=_iso(item.created_at),
    )


def _page(page: requests_service.RequestPage) -> RequestPageResponse:
    return RequestPageResponse(
        requests=[_to_response(item) for item in page.requests], total=page.total, has_more=page.has_more
    )


def _history_response(row: ServiceRequestStatusHistory) -> StatusHistoryResponse:
    return StatusHistoryResponse(
        status=row.status,
        changed_by=row.changed_by,
        reason=row.reason,
        notes=row.notes,
        timestamp=_iso(row.created_at),
    )


async def _audit_status(
    db: AsyncSession,
    principal: Principal,
    request: Request,
    response: ServiceRequestResponse,
    event_type: str,
    metadata: dict[str, Any] | None = None,
) -> None:
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type=event_type,
        action="UPDATE",
        resource_type="ServiceRequest",
        resource_id=response.id,
        metadata={"status": response.status, **(metadata or {})},
    )


@router.post(
    "",
    status_code=201,
    response_model=SuccessEnvelope[ServiceRequestResponse] | ServiceRequestResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def create_request(
    request: Request,
    payload: ServiceRequestCreateRequest,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    item = await requests_service.create_request(
        db,
        tenant_id=principal.tenant_id,
        user_id=principal.subject_id,
        service_id=payload.service_id,
        quantity=payload.quantity,
        priority=payload.priority,
        requested_delivery_time=as_utc(payload.requested_delivery_time),
        notes=payload.notes,
        customizations=payload.customizations,
        attachments=payload.attachments,
    )
    response = _to_response(item)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="service_request.created",
        action="CREATE",
        resource_type="ServiceRequest",
        resource_id=response.id,
        metadata={"service_id": response.service_id, "status": response.status, "total": response.total_amount},
    )
    return success_response(request=request, data=response)


@router.get("", response_model=SuccessEnvelope[RequestPageResponse] | RequestPageResponse)
async def list_requests(
    request: Request,
    status: list[RequestStatus] | None = Query(default=None),
    priority: RequestPriority | None = None,
    service_id: str | None = None,
    user_id: str | None = None,
    assigned_to: str | None = None,
    approved_by: str | None = None,
    requires_approval: bool | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    search: str | None = None,
    skip: int = Query(default=0, ge=0),
    take: int = Query(default=50, ge=1, le=200),
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    filters = requests_service.RequestFilters(
        statuses=list(status) if status else None,
        priority=priority,
        service_id=service_id,
        user_id=user_id,
        assigned_to=assigned_to,
        approved_by=approved_by,
        requires_approval=requires_approval,
        start=as_utc(start),
        end=as_utc(end),
        search=search,
    )
    page = await requests_service.list_requests(
        db, tenant_id=principal.tenant_id, filters=filters, skip=skip, take=take
    )
    return success_response(request=request, data=_page(page))


@router.get("/mine", response_model=SuccessEnvelope[list[ServiceRequestResponse]] | list[ServiceRequestResponse])
async def my_requests(
    request: Request,
    status: list[RequestStatus] | None = Query(default=None),
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    items = await requests_service.my_requests(
        db,
        tenant_id=principal.tenant_id,
        user_id=principal.subject_id,
        statuses=list(status) if status else None,
    )
    return success_response(request=request, data=[_to_response(item) for item in items])


@router.get("/pending-approvals", response_model=SuccessEnvelope[RequestPageResponse] | RequestPageResponse)
async def pending_approvals(
    request: Request,
    skip: int = Query(default=0, ge=0),
    take: int = Query(default=50, ge=1, le=200),
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    page = await requests_service.pending_approvals(db, tenant_id=principal.tenant_id, skip=skip, take=take)
    return success_response(request=request, data=_page(page))


@router.get("/assigned", response_model=SuccessEnvelope[RequestPageResponse] | RequestPageResponse)
async def assigned_requests(
    request: Request,
    skip: int = Query(default=0, ge=0),
    take: int = Query(default=50, ge=1, le=200),
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    page = await requests_service.assigned_requests(
        db, tenant_id=principal.tenant_id, user_id=principal.subject_id, skip=skip, take=take
    )
    return success_response(request=request, data=_page(page))


@router.get("/stats", response_model=SuccessEnvelope[dict[str, Any]] | dict[str, Any])
async def request_stats(
    request: Request,
    start: datetime | None = None,
    end: datetime | None = None,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    stats = await requests_service.request_stats(
        db, tenant_id=principal.tenant_id, start=as_utc(start), end=as_utc(end)
    )
    return success_response(request=request, data=stats)


@router.get("/{request_id}", response_model=SuccessEnvelope[ServiceRequestResponse] | ServiceRequestResponse)
async def get_request(
    request_id: str,
    request: Request,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    item = await requests_service.get_request(db, tenant_id=principal.tenant_id, request_id=request_id)
    return success_response(request=request, data=_to_response(item))


@router.get(
    "/{request_id}/history",
    response_model=SuccessEnvelope[list[StatusHistoryResponse]] | list[StatusHistoryResponse],
)
async def request_history(
    request_id: str,
    request: Request,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await requests_service.get_request(db, tenant_id=principal.tenant_id, request_id=request_id)
    rows = await requests_service.get_history(db, tenant_id=principal.tenant_id, request_id=request_id)
    return success_response(request=request, data=[_history_response(row) for row in rows])


@router.patch(
    "/{request_id}",
    response_model=SuccessEnvelope[ServiceRequestResponse] | ServiceRequestResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def update_request(
    request_id: str,
    request: Request,
    payload: ServiceRequestUpdateRequest,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("requested_delivery_time") is not None:
        changes["requested_delivery_time"] = as_utc(changes["requested_delivery_time"])
    item = await requests_service.update_request(
        db,
        tenant_id=principal.tenant_id,
        request_id=request_id,
        user_id=principal.subject_id,
        changes=changes,
    )
    response = _to_response(item)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="service_request.updated",
        action="UPDATE",
        resource_type="ServiceRequest",
        resource_id=response.id,
        metadata={"fields": sorted(changes)},
    )
    return success_response(request=request, data=response)


@router.post(
    "/{request_id}/cancel",
    response_model=SuccessEnvelope[ServiceRequestResponse] | ServiceRequestResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def cancel_request(
    request_id: str,
    request: Request,
    payload: ReasonRequest | None = None,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    item = await requests_service.cancel_request(
        db,
        tenant_id=principal.tenant_id,
        request_id=request_id,
        actor_id=principal.subject_id,
        actor_is_admin=is_admin(principal.role),
        reason=payload.reason if payload else None,
    )
    response = _to_response(item)
    await _audit_status(db, principal, request, response, "service_request.cancelled")
    return success_response(request=request, data=response)


@router.post(
    "/{request_id}/approval",
    response_model=SuccessEnvelope[ServiceRequestResponse] | ServiceRequestResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def process_approval(
    request_id: str,
    request: Request,
    payload: ApprovalRequest,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    item = await requests_service.process_approval(
        db,
        tenant_id=principal.tenant_id,
        request_id=request_id,
        approver_id=principal.subject_id,
        approve=payload.approve,
        reason=payload.reason,
        notes=payload.notes,
        scheduled_delivery_time=as_utc(payload.scheduled_delivery_time),
    )
    response = _to_response(item)
    event_type = "service_request.approved" if payload.approve else "service_request.rejected"
    await _audit_status(db, principal, request, response, event_type)
    return success_response(request=request, data=response)


@router.post(
    "/{request_id}/assign",
    response_model=SuccessEnvelope[ServiceRequestResponse] | ServiceRequestResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def assign_request(
    request_id: str,
    request: Request,
    payload: AssignRequest,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    item = await requests_service.assign_request(
        db,
        tenant_id=principal.tenant_id,
        request_id=request_id,
        assigner_id=principal.subject_id,
        assigned_to=payload.assigned_to,
        notes=payload.notes,
    )
    response = _to_response(item)
    await _audit_status(
        db, principal, request, response, "service_request.assigned", {"assigned_to": response.assigned_to}
    )
    return success_response(request=request, data=response)


@router.post(
    "/{request_id}/progress",
    response_model=SuccessEnvelope[ServiceRequestResponse] | ServiceRequestResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def update_progress(
    request_id: str,
    request: Request,
    payload: ProgressRequest,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    item = await requests_service.update_progress(
        db,
        tenant_id=principal.tenant_id,
        request_id=request_id,
        user_id=principal.subject_id,
        progress_notes=payload.progress_notes,
        attachments=payload.attachments,
    )
    response = _to_response(item)
    await _audit_status(db, principal, request, response, "service_request.progress")
    return success_response(request=request, data=response)


@router.post(
    "/{request_id}/complete",
    response_model=SuccessEnvelope[ServiceRequestResponse] | ServiceRequestResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def complete_request(
    request_id: str,
    request: Request,
    payload: CompleteRequest | None = None,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    payload = payload or CompleteRequest()
    item = await requests_service.complete_request(
        db,
        tenant_id=principal.tenant_id,
        request_id=request_id,
        user_id=principal.subject_id,
        actual_delivery_time=as_utc(payload.actual_delivery_time),
        notes=payload.notes,
        attachments=payload.attachments,
    )
    response = _to_response(item)
    await _audit_status(db, principal, request, response, "service_request.completed")
    return success_response(request=request, data=response)


@router.post(
    "/{request_id}/hold",
    response_model=SuccessEnvelope[ServiceRequestResponse] | ServiceRequestResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def hold_request(
    request_id: str,
    request: Request,
    payload: HoldRequest,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    item = await requests_service.hold_request(
        db,
        tenant_id=principal.tenant_id,
        request_id=request_id,
        user_id=principal.subject_id,
        reason=payload.reason,
    )
    response = _to_response(item)
    await _audit_status(db, principal, request, response, "service_request.held", {"reason": payload.reason})
    return success_response(request=request, data=response)


@router.post(
    "/{request_id}/resume",
    response_model=SuccessEnvelope[ServiceRequestResponse] | ServiceRequestResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def resume_request(
    request_id: str,
    request: Request,
    payload: ReasonRequest | None = None,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    item = await requests_service.resume_request(
        db,
        tenant_id=principal.tenant_id,
        request_id=request_id,
        user_id=principal.subject_id,
        reason=payload.reason if payload else None,
    )
    response = _to_response(item)
    await _audit_status(db, principal, request, response, "service_request.resumed")
    return success_response(request=request, data=response)
