from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import logging
from typing import Any
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.core.clock import as_utc, utc_now
from coworkhub.core.errors import NotFoundError, PermissionDeniedError, ValidationError
from coworkhub.domain.enums import PRIORITY_RANK, TERMINAL_REQUEST_STATUSES
from coworkhub.domain.models import Service, ServiceRequest, ServiceRequestStatusHistory
from coworkhub.persistence.db import commit_or_raise
from coworkhub.persistence.repos import catalog as catalog_repo
from coworkhub.persistence.repos import service_requests as requests_repo
from coworkhub.services.pricing import order_total


logger = logging.getLogger(__name__)

_MODIFIABLE_STATUSES = ("PENDING", "APPROVED")
_UPDATABLE_FIELDS = {
    "quantity",
    "priority",
    "requested_delivery_time",
    "scheduled_delivery_time",
    "notes",
    "customizations",
    "attachments",
    "progress_notes",
}


@dataclass
class RequestFilters:
    statuses: list[str] | None = None
    priority: str | None = None
    service_id: str | None = None
    user_id: str | None = None
    assigned_to: str | None = None
    approved_by: str | None = None
    requires_approval: bool | None = None
    start: datetime | None = None
    end: datetime | None = None
    search: str | None = None


@dataclass(frozen=True)
class RequestPage:
    requests: list[ServiceRequest]
    total: int
    has_more: bool


def _validate_quantity(service: Service, quantity: int) -> None:
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1", code="INVALID_QUANTITY")
    if service.max_quantity and quantity > service.max_quantity:
        raise ValidationError(
            f"Maximum quantity allowed: {service.max_quantity}", code="QUANTITY_ABOVE_MAXIMUM"
        )
    if quantity < (service.minimum_order or 1):
        raise ValidationError(
            f"Minimum order quantity: {service.minimum_order}", code="QUANTITY_BELOW_MINIMUM"
        )


def _append_history(
    session: AsyncSession,
    request: ServiceRequest,
    *,
    status: str,
    changed_by: str,
    reason: str | None,
    notes: str | None = None,
) -> None:
    session.add(
        ServiceRequestStatusHistory(
            tenant_id=request.tenant_id,
            service_request_id=request.id,
            status=status,
            changed_by=changed_by,
            reason=reason,
            notes=notes,
            created_at=utc_now(),
        )
    )


async def create_request(
    session: AsyncSession,
    *,
    tenant_id: str,
    user_id: str,
    service_id: str,
    quantity: int = 1,
    priority: str = "NORMAL",
    requested_delivery_time: datetime | None = None,
    notes: str | None = None,
    customizations: dict[str, Any] | None = None,
    attachments: list[str] | None = None,
) -> ServiceRequest:
    service = await catalog_repo.get_service(session, tenant_id, service_id)
    if service is None:
        raise NotFoundError("Service not found", code="SERVICE_NOT_FOUND")
    if not service.is_active:
        raise ValidationError("Service is not available", code="SERVICE_INACTIVE")
    _validate_quantity(service, quantity)

    status = "PENDING" if service.requires_approval else "APPROVED"
    now = utc_now()
    request = ServiceRequest(
        id=uuid4().hex,
        tenant_id=tenant_id,
        service_id=service.id,
        user_id=user_id,
        quantity=quantity,
        total_amount=order_total(service, quantity),
        priority=priority,
        status=status,
        requested_delivery_time=as_utc(requested_delivery_time),
        notes=notes,
        customizations=dict(customizations or {}),
        attachments=list(attachments or []),
        requires_approval=bool(service.requires_approval),
        metadata_json={},
        created_at=now,
        updated_at=now,
    )
    session.add(request)
    _append_history(session, request, status=status, changed_by=user_id, reason="Request created")
    await commit_or_raise(session, context="creating service request")
    logger.info(
        "service_request_created tenant_id=%s request_id=%s status=%s", tenant_id, request.id, status
    )
    return request


async def get_request(session: AsyncSession, *, tenant_id: str, request_id: str) -> ServiceRequest:
    request = await requests_repo.get_request(session, tenant_id, request_id)
    if request is None:
        raise NotFoundError("Service request not found", code="SERVICE_REQUEST_NOT_FOUND")
    return request


async def get_history(
    session: AsyncSession, *, tenant_id: str, request_id: str
) -> list[ServiceRequestStatusHistory]:
    return await requests_repo.list_history(session, tenant_id, request_id)


async def update_request(
    session: AsyncSession,
    *,
    tenant_id: str,
    request_id: str,
    user_id: str,
    changes: dict[str, Any],
) -> ServiceRequest:
    changes = {key: value for key, value in changes.items() if key in _UPDATABLE_FIELDS}
    if not changes:
        raise ValidationError("No fields to update", code="EMPTY_UPDATE")
    request = await requests_repo.get_request(session, tenant_id, request_id)
    # Ownership and status failures are indistinguishable from a missing row.
    if request is None or request.user_id != user_id or request.status not in _MODIFIABLE_STATUSES:
        raise NotFoundError(
            "Service request not found or cannot be modified", code="SERVICE_REQUEST_NOT_MODIFIABLE"
        )

    if "quantity" in changes and changes["quantity"] is not None and changes["quantity"] != request.quantity:
        service = await catalog_repo.get_service(session, tenant_id, request.service_id)
        if service is None:
            raise NotFoundError("Service not found", code="SERVICE_NOT_FOUND")
        _validate_quantity(service, changes["quantity"])
        request.quantity = changes["quantity"]
        request.total_amount = order_total(service, changes["quantity"])

    for key in ("priority", "notes", "progress_notes"):
        if key in changes and changes[key] is not None:
            setattr(request, key, changes[key])
    for key in ("requested_delivery_time", "scheduled_delivery_time"):
        if key in changes:
            setattr(request, key, as_utc(changes[key]))
    if "customizations" in changes:
        request.customizations = dict(changes["customizations"] or {})
    if "attachments" in changes:
        request.attachments = list(changes["attachments"] or [])
    request.updated_at = utc_now()
    await commit_or_raise(session, context="updating service request")
    return request


async def _transition(
    session: AsyncSession,
    request: ServiceRequest,
    *,
    status: str,
    changed_by: str,
    reason: str | None,
    notes: str | None = None,
    context: str,
) -> ServiceRequest:
    previous = request.status
    request.status = status
    request.updated_at = utc_now()
    _append_history(session, request, status=status, changed_by=changed_by, reason=reason, notes=notes)
    await commit_or_raise(session, context=context)
    logger.info(
        "service_request_transition tenant_id=%s request_id=%s from=%s to=%s",
        request.tenant_id,
        request.id,
        previous,
        status,
    )
    return request


def _require_status(request: ServiceRequest, allowed: tuple[str, ...], action: str) -> None:
    if request.status not in allowed:
        raise ValidationError(
            f"Cannot {action} a request in status {request.status}",
            code="INVALID_STATUS_TRANSITION",
            details={"status": request.status, "allowed": list(allowed)},
        )


async def cancel_request(
    session: AsyncSession,
    *,
    tenant_id: str,
    request_id: str,
    actor_id: str,
    actor_is_admin: bool,
    reason: str | None = None,
) -> ServiceRequest:
    request = await get_request(session, tenant_id=tenant_id, request_id=request_id)
    if request.user_id != actor_id and not actor_is_admin:
        raise PermissionDeniedError("You can only cancel your own requests")
    if request.status in TERMINAL_REQUEST_STATUSES:
        raise ValidationError(
            f"Cannot cancel a request in status {request.status}", code="INVALID_STATUS_TRANSITION"
        )
    return await _transition(
        session,
        request,
        status="CANCELLED",
        changed_by=actor_id,
        reason=reason or "Cancelled by user",
        context="cancelling service request",
    )


async def process_approval(
    session: AsyncSession,
    *,
    tenant_id: str,
    request_id: str,
    approver_id: str,
    approve: bool,
    reason: str | None = None,
    notes: str | None = None,
    scheduled_delivery_time: datetime | None = None,
) -> ServiceRequest:
    request = await requests_repo.get_request(session, tenant_id, request_id)
    if request is None or request.status != "PENDING" or not request.requires_approval:
        raise NotFoundError(
            "Service request not found or not pending approval", code="SERVICE_REQUEST_NOT_PENDING"
        )
    status = "APPROVED" if approve else "REJECTED"
    request.approved_by = approver_id
    request.approved_at = utc_now()
    if not approve and reason:
        request.rejection_reason = reason
    if scheduled_delivery_time is not None:
        request.scheduled_delivery_time = as_utc(scheduled_delivery_time)
    return await _transition(
        session,
        request,
        status=status,
        changed_by=approver_id,
        reason=reason,
        notes=notes,
        context="processing approval",
    )


async def assign_request(
    session: AsyncSession,
    *,
    tenant_id: str,
    request_id: str,
    assigner_id: str,
    assigned_to: str,
    notes: str | None = None,
) -> ServiceRequest:
    request = await get_request(session, tenant_id=tenant_id, request_id=request_id)
    _require_status(request, ("APPROVED", "IN_PROGRESS"), "assign")
    request.assigned_to = assigned_to
    if notes is not None:
        request.progress_notes = notes
    return await _transition(
        session,
        request,
        status="IN_PROGRESS",
        changed_by=assigner_id,
        reason="Request assigned",
        notes=notes,
        context="assigning service request",
    )


async def update_progress(
    session: AsyncSession,
    *,
    tenant_id: str,
    request_id: str,
    user_id: str,
    progress_notes: str,
    attachments: list[str] | None = None,
) -> ServiceRequest:
    request = await requests_repo.get_request(session, tenant_id, request_id)
    if request is None or request.assigned_to != user_id or request.status != "IN_PROGRESS":
        raise NotFoundError(
            "Service request not found or not assigned to you", code="SERVICE_REQUEST_NOT_ASSIGNED"
        )
    request.progress_notes = progress_notes
    if attachments is not None:
        request.attachments = list(attachments)
    request.updated_at = utc_now()
    await commit_or_raise(session, context="updating progress")
    return request


async def complete_request(
    session: AsyncSession,
    *,
    tenant_id: str,
    request_id: str,
    user_id: str,
    actual_delivery_time: datetime | None = None,
    notes: str | None = None,
    attachments: list[str] | None = None,
) -> ServiceRequest:
    request = await get_request(session, tenant_id=tenant_id, request_id=request_id)
    _require_status(request, ("IN_PROGRESS",), "complete")
    now = utc_now()
    request.completed_at = now
    request.actual_delivery_time = as_utc(actual_delivery_time) or now
    if notes is not None:
        request.progress_notes = notes
    if attachments is not None:
        request.attachments = list(attachments)
    return await _transition(
        session,
        request,
        status="COMPLETED",
        changed_by=user_id,
        reason="Service request completed",
        context="completing service request",
    )


async def hold_request(
    session: AsyncSession, *, tenant_id: str, request_id: str, user_id: str, reason: str
) -> ServiceRequest:
    if not reason or not reason.strip():
        raise ValidationError("A reason is required to put a request on hold", code="HOLD_REASON_REQUIRED")
    request = await get_request(session, tenant_id=tenant_id, request_id=request_id)
    _require_status(request, ("IN_PROGRESS",), "hold")
    return await _transition(
        session, request, status="ON_HOLD", changed_by=user_id, reason=reason, context="holding service request"
    )


async def resume_request(
    session: AsyncSession, *, tenant_id: str, request_id: str, user_id: str, reason: str | None = None
) -> ServiceRequest:
    request = await get_request(session, tenant_id=tenant_id, request_id=request_id)
    _require_status(request, ("ON_HOLD",), "resume")
    return await _transition(
        session,
        request,
        status="IN_PROGRESS",
        changed_by=user_id,
        reason=reason or "Resumed from hold",
        context="resuming service request",
    )


async def list_requests(
    session: AsyncSession,
    *,
    tenant_id: str,
    filters: RequestFilters | None = None,
    skip: int = 0,
    take: int = 50,
) -> RequestPage:
    filters = filters or RequestFilters()
    bounded = filters.start is not None and filters.end is not None
    rows = await requests_repo.list_requests(
        session,
        tenant_id,
        statuses=filters.statuses,
        priority=filters.priority,
        service_id=filters.service_id,
        user_id=filters.user_id,
        assigned_to=filters.assigned_to,
        requires_approval=filters.requires_approval,
        created_from=as_utc(filters.start) if bounded else None,
        created_to=as_utc(filters.end) if bounded else None,
    )
    if filters.approved_by:
        rows = [row for row in rows if row.approved_by == filters.approved_by]
    if filters.search:
        needle = filters.search.lower()
        services = {service.id: service for service in await catalog_repo.list_services(session, tenant_id)}
        rows = [
            row
            for row in rows
            if needle in (row.notes or "").lower()
            or (row.service_id in services and needle in services[row.service_id].name.lower())
        ]
    # Repo rows arrive newest first; a stable sort by rank keeps that within each priority.
    rows.sort(key=lambda row: PRIORITY_RANK.get(row.priority, 0), reverse=True)
    page = rows[skip : skip + take]
    return RequestPage(requests=page, total=len(rows), has_more=skip + len(page) < len(rows))


async def my_requests(
    session: AsyncSession, *, tenant_id: str, user_id: str, statuses: list[str] | None = None
) -> list[ServiceRequest]:
    page = await list_requests(
        session, tenant_id=tenant_id, filters=RequestFilters(user_id=user_id, statuses=statuses)
    )
    return page.requests


async def pending_approvals(
    session: AsyncSession, *, tenant_id: str, skip: int = 0, take: int = 50
) -> RequestPage:
    return await list_requests(
        session, tenant_id=tenant_id, filters=RequestFilters(statuses=["PENDING"]), skip=skip, take=take
    )


async def assigned_requests(
    session: AsyncSession, *, tenant_id: str, user_id: str, skip: int = 0, take: int = 50
) -> RequestPage:
    return await list_requests(
        session,
        tenant_id=tenant_id,
        filters=RequestFilters(assigned_to=user_id, statuses=["IN_PROGRESS", "ON_HOLD"]),
        skip=skip,
        take=take,
    )


async def request_stats(
    session: AsyncSession,
    *,
    tenant_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    bounded = start is not None and end is not None
    rows = await requests_repo.list_requests(
        session,
        tenant_id,
        created_from=as_utc(start) if bounded else None,
        created_to=as_utc(end) if bounded else None,
    )
    total = len(rows)
    now = now or utc_now()

    def percentage(count: int) -> float:
        return round(count / total * 100, 2) if total else 0.0

    by_status = Counter(row.status for row in rows)
    by_priority = Counter(row.priority for row in rows)
    completed = [row for row in rows if row.completed_at is not None]
    processing_hours = [
        (as_utc(row.completed_at) - as_utc(row.created_at)).total_seconds() / 3600 for row in completed
    ]
    overdue = [
        row
        for row in rows
        if row.completed_at is None and now - as_utc(row.created_at) > timedelta(hours=24)
    ]
    total_amount = sum((Decimal(row.total_amount) for row in rows), Decimal("0"))
    return {
        "total": total,
        "by_status": [
            {"status": status, "count": count, "percentage": percentage(count)}
            for status, count in sorted(by_status.items())
        ],
        "by_priority": [
            {"priority": priority, "count": count, "percentage": percentage(count)}
            for priority, count in sorted(by_priority.items(), key=lambda item: -PRIORITY_RANK.get(item[0], 0))
        ],
        "average_processing_time_hours": round(sum(processing_hours) / len(processing_hours), 2)
        if processing_hours
        else 0.0,
        "completion_rate": percentage(len(completed)),
        "pending_approvals": by_status.get("PENDING", 0),
        "overdue_requests": len(overdue),
        "total_amount": float(total_amount.quantize(Decimal("0.01"))),
    }
