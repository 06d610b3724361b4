from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.domain.models import ServiceRequest, ServiceRequestStatusHistory
from coworkhub.persistence.guards import tenant_predicate


async def get_request(session: AsyncSession, tenant_id: str, request_id: str) -> ServiceRequest | None:
    result = await session.execute(
        select(ServiceRequest).where(
            ServiceRequest.id == request_id, tenant_predicate(ServiceRequest, tenant_id)
        )
    )
    return result.scalar_one_or_none()


async def list_requests(
    session: AsyncSession,
    tenant_id: str,
    *,
    statuses: list[str] | None = None,
    priority: str | None = None,
    service_id: str | None = None,
    user_id: str | None = None,
    assigned_to: str | None = None,
    requires_approval: bool | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
) -> list[ServiceRequest]:
    stmt = select(ServiceRequest).where(tenant_predicate(ServiceRequest, tenant_id))
    if statuses:
        stmt = stmt.where(ServiceRequest.status.in_(statuses))
    if priority:
        stmt = stmt.where(ServiceRequest.priority == priority)
    if service_id:
        stmt = stmt.where(ServiceRequest.service_id == service_id)
    if user_id:
        stmt = stmt.where(ServiceRequest.user_id == user_id)
    if assigned_to:
        stmt = stmt.where(ServiceRequest.assigned_to == assigned_to)
    if requires_approval is not None:
        stmt = stmt.where(ServiceRequest.requires_approval.is_(requires_approval))
    if created_from:
        stmt = stmt.where(ServiceRequest.created_at >= created_from)
    if created_to:
        stmt = stmt.where(ServiceRequest.created_at <= created_to)
    stmt = stmt.order_by(ServiceRequest.created_at.desc(), ServiceRequest.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_history(
    session: AsyncSession, tenant_id: str, request_id: str
) -> list[ServiceRequestStatusHistory]:
    result = await session.execute(
        select(ServiceRequestStatusHistory)
        .where(
            ServiceRequestStatusHistory.service_request_id == request_id,
            tenant_predicate(ServiceRequestStatusHistory, tenant_id),
        )
        .order_by(ServiceRequestStatusHistory.created_at, ServiceRequestStatusHistory.id)
    )
    return list(result.scalars().all())
