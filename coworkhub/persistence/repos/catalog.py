from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.domain.models import Service, ServiceRequest
from coworkhub.persistence.guards import tenant_predicate


async def get_service(session: AsyncSession, tenant_id: str, service_id: str) -> Service | None:
    result = await session.execute(
        select(Service).where(Service.id == service_id, tenant_predicate(Service, tenant_id))
    )
    return result.scalar_one_or_none()


async def list_services(
    session: AsyncSession,
    tenant_id: str,
    *,
    service_ids: list[str] | None = None,
    category: str | None = None,
    is_active: bool | None = None,
) -> list[Service]:
    stmt = select(Service).where(tenant_predicate(Service, tenant_id))
    if service_ids is not None:
        stmt = stmt.where(Service.id.in_(service_ids))
    if category:
        stmt = stmt.where(Service.category == category)
    if is_active is not None:
        stmt = stmt.where(Service.is_active.is_(is_active))
    stmt = stmt.order_by(Service.is_active.desc(), Service.name, Service.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_recent_requests(
    session: AsyncSession, tenant_id: str, *, service_id: str, since: datetime
) -> int:
    count = await session.scalar(
        select(func.count(ServiceRequest.id)).where(
            tenant_predicate(ServiceRequest, tenant_id),
            ServiceRequest.service_id == service_id,
            ServiceRequest.created_at >= since,
        )
    )
    return int(count or 0)


async def request_counts_by_service(session: AsyncSession, tenant_id: str) -> dict[str, int]:
    rows = (
        await session.execute(
            select(ServiceRequest.service_id, func.count(ServiceRequest.id))
            .where(tenant_predicate(ServiceRequest, tenant_id))
            .group_by(ServiceRequest.service_id)
        )
    ).all()
    return {service_id: int(count) for service_id, count in rows}
