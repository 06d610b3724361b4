from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.domain.models import Booking
from coworkhub.persistence.guards import tenant_predicate


async def get_booking(session: AsyncSession, tenant_id: str, booking_id: str) -> Booking | None:
    result = await session.execute(
        select(Booking).where(Booking.id == booking_id, tenant_predicate(Booking, tenant_id))
    )
    return result.scalar_one_or_none()


async def list_bookings(
    session: AsyncSession,
    tenant_id: str,
    *,
    user_id: str | None = None,
    space_id: str | None = None,
    statuses: list[str] | None = None,
    start_from: datetime | None = None,
    end_to: datetime | None = None,
    offset: int = 0,
    limit: int | None = None,
) -> list[Booking]:
    stmt = select(Booking).where(tenant_predicate(Booking, tenant_id))
    if user_id:
        stmt = stmt.where(Booking.user_id == user_id)
    if space_id:
        stmt = stmt.where(Booking.space_id == space_id)
    if statuses:
        stmt = stmt.where(Booking.status.in_(statuses))
    if start_from:
        stmt = stmt.where(Booking.start_time >= start_from)
    if end_to:
        stmt = stmt.where(Booking.end_time <= end_to)
    stmt = stmt.order_by(Booking.start_time, Booking.id).offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())
