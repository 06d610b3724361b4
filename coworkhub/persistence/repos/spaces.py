from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.domain.models import Booking, Space
from coworkhub.persistence.guards import tenant_predicate


# Booking states that hold a space.
BLOCKING_STATUSES = ("PENDING", "CONFIRMED")


async def get_space(session: AsyncSession, tenant_id: str, space_id: str) -> Space | None:
    result = await session.execute(
        select(Space).where(Space.id == space_id, tenant_predicate(Space, tenant_id))
    )
    return result.scalar_one_or_none()


async def get_space_by_name(session: AsyncSession, tenant_id: str, name: str) -> Space | None:
    result = await session.execute(
        select(Space).where(Space.name == name, tenant_predicate(Space, tenant_id))
    )
    return result.scalar_one_or_none()


async def list_spaces(
    session: AsyncSession,
    tenant_id: str,
    *,
    space_type: str | None = None,
    min_capacity: int | None = None,
    is_active: bool | None = None,
) -> list[Space]:
    stmt = select(Space).where(tenant_predicate(Space, tenant_id))
    if space_type:
        stmt = stmt.where(Space.type == space_type)
    if min_capacity is not None:
        stmt = stmt.where(Space.capacity >= min_capacity)
    if is_active is not None:
        stmt = stmt.where(Space.is_active.is_(is_active))
    stmt = stmt.order_by(Space.name, Space.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_overlapping_bookings(
    session: AsyncSession,
    tenant_id: str,
    *,
    space_id: str,
    start_time: datetime,
    end_time: datetime,
    exclude_booking_id: str | None = None,
) -> list[Booking]:
    # Half-open interval overlap: [start, end) intersects [b.start, b.end).
    stmt = select(Booking).where(
        tenant_predicate(Booking, tenant_id),
        Booking.space_id == space_id,
        Booking.status.in_(BLOCKING_STATUSES),
        Booking.start_time < end_time,
        Booking.end_time > start_time,
    )
    if exclude_booking_id:
        stmt = stmt.where(Booking.id != exclude_booking_id)
    stmt = stmt.order_by(Booking.start_time)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_future_blocking_bookings(
    session: AsyncSession, tenant_id: str, *, space_id: str, now: datetime
) -> int:
    count = await session.scalar(
        select(func.count(Booking.id)).where(
            tenant_predicate(Booking, tenant_id),
            Booking.space_id == space_id,
            Booking.status.in_(BLOCKING_STATUSES),
            Booking.end_time > now,
        )
    )
    return int(count or 0)
