from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import logging
from typing import Any
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.core.clock import as_utc, utc_now
from coworkhub.core.config import get_settings
from coworkhub.core.errors import ConflictError, NotFoundError, ValidationError
from coworkhub.domain.models import Booking, Space
from coworkhub.persistence.db import commit_or_raise
from coworkhub.persistence.repos import bookings as bookings_repo
from coworkhub.persistence.repos import spaces as spaces_repo


logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = {
    "name",
    "type",
    "description",
    "capacity",
    "amenities",
    "hourly_rate",
    "is_active",
    "location",
    "floor",
    "equipment",
    "features",
}


@dataclass(frozen=True)
class AvailabilityResult:
    available: bool
    conflicts: list[Booking]


def _validate_space_fields(*, name: str | None, capacity: int | None, hourly_rate: Decimal | None) -> None:
    if name is not None and not name.strip():
        raise ValidationError("Space name is required", code="SPACE_NAME_REQUIRED")
    if capacity is not None and capacity <= 0:
        raise ValidationError("Capacity must be greater than 0", code="SPACE_INVALID_CAPACITY")
    if hourly_rate is not None and hourly_rate < 0:
        raise ValidationError("Hourly rate cannot be negative", code="SPACE_INVALID_RATE")


async def create_space(
    session: AsyncSession,
    *,
    tenant_id: str,
    name: str,
    space_type: str,
    capacity: int,
    description: str | None = None,
    amenities: list[str] | None = None,
    hourly_rate: Decimal | None = None,
    location: str | None = None,
    floor: int | None = None,
    equipment: list[str] | None = None,
    features: list[str] | None = None,
) -> Space:
    _validate_space_fields(name=name, capacity=capacity, hourly_rate=hourly_rate)
    name = name.strip()
    if await spaces_repo.get_space_by_name(session, tenant_id, name) is not None:
        raise ConflictError("A space with this name already exists", code="SPACE_NAME_CONFLICT")

    space = Space(
        id=uuid4().hex,
        tenant_id=tenant_id,
        name=name,
        type=space_type,
        description=description,
        capacity=capacity,
        amenities=list(amenities or []),
        hourly_rate=hourly_rate,
        is_active=True,
        location=location,
        floor=floor,
        equipment=list(equipment or []),
        features=list(features or []),
    )
    session.add(space)
    await commit_or_raise(session, context="creating space")
    await session.refresh(space)
    logger.info("space_created tenant_id=%s space_id=%s", tenant_id, space.id)
    return space


async def get_space(session: AsyncSession, *, tenant_id: str, space_id: str) -> Space:
    space = await spaces_repo.get_space(session, tenant_id, space_id)
    if space is None:
        raise NotFoundError("Space not found", code="SPACE_NOT_FOUND")
    return space


async def list_spaces(
    session: AsyncSession,
    *,
    tenant_id: str,
    space_type: str | None = None,
    min_capacity: int | None = None,
    is_active: bool | None = None,
    amenity: str | None = None,
) -> list[Space]:
    spaces = await spaces_repo.list_spaces(
        session,
        tenant_id,
        space_type=space_type,
        min_capacity=min_capacity,
        is_active=is_active,
    )
    if amenity:
        # JSON array containment is not portable across backends; filter in memory.
        spaces = [space for space in spaces if amenity in (space.amenities or [])]
    return spaces


async def update_space(
    session: AsyncSession,
    *,
    tenant_id: str,
    space_id: str,
    changes: dict[str, Any],
) -> Space:
    changes = {key: value for key, value in changes.items() if key in _UPDATABLE_FIELDS}
    if not changes:
        raise ValidationError("No fields to update", code="EMPTY_UPDATE")
    space = await get_space(session, tenant_id=tenant_id, space_id=space_id)
    _validate_space_fields(
        name=changes.get("name"),
        capacity=changes.get("capacity"),
        hourly_rate=changes.get("hourly_rate"),
    )
    if "name" in changes:
        changes["name"] = changes["name"].strip()
        if changes["name"] != space.name:
            existing = await spaces_repo.get_space_by_name(session, tenant_id, changes["name"])
            if existing is not None and existing.id != space.id:
                raise ConflictError("A space with this name already exists", code="SPACE_NAME_CONFLICT")

    for key, value in changes.items():
        if isinstance(value, list):
            setattr(space, key, list(value))
        else:
            setattr(space, key, value)
    await commit_or_raise(session, context="updating space")
    await session.refresh(space)
    return space


async def delete_space(session: AsyncSession, *, tenant_id: str, space_id: str) -> Space:
    space = await get_space(session, tenant_id=tenant_id, space_id=space_id)
    active_count = await spaces_repo.count_future_blocking_bookings(
        session, tenant_id, space_id=space.id, now=utc_now()
    )
    if active_count > 0:
        raise ValidationError(
            "Cannot delete a space with active bookings",
            code="SPACE_HAS_ACTIVE_BOOKINGS",
            details={"active_bookings": active_count},
        )
    # Soft delete keeps booking history intact.
    space.is_active = False
    await commit_or_raise(session, context="deleting space")
    logger.info("space_deactivated tenant_id=%s space_id=%s", tenant_id, space.id)
    return space


def validate_time_window(start_time: datetime, end_time: datetime, *, now: datetime | None = None) -> None:
    if start_time >= end_time:
        raise ValidationError("Start time must be before end time", code="INVALID_TIME_WINDOW")
    if start_time < (now or utc_now()):
        raise ValidationError("Cannot book in the past", code="TIME_IN_PAST")


async def check_availability(
    session: AsyncSession,
    *,
    tenant_id: str,
    space_id: str,
    start_time: datetime,
    end_time: datetime,
    exclude_booking_id: str | None = None,
    enforce_future: bool = True,
) -> AvailabilityResult:
    if start_time >= end_time:
        raise ValidationError("Start time must be before end time", code="INVALID_TIME_WINDOW")
    if enforce_future and start_time < utc_now():
        raise ValidationError("Cannot check availability in the past", code="TIME_IN_PAST")
    space = await get_space(session, tenant_id=tenant_id, space_id=space_id)
    if not space.is_active:
        raise ValidationError("Space is not active", code="SPACE_INACTIVE")
    conflicts = await spaces_repo.list_overlapping_bookings(
        session,
        tenant_id,
        space_id=space.id,
        start_time=start_time,
        end_time=end_time,
        exclude_booking_id=exclude_booking_id,
    )
    return AvailabilityResult(available=not conflicts, conflicts=conflicts)


async def find_available_spaces(
    session: AsyncSession,
    *,
    tenant_id: str,
    start_time: datetime,
    end_time: datetime,
    capacity: int | None = None,
    space_type: str | None = None,
    amenities: list[str] | None = None,
) -> list[Space]:
    validate_time_window(start_time, end_time)
    candidates = await spaces_repo.list_spaces(
        session,
        tenant_id,
        space_type=space_type,
        min_capacity=capacity,
        is_active=True,
    )
    wanted = set(amenities or [])
    available: list[Space] = []
    for space in candidates:
        if wanted and not wanted.issubset(set(space.amenities or [])):
            continue
        conflicts = await spaces_repo.list_overlapping_bookings(
            session, tenant_id, space_id=space.id, start_time=start_time, end_time=end_time
        )
        if not conflicts:
            available.append(space)
    return available


def _hours(booking: Booking) -> float:
    return (as_utc(booking.end_time) - as_utc(booking.start_time)).total_seconds() / 3600


async def space_utilization(
    session: AsyncSession,
    *,
    tenant_id: str,
    space_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict[str, Any]:
    """Utilization over confirmed and completed bookings.

    The rate divides booked hours by the business-day capacity of the window
    (``business_hours_per_day`` per day, 30 days when no window is given).
    """
    settings = get_settings()
    if space_id:
        await get_space(session, tenant_id=tenant_id, space_id=space_id)
    bookings = await bookings_repo.list_bookings(
        session,
        tenant_id,
        space_id=space_id,
        statuses=["CONFIRMED", "COMPLETED"],
        start_from=start,
        end_to=end,
    )
    total_hours = sum(_hours(booking) for booking in bookings)
    if start and end:
        days = max(1, (end - start).days)
    else:
        days = 30
    available_hours = days * settings.business_hours_per_day
    utilization_rate = (total_hours / available_hours) * 100 if available_hours else 0.0

    slot_counts = Counter(as_utc(booking.start_time).hour for booking in bookings)
    peak_slots = [
        {"time_slot": f"{hour}:00-{hour + 1}:00", "bookings": count}
        for hour, count in sorted(slot_counts.items(), key=lambda item: (-item[1], item[0]))[:5]
    ]
    revenue = sum((booking.cost or Decimal("0")) for booking in bookings)
    return {
        "space_id": space_id,
        "total_bookings": len(bookings),
        "total_hours": round(total_hours, 2),
        "average_duration_hours": round(total_hours / len(bookings), 2) if bookings else 0.0,
        "utilization_rate": round(utilization_rate, 2),
        "peak_time_slots": peak_slots,
        "revenue": float(Decimal(revenue).quantize(Decimal("0.01"))),
        "period_days": days,
    }
