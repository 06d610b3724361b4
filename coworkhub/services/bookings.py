from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
import logging
from typing import Any
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.core.clock import as_utc, utc_now
from coworkhub.core.config import get_settings
from coworkhub.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from coworkhub.domain.models import Booking, Space
from coworkhub.persistence.db import commit_or_raise
from coworkhub.persistence.repos import bookings as bookings_repo
from coworkhub.persistence.repos import spaces as spaces_repo
from coworkhub.services import spaces as spaces_service


logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")
_UPDATABLE_FIELDS = {"title", "description", "start_time", "end_time", "attendees", "equipment", "catering", "notes"}


def validate_duration(start_time: datetime, end_time: datetime) -> None:
    settings = get_settings()
    duration = end_time - start_time
    if duration < timedelta(minutes=settings.booking_min_minutes):
        raise ValidationError(
            f"Booking must be at least {settings.booking_min_minutes} minutes",
            code="BOOKING_TOO_SHORT",
        )
    if duration > timedelta(hours=settings.booking_max_hours):
        raise ValidationError(
            f"Booking cannot exceed {settings.booking_max_hours} hours",
            code="BOOKING_TOO_LONG",
        )


def compute_cost(space: Space, start_time: datetime, end_time: datetime) -> Decimal | None:
    # Free spaces carry no cost rather than a zero cost.
    if space.hourly_rate is None:
        return None
    hours = Decimal(str((end_time - start_time).total_seconds())) / Decimal("3600")
    return (Decimal(space.hourly_rate) * hours).quantize(_CENT, rounding=ROUND_HALF_UP)


async def create_booking(
    session: AsyncSession,
    *,
    tenant_id: str,
    user_id: str,
    space_id: str,
    title: str,
    start_time: datetime,
    end_time: datetime,
    description: str | None = None,
    attendees: list[str] | None = None,
    equipment: list[str] | None = None,
    catering: bool = False,
    notes: str | None = None,
) -> Booking:
    if not title or not title.strip():
        raise ValidationError("Booking title is required", code="BOOKING_TITLE_REQUIRED")
    start_time = as_utc(start_time)
    end_time = as_utc(end_time)
    spaces_service.validate_time_window(start_time, end_time)
    validate_duration(start_time, end_time)

    availability = await spaces_service.check_availability(
        session,
        tenant_id=tenant_id,
        space_id=space_id,
        start_time=start_time,
        end_time=end_time,
    )
    if not availability.available:
        raise ConflictError(
            "Space is not available for the requested time",
            code="BOOKING_CONFLICT",
            details={"conflicts": len(availability.conflicts)},
        )
    space = await spaces_repo.get_space(session, tenant_id, space_id)

    now = utc_now()
    booking = Booking(
        id=uuid4().hex,
        tenant_id=tenant_id,
        space_id=space_id,
        user_id=user_id,
        title=title.strip(),
        description=description,
        start_time=start_time,
        end_time=end_time,
        status="CONFIRMED",
        cost=compute_cost(space, start_time, end_time),
        attendees=list(attendees or []),
        equipment=list(equipment or []),
        catering=catering,
        notes=notes,
        metadata_json={},
        created_at=now,
        updated_at=now,
    )
    session.add(booking)
    await commit_or_raise(session, context="creating booking")
    logger.info("booking_created tenant_id=%s booking_id=%s space_id=%s", tenant_id, booking.id, space_id)
    return booking


async def get_booking(session: AsyncSession, *, tenant_id: str, booking_id: str) -> Booking:
    booking = await bookings_repo.get_booking(session, tenant_id, booking_id)
    if booking is None:
        raise NotFoundError("Booking not found", code="BOOKING_NOT_FOUND")
    return booking


async def list_bookings(
    session: AsyncSession,
    *,
    tenant_id: str,
    user_id: str | None = None,
    space_id: str | None = None,
    statuses: list[str] | None = None,
    start_from: datetime | None = None,
    end_to: datetime | None = None,
    upcoming: bool = False,
    offset: int = 0,
    limit: int = 50,
) -> list[Booking]:
    if upcoming:
        now = utc_now()
        start_from = max(as_utc(start_from), now) if start_from else now
    return await bookings_repo.list_bookings(
        session,
        tenant_id,
        user_id=user_id,
        space_id=space_id,
        statuses=statuses,
        start_from=as_utc(start_from),
        end_to=as_utc(end_to),
        offset=offset,
        limit=limit,
    )


async def upcoming_bookings(
    session: AsyncSession, *, tenant_id: str, user_id: str, limit: int = 10
) -> list[Booking]:
    return await bookings_repo.list_bookings(
        session,
        tenant_id,
        user_id=user_id,
        statuses=["PENDING", "CONFIRMED", "CHECKED_IN"],
        start_from=utc_now(),
        limit=limit,
    )


def _ensure_owner(booking: Booking, *, actor_id: str, actor_is_admin: bool, verb: str) -> None:
    if booking.user_id != actor_id and not actor_is_admin:
        raise PermissionDeniedError(f"You can only {verb} your own bookings")


async def update_booking(
    session: AsyncSession,
    *,
    tenant_id: str,
    booking_id: str,
    actor_id: str,
    actor_is_admin: bool,
    changes: dict[str, Any],
) -> Booking:
    changes = {key: value for key, value in changes.items() if key in _UPDATABLE_FIELDS}
    if not changes:
        raise ValidationError("No fields to update", code="EMPTY_UPDATE")
    booking = await get_booking(session, tenant_id=tenant_id, booking_id=booking_id)
    _ensure_owner(booking, actor_id=actor_id, actor_is_admin=actor_is_admin, verb="update")
    if booking.status in ("CANCELLED", "COMPLETED"):
        raise ValidationError(f"Cannot update a {booking.status.lower()} booking", code="BOOKING_NOT_MODIFIABLE")
    if "title" in changes and not (changes["title"] or "").strip():
        raise ValidationError("Booking title is required", code="BOOKING_TITLE_REQUIRED")

    if "start_time" in changes or "end_time" in changes:
        start_time = as_utc(changes.get("start_time") or booking.start_time)
        end_time = as_utc(changes.get("end_time") or booking.end_time)
        spaces_service.validate_time_window(start_time, end_time)
        validate_duration(start_time, end_time)
        availability = await spaces_service.check_availability(
            session,
            tenant_id=tenant_id,
            space_id=booking.space_id,
            start_time=start_time,
            end_time=end_time,
            exclude_booking_id=booking.id,
        )
        if not availability.available:
            raise ConflictError(
                "Space is not available for the requested time",
                code="BOOKING_CONFLICT",
                details={"conflicts": len(availability.conflicts)},
            )
        space = await spaces_repo.get_space(session, tenant_id, booking.space_id)
        booking.start_time = start_time
        booking.end_time = end_time
        booking.cost = compute_cost(space, start_time, end_time)

    for key in ("title", "description", "attendees", "equipment", "catering", "notes"):
        if key in changes:
            value = changes[key]
            setattr(booking, key, list(value) if isinstance(value, list) else value)
    booking.updated_at = utc_now()
    await commit_or_raise(session, context="updating booking")
    return booking


async def cancel_booking(
    session: AsyncSession,
    *,
    tenant_id: str,
    booking_id: str,
    actor_id: str,
    actor_is_admin: bool,
    reason: str | None = None,
) -> Booking:
    booking = await get_booking(session, tenant_id=tenant_id, booking_id=booking_id)
    _ensure_owner(booking, actor_id=actor_id, actor_is_admin=actor_is_admin, verb="cancel")
    if booking.status == "CANCELLED":
        raise ValidationError("Booking is already cancelled", code="BOOKING_ALREADY_CANCELLED")
    if booking.status == "COMPLETED":
        raise ValidationError("Cannot cancel a completed booking", code="BOOKING_COMPLETED")
    booking.status = "CANCELLED"
    if reason:
        booking.metadata_json = {**(booking.metadata_json or {}), "cancellation_reason": reason}
    booking.updated_at = utc_now()
    await commit_or_raise(session, context="cancelling booking")
    logger.info("booking_cancelled tenant_id=%s booking_id=%s", tenant_id, booking.id)
    return booking


async def booking_statistics(
    session: AsyncSession,
    *,
    tenant_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict[str, Any]:
    bookings = await bookings_repo.list_bookings(
        session, tenant_id, start_from=as_utc(start), end_to=as_utc(end)
    )
    status_counts = Counter(booking.status for booking in bookings)
    billable = [booking for booking in bookings if booking.status in ("CONFIRMED", "COMPLETED")]
    revenue = sum((Decimal(booking.cost) for booking in billable if booking.cost is not None), Decimal("0"))
    durations = [
        (as_utc(booking.end_time) - as_utc(booking.start_time)).total_seconds() / 3600 for booking in bookings
    ]

    space_counts = Counter(booking.space_id for booking in bookings)
    top_ids = [space_id for space_id, _ in space_counts.most_common(5)]
    names: dict[str, str] = {}
    for space_id in top_ids:
        space = await spaces_repo.get_space(session, tenant_id, space_id)
        names[space_id] = space.name if space else space_id

    return {
        "total_bookings": len(bookings),
        "confirmed_bookings": status_counts.get("CONFIRMED", 0),
        "cancelled_bookings": status_counts.get("CANCELLED", 0),
        "total_revenue": float(revenue.quantize(_CENT)),
        "average_duration_hours": round(sum(durations) / len(durations), 2) if durations else 0.0,
        "popular_spaces": [
            {"space_id": space_id, "space_name": names[space_id], "bookings": space_counts[space_id]}
            for space_id in top_ids
        ],
        "bookings_by_status": {status: count for status, count in status_counts.items() if count > 0},
    }
