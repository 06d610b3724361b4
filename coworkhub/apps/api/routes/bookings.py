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
from coworkhub.domain.enums import BookingStatus
from coworkhub.domain.models import Booking
from coworkhub.services import bookings as bookings_service
from coworkhub.services.auth.api_keys import is_admin


router = APIRouter(prefix="/bookings", tags=["bookings"], responses=DEFAULT_ERROR_RESPONSES)


class BookingCreateRequest(BaseModel):
    model_config = {"extra": "forbid"}

    space_id: str
    title: str = Field(min_length=1, max_length=200)
    start_time: datetime
    end_time: datetime
    description: str | None = None
    attendees: list[str] = Field(default_factory=list)
    equipment: list[str] = Field(default_factory=list)
    catering: bool = False
    notes: str | None = None


class BookingUpdateRequest(BaseModel):
    model_config = {"extra": "forbid"}

    title: str | None = Field(default=None, min_length=1, max_length=200)
    start_time: datetime | None = None
    end_time: datetime | None = None
    description: str | None = None
    attendees: list[str] | None = None
    equipment: list[str] | None = None
    catering: bool | None = None
    notes: str | None = None


class BookingCancelRequest(BaseModel):
    model_config = {"extra": "forbid"}

    reason: str | None = Field(default=None, max_length=500)


class BookingResponse(BaseModel):
    id: str
    space_id: str
    user_id: str
    title: str
    description: str | None
    start_time: str
    end_time: str
    status: str
    cost: float | None
    attendees: list[str]
    equipment: list[str]
    catering: bool
    notes: str | None
    created_at: str | None


def _to_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        id=booking.id,
        space_id=booking.space_id,
        user_id=booking.user_id,
        title=booking.title,
        description=booking.description,
        start_time=as_utc(booking.start_time).isoformat(),
        end_time=as_utc(booking.end_time).isoformat(),
        status=booking.status,
        cost=float(booking.cost) if booking.cost is not None else None,
        attendees=list(booking.attendees or []),
        equipment=list(booking.equipment or []),
        catering=booking.catering,
        notes=booking.notes,
        created_at=as_utc(booking.created_at).isoformat() if booking.created_at else None,
    )


@router.post(
    "",
    status_code=201,
    response_model=SuccessEnvelope[BookingResponse] | BookingResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def create_booking(
    request: Request,
    payload: BookingCreateRequest,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    booking = await bookings_service.create_booking(
        db,
        tenant_id=principal.tenant_id,
        user_id=principal.subject_id,
        space_id=payload.space_id,
        title=payload.title,
        start_time=as_utc(payload.start_time),
        end_time=as_utc(payload.end_time),
        description=payload.description,
        attendees=payload.attendees,
        equipment=payload.equipment,
        catering=payload.catering,
        notes=payload.notes,
    )
    response = _to_response(booking)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="booking.created",
        action="CREATE",
        resource_type="Booking",
        resource_id=response.id,
        metadata={"space_id": response.space_id, "cost": response.cost},
    )
    return success_response(request=request, data=response)


@router.get("", response_model=SuccessEnvelope[list[BookingResponse]] | list[BookingResponse])
async def list_bookings(
    request: Request,
    user_id: str | None = None,
    space_id: str | None = None,
    status: list[BookingStatus] | None = Query(default=None),
    start_from: datetime | None = None,
    end_to: datetime | None = None,
    upcoming: bool = False,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    bookings = await bookings_service.list_bookings(
        db,
        tenant_id=principal.tenant_id,
        user_id=user_id,
        space_id=space_id,
        statuses=list(status) if status else None,
        start_from=as_utc(start_from),
        end_to=as_utc(end_to),
        upcoming=upcoming,
        offset=offset,
        limit=limit,
    )
    return success_response(request=request, data=[_to_response(booking) for booking in bookings])


@router.get("/upcoming", response_model=SuccessEnvelope[list[BookingResponse]] | list[BookingResponse])
async def upcoming_bookings(
    request: Request,
    limit: int = Query(default=10, ge=1, le=100),
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    bookings = await bookings_service.upcoming_bookings(
        db, tenant_id=principal.tenant_id, user_id=principal.subject_id, limit=limit
    )
    return success_response(request=request, data=[_to_response(booking) for booking in bookings])


@router.get("/stats", response_model=SuccessEnvelope[dict[str, Any]] | dict[str, Any])
async def booking_stats(
    request: Request,
    start: datetime | None = None,
    end: datetime | None = None,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    stats = await bookings_service.booking_statistics(
        db, tenant_id=principal.tenant_id, start=as_utc(start), end=as_utc(end)
    )
    return success_response(request=request, data=stats)


@router.get("/{booking_id}", response_model=SuccessEnvelope[BookingResponse] | BookingResponse)
async def get_booking(
    booking_id: str,
    request: Request,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    booking = await bookings_service.get_booking(db, tenant_id=principal.tenant_id, booking_id=booking_id)
    return success_response(request=request, data=_to_response(booking))


@router.patch(
    "/{booking_id}",
    response_model=SuccessEnvelope[BookingResponse] | BookingResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def update_booking(
    booking_id: str,
    request: Request,
    payload: BookingUpdateRequest,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    for key in ("start_time", "end_time"):
        if changes.get(key) is not None:
            changes[key] = as_utc(changes[key])
    booking = await bookings_service.update_booking(
        db,
        tenant_id=principal.tenant_id,
        booking_id=booking_id,
        actor_id=principal.subject_id,
        actor_is_admin=is_admin(principal.role),
        changes=changes,
    )
    response = _to_response(booking)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="booking.updated",
        action="UPDATE",
        resource_type="Booking",
        resource_id=response.id,
        metadata={"fields": sorted(changes)},
    )
    return success_response(request=request, data=response)


@router.post(
    "/{booking_id}/cancel",
    response_model=SuccessEnvelope[BookingResponse] | BookingResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def cancel_booking(
    booking_id: str,
    request: Request,
    payload: BookingCancelRequest | None = None,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    booking = await bookings_service.cancel_booking(
        db,
        tenant_id=principal.tenant_id,
        booking_id=booking_id,
        actor_id=principal.subject_id,
        actor_is_admin=is_admin(principal.role),
        reason=payload.reason if payload else None,
    )
    response = _to_response(booking)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="booking.cancelled",
        action="UPDATE",
        resource_type="Booking",
        resource_id=response.id,
        metadata={"status": response.status},
    )
    return success_response(request=request, data=response)
