from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.apps.api.auditing import audit_action
from coworkhub.apps.api.deps import Principal, get_db, reject_tenant_id_in_body, require_role
from coworkhub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from coworkhub.apps.api.response import SuccessEnvelope, success_response
from coworkhub.core.clock import as_utc
from coworkhub.domain.enums import SpaceType
from coworkhub.domain.models import Booking, Space
from coworkhub.services import spaces as spaces_service


router = APIRouter(prefix="/spaces", tags=["spaces"], responses=DEFAULT_ERROR_RESPONSES)


class SpaceCreateRequest(BaseModel):
    model_config = {"extra": "forbid"}

    name: str = Field(min_length=1, max_length=200)
    type: SpaceType
    capacity: int = Field(gt=0)
    description: str | None = None
    amenities: list[str] = Field(default_factory=list)
    hourly_rate: Decimal | None = Field(default=None, ge=0)
    location: str | None = None
    floor: int | None = None
    equipment: list[str] = Field(default_factory=list)
    features: list[str] = Field(default_factory=list)


class SpaceUpdateRequest(BaseModel):
    model_config = {"extra": "forbid"}

    name: str | None = Field(default=None, min_length=1, max_length=200)
    type: SpaceType | None = None
    capacity: int | None = Field(default=None, gt=0)
    description: str | None = None
    amenities: list[str] | None = None
    hourly_rate: Decimal | None = Field(default=None, ge=0)
    is_active: bool | None = None
    location: str | None = None
    floor: int | None = None
    equipment: list[str] | None = None
    features: list[str] | None = None


class SpaceResponse(BaseModel):
    id: str
    name: str
    type: str
    description: str | None
    capacity: int
    amenities: list[str]
    hourly_rate: float | None
    is_active: bool
    location: str | None
    floor: int | None
    equipment: list[str]
    features: list[str]
    created_at: str | None


class ConflictResponse(BaseModel):
    booking_id: str
    title: str
    start_time: str
    end_time: str
    status: str


class AvailabilityResponse(BaseModel):
    space_id: str
    available: bool
    conflicts: list[ConflictResponse]


def _to_response(space: Space) -> SpaceResponse:
    return SpaceResponse(
        id=space.id,
        name=space.name,
        type=space.type,
        description=space.description,
        capacity=space.capacity,
        amenities=list(space.amenities or []),
        hourly_rate=float(space.hourly_rate) if space.hourly_rate is not None else None,
        is_active=space.is_active,
        location=space.location,
        floor=space.floor,
        equipment=list(space.equipment or []),
        features=list(space.features or []),
        created_at=as_utc(space.created_at).isoformat() if space.created_at else None,
    )


def _conflict(booking: Booking) -> ConflictResponse:
    return ConflictResponse(
        booking_id=booking.id,
        title=booking.title,
        start_time=as_utc(booking.start_time).isoformat(),
        end_time=as_utc(booking.end_time).isoformat(),
        status=booking.status,
    )


@router.post(
    "",
    status_code=201,
    response_model=SuccessEnvelope[SpaceResponse] | SpaceResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def create_space(
    request: Request,
    payload: SpaceCreateRequest,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    space = await spaces_service.create_space(
        db,
        tenant_id=principal.tenant_id,
        name=payload.name,
        space_type=payload.type,
        capacity=payload.capacity,
        description=payload.description,
        amenities=payload.amenities,
        hourly_rate=payload.hourly_rate,
        location=payload.location,
        floor=payload.floor,
        equipment=payload.equipment,
        features=payload.features,
    )
    response = _to_response(space)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="space.created",
        action="CREATE",
        resource_type="Space",
        resource_id=response.id,
        metadata={"name": response.name, "type": response.type},
    )
    return success_response(request=request, data=response)


@router.get("", response_model=SuccessEnvelope[list[SpaceResponse]] | list[SpaceResponse])
async def list_spaces(
    request: Request,
    type: SpaceType | None = None,
    min_capacity: int | None = Query(default=None, ge=1),
    is_active: bool | None = None,
    amenity: str | None = None,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    spaces = await spaces_service.list_spaces(
        db,
        tenant_id=principal.tenant_id,
        space_type=type,
        min_capacity=min_capacity,
        is_active=is_active,
        amenity=amenity,
    )
    return success_response(request=request, data=[_to_response(space) for space in spaces])


@router.get("/available", response_model=SuccessEnvelope[list[SpaceResponse]] | list[SpaceResponse])
async def available_spaces(
    request: Request,
    start_time: datetime,
    end_time: datetime,
    capacity: int | None = Query(default=None, ge=1),
    type: SpaceType | None = None,
    amenities: list[str] | None = Query(default=None),
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    spaces = await spaces_service.find_available_spaces(
        db,
        tenant_id=principal.tenant_id,
        start_time=as_utc(start_time),
        end_time=as_utc(end_time),
        capacity=capacity,
        space_type=type,
        amenities=amenities,
    )
    return success_response(request=request, data=[_to_response(space) for space in spaces])


@router.get("/utilization", response_model=SuccessEnvelope[dict[str, Any]] | dict[str, Any])
async def utilization(
    request: Request,
    space_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    report = await spaces_service.space_utilization(
        db,
        tenant_id=principal.tenant_id,
        space_id=space_id,
        start=as_utc(start),
        end=as_utc(end),
    )
    return success_response(request=request, data=report)


@router.get("/{space_id}", response_model=SuccessEnvelope[SpaceResponse] | SpaceResponse)
async def get_space(
    space_id: str,
    request: Request,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    space = await spaces_service.get_space(db, tenant_id=principal.tenant_id, space_id=space_id)
    return success_response(request=request, data=_to_response(space))


@router.patch(
    "/{space_id}",
    response_model=SuccessEnvelope[SpaceResponse] | SpaceResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def update_space(
    space_id: str,
    request: Request,
    payload: SpaceUpdateRequest,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    space = await spaces_service.update_space(
        db, tenant_id=principal.tenant_id, space_id=space_id, changes=changes
    )
    response = _to_response(space)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="space.updated",
        action="UPDATE",
        resource_type="Space",
        resource_id=response.id,
        metadata={"fields": sorted(changes)},
    )
    return success_response(request=request, data=response)


@router.delete("/{space_id}", response_model=SuccessEnvelope[SpaceResponse] | SpaceResponse)
async def delete_space(
    space_id: str,
    request: Request,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    space = await spaces_service.delete_space(db, tenant_id=principal.tenant_id, space_id=space_id)
    response = _to_response(space)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="space.deleted",
        action="DELETE",
        resource_type="Space",
        resource_id=response.id,
    )
    return success_response(request=request, data=response)


@router.get("/{space_id}/availability", response_model=SuccessEnvelope[AvailabilityResponse] | AvailabilityResponse)
async def space_availability(
    space_id: str,
    request: Request,
    start_time: datetime,
    end_time: datetime,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await spaces_service.check_availability(
        db,
        tenant_id=principal.tenant_id,
        space_id=space_id,
        start_time=as_utc(start_time),
        end_time=as_utc(end_time),
    )
    payload = AvailabilityResponse(
        space_id=space_id,
        available=result.available,
        conflicts=[_conflict(booking) for booking in result.conflicts],
    )
    return success_response(request=request, data=payload)
