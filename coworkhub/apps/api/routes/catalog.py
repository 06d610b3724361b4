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
from coworkhub.domain.enums import ServiceAvailability, ServiceCategory, ServiceType
from coworkhub.domain.models import Service
from coworkhub.services import catalog as catalog_service


router = APIRouter(prefix="/services", tags=["services"], responses=DEFAULT_ERROR_RESPONSES)


class PricingTierPayload(BaseModel):
    model_config = {"extra": "forbid"}

    min_quantity: int = Field(ge=1)
    max_quantity: int | None = Field(default=None, ge=1)
    price_per_unit: Decimal = Field(ge=0)
    discount_percentage: float | None = Field(default=None, ge=0, le=100)


class ServiceCreateRequest(BaseModel):
    model_config = {"extra": "forbid"}

    name: str = Field(min_length=1, max_length=200)
    category: ServiceCategory
    type: ServiceType
    price: Decimal = Field(ge=0)
    availability: ServiceAvailability = "ALWAYS"
    description: str | None = None
    unit: str = Field(default="unit", max_length=32)
    max_quantity: int | None = Field(default=None, ge=1)
    requires_approval: bool = False
    estimated_delivery_time: str | None = None
    instructions: str | None = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    pricing_tiers: list[PricingTierPayload] = Field(default_factory=list)
    dynamic_pricing: bool = False
    minimum_order: int = Field(default=1, ge=1)


class ServiceUpdateRequest(BaseModel):
    model_config = {"extra": "forbid"}

    name: str | None = Field(default=None, min_length=1, max_length=200)
    category: ServiceCategory | None = None
    type: ServiceType | None = None
    price: Decimal | None = Field(default=None, ge=0)
    availability: ServiceAvailability | None = None
    description: str | None = None
    unit: str | None = Field(default=None, max_length=32)
    max_quantity: int | None = Field(default=None, ge=1)
    requires_approval: bool | None = None
    estimated_delivery_time: str | None = None
    instructions: str | None = None
    tags: list[str] | None = None
    metadata: dict[str, Any] | None = None
    pricing_tiers: list[PricingTierPayload] | None = None
    dynamic_pricing: bool | None = None
    minimum_order: int | None = Field(default=None, ge=1)
    is_active: bool | None = None


class ServiceResponse(BaseModel):
    id: str
    name: str
    description: str | None
    category: str
    type: str
    availability: str
    price: float
    unit: str
    max_quantity: int | None
    requires_approval: bool
    estimated_delivery_time: str | None
    instructions: str | None
    tags: list[str]
    metadata: dict[str, Any]
    pricing_tiers: list[dict[str, Any]]
    dynamic_pricing: bool
    minimum_order: int
    average_rating: float | None
    is_active: bool
    created_at: str | None


class CatalogPageResponse(BaseModel):
    services: list[ServiceResponse]
    total: int
    has_more: bool


def _to_response(service: Service) -> ServiceResponse:
    return ServiceResponse(
        id=service.id,
        name=service.name,
        description=service.description,
        category=service.category,
        type=service.service_type,
        availability=service.availability,
        price=float(service.price),
        unit=service.unit,
        max_quantity=service.max_quantity,
        requires_approval=service.requires_approval,
        estimated_delivery_time=service.estimated_delivery_time,
        instructions=service.instructions,
        tags=list(service.tags or []),
        metadata=dict(service.metadata_json or {}),
        pricing_tiers=list(service.pricing_tiers or []),
        dynamic_pricing=service.dynamic_pricing,
        minimum_order=service.minimum_order,
        average_rating=service.average_rating,
        is_active=service.is_active,
        created_at=as_utc(service.created_at).isoformat() if service.created_at else None,
    )


def _responses(services: list[Service]) -> list[ServiceResponse]:
    return [_to_response(service) for service in services]


@router.post(
    "",
    status_code=201,
    response_model=SuccessEnvelope[ServiceResponse] | ServiceResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def create_service(
    request: Request,
    payload: ServiceCreateRequest,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    service = await catalog_service.create_service(
        db,
        tenant_id=principal.tenant_id,
        name=payload.name,
        category=payload.category,
        service_type=payload.type,
        price=payload.price,
        availability=payload.availability,
        description=payload.description,
        unit=payload.unit,
        max_quantity=payload.max_quantity,
        requires_approval=payload.requires_approval,
        estimated_delivery_time=payload.estimated_delivery_time,
        instructions=payload.instructions,
        tags=payload.tags,
        metadata=payload.metadata,
        pricing_tiers=[tier.model_dump() for tier in payload.pricing_tiers],
        dynamic_pricing=payload.dynamic_pricing,
        minimum_order=payload.minimum_order,
    )
    response = _to_response(service)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="service.created",
        action="CREATE",
        resource_type="Service",
        resource_id=response.id,
        metadata={"name": response.name, "category": response.category},
    )
    return success_response(request=request, data=response)


@router.get("", response_model=SuccessEnvelope[CatalogPageResponse] | CatalogPageResponse)
async def get_catalog(
    request: Request,
    category: ServiceCategory | None = None,
    type: ServiceType | None = None,
    availability: ServiceAvailability | None = None,
    min_price: Decimal | None = Query(default=None, ge=0),
    max_price: Decimal | None = Query(default=None, ge=0),
    is_active: bool | None = None,
    requires_approval: bool | None = None,
    tags: list[str] | None = Query(default=None),
    search: str | None = None,
    skip: int = Query(default=0, ge=0),
    take: int = Query(default=50, ge=1, le=200),
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    filters = catalog_service.CatalogFilters(
        category=category,
        service_type=type,
        availability=availability,
        min_price=min_price,
        max_price=max_price,
        is_active=is_active,
        requires_approval=requires_approval,
        tags=list(tags or []),
        search=search,
    )
    page = await catalog_service.get_catalog(
        db, tenant_id=principal.tenant_id, filters=filters, skip=skip, take=take
    )
    payload = CatalogPageResponse(services=_responses(page.services), total=page.total, has_more=page.has_more)
    return success_response(request=request, data=payload)


@router.get("/featured", response_model=SuccessEnvelope[list[ServiceResponse]] | list[ServiceResponse])
async def featured_services(
    request: Request,
    limit: int = Query(default=6, ge=1, le=50),
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    services = await catalog_service.featured_services(db, tenant_id=principal.tenant_id, limit=limit)
    return success_response(request=request, data=_responses(services))


@router.get("/search", response_model=SuccessEnvelope[list[ServiceResponse]] | list[ServiceResponse])
async def search_services(
    request: Request,
    q: str = Query(min_length=1),
    limit: int = Query(default=20, ge=1, le=100),
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    services = await catalog_service.search_services(db, tenant_id=principal.tenant_id, query=q, limit=limit)
    return success_response(request=request, data=_responses(services))


@router.get("/analytics", response_model=SuccessEnvelope[dict[str, Any]] | dict[str, Any])
async def catalog_analytics(
    request: Request,
    start: datetime | None = None,
    end: datetime | None = None,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    report = await catalog_service.catalog_analytics(db, tenant_id=principal.tenant_id, start=start, end=end)
    return success_response(request=request, data=report)


@router.get(
    "/category/{category}",
    response_model=SuccessEnvelope[list[ServiceResponse]] | list[ServiceResponse],
)
async def services_by_category(
    category: ServiceCategory,
    request: Request,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    services = await catalog_service.services_by_category(db, tenant_id=principal.tenant_id, category=category)
    return success_response(request=request, data=_responses(services))


@router.get("/{service_id}", response_model=SuccessEnvelope[ServiceResponse] | ServiceResponse)
async def get_service(
    service_id: str,
    request: Request,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    service = await catalog_service.get_service(db, tenant_id=principal.tenant_id, service_id=service_id)
    return success_response(request=request, data=_to_response(service))


@router.patch(
    "/{service_id}",
    response_model=SuccessEnvelope[ServiceResponse] | ServiceResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def update_service(
    service_id: str,
    request: Request,
    payload: ServiceUpdateRequest,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    if "type" in changes:
        changes["service_type"] = changes.pop("type")
    service = await catalog_service.update_service(
        db, tenant_id=principal.tenant_id, service_id=service_id, changes=changes
    )
    response = _to_response(service)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="service.updated",
        action="UPDATE",
        resource_type="Service",
        resource_id=response.id,
        metadata={"fields": sorted(changes)},
    )
    return success_response(request=request, data=response)


@router.delete("/{service_id}", response_model=SuccessEnvelope[ServiceResponse] | ServiceResponse)
async def delete_service(
    service_id: str,
    request: Request,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    service = await catalog_service.delete_service(db, tenant_id=principal.tenant_id, service_id=service_id)
    response = _to_response(service)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="service.deleted",
        action="DELETE",
        resource_type="Service",
        resource_id=response.id,
    )
    return success_response(request=request, data=response)
