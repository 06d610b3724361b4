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
from coworkhub.apps.api.routes.catalog import PricingTierPayload, ServiceResponse, _to_response
from coworkhub.core.clock import as_utc
from coworkhub.domain.enums import PricingTargetMetric, RequestPriority
from coworkhub.services import pricing as pricing_service


router = APIRouter(prefix="/pricing", tags=["pricing"], responses=DEFAULT_ERROR_RESPONSES)


class PriceCalculationRequest(BaseModel):
    model_config = {"extra": "forbid"}

    service_id: str
    quantity: int = Field(ge=1)
    requested_delivery_time: datetime | None = None
    priority: RequestPriority | None = None


class BulkPriceCalculationRequest(BaseModel):
    model_config = {"extra": "forbid"}

    requests: list[PriceCalculationRequest] = Field(min_length=1, max_length=100)


class AppliedTierResponse(BaseModel):
    min_quantity: int
    max_quantity: int | None
    price_per_unit: float
    discount_percentage: float | None


class BreakdownLineResponse(BaseModel):
    description: str
    amount: float
    type: str


class PricingResultResponse(BaseModel):
    base_price: float
    quantity: int
    subtotal: float
    applied_tier: AppliedTierResponse | None
    demand_multiplier: float
    time_multiplier: float
    priority_multiplier: float
    volume_discount: float
    final_price: float
    savings: float
    breakdown: list[BreakdownLineResponse]


class PricingConfigRequest(BaseModel):
    model_config = {"extra": "forbid"}

    price: Decimal | None = Field(default=None, ge=0)
    pricing_tiers: list[PricingTierPayload] | None = None
    dynamic_pricing: bool | None = None
    minimum_order: int | None = Field(default=None, ge=1)


class SeasonalPricingRequest(BaseModel):
    model_config = {"extra": "forbid"}

    service_ids: list[str] = Field(min_length=1)
    multiplier: Decimal = Field(gt=0)
    start_date: datetime
    end_date: datetime


class PromotionalPricingRequest(BaseModel):
    model_config = {"extra": "forbid"}

    discount_percentage: Decimal = Field(gt=0, le=100)
    valid_until: datetime
    conditions: dict[str, Any] = Field(default_factory=dict)


class PromotionResponse(BaseModel):
    service_id: str
    promo_code: str


def _money(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.01")))


def _result_response(result: pricing_service.PricingResult) -> PricingResultResponse:
    tier = result.applied_tier
    return PricingResultResponse(
        base_price=_money(result.base_price),
        quantity=result.quantity,
        subtotal=_money(result.subtotal),
        applied_tier=(
            AppliedTierResponse(
                min_quantity=tier.min_quantity,
                max_quantity=tier.max_quantity,
                price_per_unit=_money(tier.price_per_unit),
                discount_percentage=tier.discount_percentage,
            )
            if tier
            else None
        ),
        demand_multiplier=float(result.demand_multiplier),
        time_multiplier=float(result.time_multiplier),
        priority_multiplier=float(result.priority_multiplier),
        volume_discount=_money(result.volume_discount),
        final_price=_money(result.final_price),
        savings=_money(result.savings),
        breakdown=[
            BreakdownLineResponse(description=line.description, amount=_money(line.amount), type=line.type)
            for line in result.breakdown
        ],
    )


@router.post("/calculate", response_model=SuccessEnvelope[PricingResultResponse] | PricingResultResponse)
async def calculate_price(
    request: Request,
    payload: PriceCalculationRequest,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await pricing_service.calculate_price(
        db,
        tenant_id=principal.tenant_id,
        service_id=payload.service_id,
        quantity=payload.quantity,
        requested_delivery_time=as_utc(payload.requested_delivery_time),
        priority=payload.priority,
    )
    return success_response(request=request, data=_result_response(result))


@router.post(
    "/calculate/bulk",
    response_model=SuccessEnvelope[list[PricingResultResponse]] | list[PricingResultResponse],
)
async def bulk_calculate_price(
    request: Request,
    payload: BulkPriceCalculationRequest,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    results = await pricing_service.bulk_calculate_price(
        db,
        tenant_id=principal.tenant_id,
        requests=[
            pricing_service.PriceRequest(
                service_id=item.service_id,
                quantity=item.quantity,
                requested_delivery_time=as_utc(item.requested_delivery_time),
                priority=item.priority,
            )
            for item in payload.requests
        ],
    )
    return success_response(request=request, data=[_result_response(result) for result in results])


@router.put(
    "/services/{service_id}/config",
    response_model=SuccessEnvelope[ServiceResponse] | ServiceResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def update_pricing_config(
    service_id: str,
    request: Request,
    payload: PricingConfigRequest,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    service = await pricing_service.update_pricing_config(
        db,
        tenant_id=principal.tenant_id,
        service_id=service_id,
        price=payload.price,
        pricing_tiers=(
            [tier.model_dump() for tier in payload.pricing_tiers] if payload.pricing_tiers is not None else None
        ),
        dynamic_pricing=payload.dynamic_pricing,
        minimum_order=payload.minimum_order,
    )
    response = _to_response(service)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="pricing.config.updated",
        action="SYSTEM_CONFIG",
        resource_type="Service",
        resource_id=response.id,
        metadata={"fields": sorted(payload.model_dump(exclude_unset=True))},
    )
    return success_response(request=request, data=response)


@router.get("/analytics", response_model=SuccessEnvelope[dict[str, Any]] | dict[str, Any])
async def pricing_analytics(
    request: Request,
    service_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    report = await pricing_service.analyze_pricing_performance(
        db, tenant_id=principal.tenant_id, service_id=service_id, start=as_utc(start), end=as_utc(end)
    )
    return success_response(request=request, data=report)


@router.get("/services/{service_id}/optimize", response_model=SuccessEnvelope[dict[str, Any]] | dict[str, Any])
async def optimize_price(
    service_id: str,
    request: Request,
    target_metric: PricingTargetMetric = Query(default="revenue"),
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await pricing_service.optimize_price(
        db, tenant_id=principal.tenant_id, service_id=service_id, target_metric=target_metric
    )
    return success_response(request=request, data=result)


@router.post(
    "/seasonal",
    response_model=SuccessEnvelope[list[ServiceResponse]] | list[ServiceResponse],
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def apply_seasonal_pricing(
    request: Request,
    payload: SeasonalPricingRequest,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    services = await pricing_service.apply_seasonal_pricing(
        db,
        tenant_id=principal.tenant_id,
        service_ids=payload.service_ids,
        multiplier=payload.multiplier,
        start=as_utc(payload.start_date),
        end=as_utc(payload.end_date),
    )
    responses = [_to_response(service) for service in services]
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="pricing.seasonal.applied",
        action="SYSTEM_CONFIG",
        resource_type="Service",
        metadata={"service_ids": [item.id for item in responses], "multiplier": str(payload.multiplier)},
    )
    return success_response(request=request, data=responses)


@router.post(
    "/services/{service_id}/promotions",
    status_code=201,
    response_model=SuccessEnvelope[PromotionResponse] | PromotionResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def apply_promotional_pricing(
    service_id: str,
    request: Request,
    payload: PromotionalPricingRequest,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    promo_code = await pricing_service.apply_promotional_pricing(
        db,
        tenant_id=principal.tenant_id,
        service_id=service_id,
        discount_percentage=payload.discount_percentage,
        valid_until=as_utc(payload.valid_until),
        conditions=payload.conditions,
    )
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="pricing.promotion.created",
        action="SYSTEM_CONFIG",
        resource_type="Service",
        resource_id=service_id,
        metadata={"promo_code": promo_code, "discount_percentage": str(payload.discount_percentage)},
    )
    return success_response(request=request, data=PromotionResponse(service_id=service_id, promo_code=promo_code))
