"""Dynamic service pricing.

``calculate_price`` is a stateless chain over one service row and a count of
recent requests: base price, tiered volume pricing, demand / time / priority
multipliers, a volume discount, then the final price with a line-item
breakdown. All arithmetic is done in ``Decimal``; callers round at the API
boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.core.clock import as_utc, utc_now
from coworkhub.core.config import get_settings
from coworkhub.core.errors import NotFoundError, ValidationError
from coworkhub.domain.models import Service
from coworkhub.persistence.db import commit_or_raise
from coworkhub.persistence.repos import catalog as catalog_repo
from coworkhub.persistence.repos import service_requests as requests_repo
from coworkhub.services import catalog as catalog_service


logger = logging.getLogger(__name__)

_ONE = Decimal("1")
_ZERO = Decimal("0")

# (lower inclusive, upper exclusive, label)
PRICE_RANGES: list[tuple[Decimal, Decimal | None, str]] = [
    (Decimal("0"), Decimal("10"), "$0-$10"),
    (Decimal("10"), Decimal("50"), "$10-$50"),
    (Decimal("50"), Decimal("100"), "$50-$100"),
    (Decimal("100"), Decimal("500"), "$100-$500"),
    (Decimal("500"), None, "$500+"),
]


@dataclass(frozen=True)
class PricingTier:
    min_quantity: int
    max_quantity: int | None
    price_per_unit: Decimal
    discount_percentage: float | None = None

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> PricingTier:
        max_quantity = document.get("max_quantity")
        return cls(
            min_quantity=int(document.get("min_quantity", 1)),
            max_quantity=int(max_quantity) if max_quantity else None,
            price_per_unit=Decimal(str(document.get("price_per_unit", "0"))),
            discount_percentage=document.get("discount_percentage"),
        )


@dataclass(frozen=True)
class BreakdownLine:
    description: str
    amount: Decimal
    type: str


@dataclass
class PricingResult:
    base_price: Decimal
    quantity: int
    subtotal: Decimal
    applied_tier: PricingTier | None
    demand_multiplier: Decimal
    time_multiplier: Decimal
    priority_multiplier: Decimal
    volume_discount: Decimal
    final_price: Decimal
    savings: Decimal
    breakdown: list[BreakdownLine] = field(default_factory=list)


@dataclass(frozen=True)
class PriceRequest:
    service_id: str
    quantity: int
    requested_delivery_time: datetime | None = None
    priority: str | None = None


def find_applicable_tier(tiers: list[dict[str, Any]] | None, quantity: int) -> PricingTier | None:
    # Highest min_quantity wins among tiers containing the quantity.
    candidates = [
        tier
        for tier in (PricingTier.from_document(document) for document in tiers or [])
        if quantity >= tier.min_quantity and (tier.max_quantity is None or quantity <= tier.max_quantity)
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda tier: tier.min_quantity)


def demand_multiplier_for(recent_requests: int) -> Decimal:
    if recent_requests > 10:
        return Decimal("1.3")
    if recent_requests > 5:
        return Decimal("1.15")
    if recent_requests < 2:
        return Decimal("0.9")
    return _ONE


def time_multiplier_for(requested_delivery_time: datetime | None, *, now: datetime | None = None) -> Decimal:
    if requested_delivery_time is None:
        return _ONE
    hours_until = (as_utc(requested_delivery_time) - (now or utc_now())).total_seconds() / 3600
    if hours_until < 1:
        return Decimal("2.0")
    if hours_until < 4:
        return Decimal("1.5")
    if hours_until < 24:
        return Decimal("1.2")
    if hours_until > 168:
        return Decimal("0.95")
    return _ONE


def priority_multiplier_for(priority: str | None) -> Decimal:
    return {
        "URGENT": Decimal("1.5"),
        "HIGH": Decimal("1.2"),
        "LOW": Decimal("0.9"),
    }.get(priority or "", _ONE)


def volume_discount_for(base_price: Decimal, quantity: int) -> Decimal:
    gross = base_price * quantity
    if quantity >= 100:
        return gross * Decimal("0.10")
    if quantity >= 50:
        return gross * Decimal("0.05")
    if quantity >= 20:
        return gross * Decimal("0.02")
    return _ZERO


def order_total(service: Service, quantity: int) -> Decimal:
    """Tier-aware order total without demand, time or priority adjustments."""
    base_price = Decimal(service.price)
    if service.dynamic_pricing and service.pricing_tiers:
        tier = find_applicable_tier(service.pricing_tiers, quantity)
        if tier is not None:
            return tier.price_per_unit * quantity
    return base_price * quantity


def price_service(
    service: Service,
    *,
    quantity: int,
    recent_requests: int | None,
    requested_delivery_time: datetime | None = None,
    priority: str | None = None,
    now: datetime | None = None,
) -> PricingResult:
    """Run the pricing chain for an already loaded service.

    ``recent_requests`` is only consulted when a delivery time is requested;
    ``None`` means the count could not be obtained and demand stays neutral.
    """
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1", code="INVALID_QUANTITY")
    base_price = Decimal(service.price)
    subtotal = base_price * quantity
    breakdown = [BreakdownLine(description="Base price", amount=base_price, type="base")]

    applied_tier: PricingTier | None = None
    if service.dynamic_pricing and service.pricing_tiers:
        applied_tier = find_applicable_tier(service.pricing_tiers, quantity)
        if applied_tier is not None:
            subtotal = applied_tier.price_per_unit * quantity
            breakdown.append(
                BreakdownLine(
                    description=f"Volume pricing ({quantity} units)",
                    amount=applied_tier.price_per_unit - base_price,
                    type="discount",
                )
            )

    if requested_delivery_time is not None and recent_requests is not None:
        demand = demand_multiplier_for(recent_requests)
    else:
        demand = _ONE
    timing = time_multiplier_for(requested_delivery_time, now=now)
    urgency = priority_multiplier_for(priority)

    final = subtotal
    if demand != _ONE:
        final *= demand
        breakdown.append(
            BreakdownLine(
                description=f"Demand adjustment ({'high' if demand > _ONE else 'low'} demand)",
                amount=subtotal * (demand - _ONE),
                type="fee" if demand > _ONE else "discount",
            )
        )
    if timing != _ONE:
        final *= timing
        breakdown.append(
            BreakdownLine(
                description="Time-based adjustment",
                amount=final * (timing - _ONE) / timing,
                type="fee" if timing > _ONE else "discount",
            )
        )
    if urgency != _ONE:
        final *= urgency
        breakdown.append(
            BreakdownLine(
                description="Priority adjustment",
                amount=final * (urgency - _ONE) / urgency,
                type="fee",
            )
        )

    volume_discount = volume_discount_for(base_price, quantity)
    if volume_discount > 0:
        final -= volume_discount
        breakdown.append(BreakdownLine(description="Volume discount", amount=-volume_discount, type="discount"))

    return PricingResult(
        base_price=base_price,
        quantity=quantity,
        subtotal=subtotal,
        applied_tier=applied_tier,
        demand_multiplier=demand,
        time_multiplier=timing,
        priority_multiplier=urgency,
        volume_discount=volume_discount,
        final_price=max(_ZERO, final),
        savings=max(_ZERO, base_price * quantity - final),
        breakdown=breakdown,
    )


async def _recent_request_count(session: AsyncSession, *, tenant_id: str, service_id: str) -> int | None:
    window = timedelta(minutes=get_settings().pricing_demand_window_minutes)
    # Only the savepoint is rolled back; the loaded service row stays usable.
    try:
        async with session.begin_nested():
            return await catalog_repo.count_recent_requests(
                session, tenant_id, service_id=service_id, since=utc_now() - window
            )
    except SQLAlchemyError as exc:
        logger.warning(
            "pricing_demand_count_failed tenant_id=%s service_id=%s", tenant_id, service_id, exc_info=exc
        )
        return None


async def calculate_price(
    session: AsyncSession,
    *,
    tenant_id: str,
    service_id: str,
    quantity: int,
    requested_delivery_time: datetime | None = None,
    priority: str | None = None,
) -> PricingResult:
    service = await catalog_repo.get_service(session, tenant_id, service_id)
    if service is None or not service.is_active:
        raise NotFoundError("Service not found", code="SERVICE_NOT_FOUND")
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1", code="INVALID_QUANTITY")
    recent = None
    if requested_delivery_time is not None:
        recent = await _recent_request_count(session, tenant_id=tenant_id, service_id=service.id)
    return price_service(
        service,
        quantity=quantity,
        recent_requests=recent,
        requested_delivery_time=requested_delivery_time,
        priority=priority,
    )


async def bulk_calculate_price(
    session: AsyncSession, *, tenant_id: str, requests: list[PriceRequest]
) -> list[PricingResult]:
    # Results follow input order; the first failure fails the whole batch.
    results: list[PricingResult] = []
    for item in requests:
        results.append(
            await calculate_price(
                session,
                tenant_id=tenant_id,
                service_id=item.service_id,
                quantity=item.quantity,
                requested_delivery_time=item.requested_delivery_time,
                priority=item.priority,
            )
        )
    return results


async def update_pricing_config(
    session: AsyncSession,
    *,
    tenant_id: str,
    service_id: str,
    price: Decimal | None = None,
    pricing_tiers: list[dict[str, Any]] | None = None,
    dynamic_pricing: bool | None = None,
    minimum_order: int | None = None,
) -> Service:
    service = await catalog_service.get_service(session, tenant_id=tenant_id, service_id=service_id)
    catalog_service.validate_service_fields(
        price=price,
        minimum_order=minimum_order if minimum_order is not None else service.minimum_order,
        max_quantity=service.max_quantity,
    )
    if price is not None:
        service.price = price
    if pricing_tiers is not None:
        service.pricing_tiers = catalog_service.normalize_tiers(pricing_tiers)
    if dynamic_pricing is not None:
        service.dynamic_pricing = dynamic_pricing
    if minimum_order is not None:
        service.minimum_order = minimum_order
    service.updated_at = utc_now()
    await commit_or_raise(session, context="updating pricing config")
    logger.info("pricing_config_updated tenant_id=%s service_id=%s", tenant_id, service.id)
    return service


def _round(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.01")))


async def analyze_pricing_performance(
    session: AsyncSession,
    *,
    tenant_id: str,
    service_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict[str, Any]:
    # The date window applies only when both bounds are given.
    bounded = start is not None and end is not None
    requests = await requests_repo.list_requests(
        session,
        tenant_id,
        service_id=service_id,
        created_from=as_utc(start) if bounded else None,
        created_to=as_utc(end) if bounded else None,
    )
    if not requests:
        return {
            "average_order_value": 0.0,
            "total_revenue": 0.0,
            "pricing_efficiency": 0.0,
            "demand_pricing_impact": 0.0,
            "volume_discount_utilization": 0.0,
            "price_elasticity": 0.0,
            "revenue_by_price_range": [],
            "optimal_price_recommendations": [],
        }

    services = {
        service.id: service
        for service in await catalog_repo.list_services(
            session, tenant_id, service_ids=sorted({request.service_id for request in requests})
        )
    }
    amounts = [Decimal(request.total_amount) for request in requests]
    total_revenue = sum(amounts, _ZERO)
    average_order_value = total_revenue / len(requests)

    revenue_by_range = []
    for lower, upper, label in PRICE_RANGES:
        in_range = [amount for amount in amounts if amount >= lower and (upper is None or amount < upper)]
        revenue_by_range.append(
            {"price_range": label, "order_count": len(in_range), "revenue": _round(sum(in_range, _ZERO))}
        )

    dynamic_count = sum(
        1 for request in requests if services.get(request.service_id) and services[request.service_id].dynamic_pricing
    )
    efficiency = Decimal(dynamic_count) / len(requests) * 100

    per_service: dict[str, list[Decimal]] = {}
    for request in requests:
        per_service.setdefault(request.service_id, []).append(Decimal(request.total_amount))

    recommendations = []
    for current_id, totals in per_service.items():
        service = services.get(current_id)
        if service is None:
            continue
        current_price = Decimal(service.price)
        average = sum(totals, _ZERO) / len(totals)
        recommended = current_price
        impact = "Maintain current pricing"
        if len(totals) > 20 and average > current_price * Decimal("1.2"):
            recommended = current_price * Decimal("1.1")
            impact = "Increase revenue by 10-15%"
        elif len(totals) < 5 and average < current_price * Decimal("0.8"):
            recommended = current_price * Decimal("0.9")
            impact = "Increase demand by 20-30%"
        if recommended != current_price:
            recommendations.append(
                {
                    "service_id": current_id,
                    "service_name": service.name,
                    "current_price": _round(current_price),
                    "recommended_price": _round(recommended),
                    "expected_impact": impact,
                }
            )

    return {
        "average_order_value": _round(average_order_value),
        "total_revenue": _round(total_revenue),
        "pricing_efficiency": _round(efficiency),
        # Historical comparisons are not tracked; reported as zero.
        "demand_pricing_impact": 0.0,
        "volume_discount_utilization": 0.0,
        "price_elasticity": 0.0,
        "revenue_by_price_range": revenue_by_range,
        "optimal_price_recommendations": recommendations[:5],
    }


async def optimize_price(
    session: AsyncSession, *, tenant_id: str, service_id: str, target_metric: str
) -> dict[str, Any]:
    service = await catalog_service.get_service(session, tenant_id=tenant_id, service_id=service_id)
    analytics = await analyze_pricing_performance(session, tenant_id=tenant_id, service_id=service_id)
    current_price = _round(Decimal(service.price))
    match = next(
        (item for item in analytics["optimal_price_recommendations"] if item["service_id"] == service_id),
        None,
    )
    if match is None:
        return {
            "service_id": service_id,
            "target_metric": target_metric,
            "current_price": current_price,
            "recommended_price": current_price,
            "expected_change": "No change recommended",
            "confidence": 0.5,
        }
    return {
        "service_id": service_id,
        "target_metric": target_metric,
        "current_price": current_price,
        "recommended_price": match["recommended_price"],
        "expected_change": match["expected_impact"],
        "confidence": 0.75,
    }


async def apply_seasonal_pricing(
    session: AsyncSession,
    *,
    tenant_id: str,
    service_ids: list[str],
    multiplier: Decimal,
    start: datetime,
    end: datetime,
) -> list[Service]:
    if multiplier <= 0:
        raise ValidationError("Seasonal multiplier must be greater than 0", code="INVALID_MULTIPLIER")
    if as_utc(end) <= as_utc(start):
        raise ValidationError("End date must be after start date", code="INVALID_DATE_RANGE")
    if not service_ids:
        raise ValidationError("At least one service is required", code="SERVICE_IDS_REQUIRED")

    applied_at = utc_now().isoformat()
    services: list[Service] = []
    for service_id in service_ids:
        service = await catalog_service.get_service(session, tenant_id=tenant_id, service_id=service_id)
        service.metadata_json = {
            **(service.metadata_json or {}),
            "seasonal_pricing": {
                "multiplier": str(multiplier),
                "start_date": as_utc(start).isoformat(),
                "end_date": as_utc(end).isoformat(),
                "applied_at": applied_at,
            },
        }
        services.append(service)
    await commit_or_raise(session, context="applying seasonal pricing")
    logger.info(
        "seasonal_pricing_applied tenant_id=%s services=%s multiplier=%s", tenant_id, len(services), multiplier
    )
    return services


async def apply_promotional_pricing(
    session: AsyncSession,
    *,
    tenant_id: str,
    service_id: str,
    discount_percentage: Decimal,
    valid_until: datetime,
    conditions: dict[str, Any] | None = None,
) -> str:
    if discount_percentage <= 0 or discount_percentage > 100:
        raise ValidationError(
            "Discount percentage must be greater than 0 and at most 100", code="INVALID_DISCOUNT"
        )
    service = await catalog_service.get_service(session, tenant_id=tenant_id, service_id=service_id)
    now = utc_now()
    promo_code = f"PROMO_{int(now.timestamp() * 1000)}"
    service.metadata_json = {
        **(service.metadata_json or {}),
        "promotional_pricing": {
            "code": promo_code,
            "discount_percentage": str(discount_percentage),
            "valid_until": as_utc(valid_until).isoformat(),
            "conditions": dict(conditions or {}),
            "created_at": now.isoformat(),
            "is_active": True,
        },
    }
    await commit_or_raise(session, context="applying promotional pricing")
    logger.info("promotional_pricing_applied tenant_id=%s service_id=%s code=%s", tenant_id, service_id, promo_code)
    return promo_code
