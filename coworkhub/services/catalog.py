from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
import logging
from typing import Any
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.core.clock import as_utc, utc_now
from coworkhub.core.errors import NotFoundError, ValidationError
from coworkhub.domain.models import Service
from coworkhub.persistence.db import commit_or_raise
from coworkhub.persistence.repos import catalog as catalog_repo
from coworkhub.persistence.repos import service_requests as requests_repo


logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = {
    "name",
    "description",
    "category",
    "service_type",
    "availability",
    "price",
    "unit",
    "max_quantity",
    "requires_approval",
    "estimated_delivery_time",
    "instructions",
    "tags",
    "metadata",
    "pricing_tiers",
    "dynamic_pricing",
    "minimum_order",
    "is_active",
}


@dataclass
class CatalogFilters:
    category: str | None = None
    service_type: str | None = None
    availability: str | None = None
    min_price: Decimal | None = None
    max_price: Decimal | None = None
    is_active: bool | None = None
    requires_approval: bool | None = None
    tags: list[str] = field(default_factory=list)
    search: str | None = None


@dataclass(frozen=True)
class CatalogPage:
    services: list[Service]
    total: int
    has_more: bool


def normalize_tiers(tiers: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    """Validate pricing tiers and return them as JSON-safe documents."""
    normalized: list[dict[str, Any]] = []
    for index, tier in enumerate(tiers or []):
        min_quantity = int(tier.get("min_quantity", 0))
        max_quantity = tier.get("max_quantity")
        price_per_unit = Decimal(str(tier.get("price_per_unit", "-1")))
        discount = tier.get("discount_percentage")
        if min_quantity < 1:
            raise ValidationError(f"Tier {index}: min_quantity must be at least 1", code="INVALID_PRICING_TIER")
        if max_quantity is not None and int(max_quantity) < min_quantity:
            raise ValidationError(
                f"Tier {index}: max_quantity must be >= min_quantity", code="INVALID_PRICING_TIER"
            )
        if price_per_unit < 0:
            raise ValidationError(f"Tier {index}: price_per_unit cannot be negative", code="INVALID_PRICING_TIER")
        if discount is not None and not 0 <= float(discount) <= 100:
            raise ValidationError(
                f"Tier {index}: discount_percentage must be between 0 and 100", code="INVALID_PRICING_TIER"
            )
        normalized.append(
            {
                "min_quantity": min_quantity,
                "max_quantity": int(max_quantity) if max_quantity is not None else None,
                # Stored as strings so Decimal precision survives the JSON column.
                "price_per_unit": str(price_per_unit),
                "discount_percentage": float(discount) if discount is not None else None,
            }
        )
    return normalized


def validate_service_fields(
    *,
    price: Decimal | None,
    minimum_order: int | None,
    max_quantity: int | None,
) -> None:
    if price is not None and price < 0:
        raise ValidationError("Price cannot be negative", code="INVALID_PRICE")
    if minimum_order is not None and minimum_order < 1:
        raise ValidationError("Minimum order must be at least 1", code="INVALID_MINIMUM_ORDER")
    if max_quantity is not None and minimum_order is not None and max_quantity < minimum_order:
        raise ValidationError(
            "Max quantity must be greater than or equal to minimum order", code="INVALID_MAX_QUANTITY"
        )


async def create_service(
    session: AsyncSession,
    *,
    tenant_id: str,
    name: str,
    category: str,
    service_type: str,
    price: Decimal,
    availability: str = "ALWAYS",
    description: str | None = None,
    unit: str = "unit",
    max_quantity: int | None = None,
    requires_approval: bool = False,
    estimated_delivery_time: str | None = None,
    instructions: str | None = None,
    tags: list[str] | None = None,
    metadata: dict[str, Any] | None = None,
    pricing_tiers: list[dict[str, Any]] | None = None,
    dynamic_pricing: bool = False,
    minimum_order: int = 1,
) -> Service:
    if not name or not name.strip():
        raise ValidationError("Service name is required", code="SERVICE_NAME_REQUIRED")
    validate_service_fields(price=price, minimum_order=minimum_order, max_quantity=max_quantity)
    now = utc_now()
    service = Service(
        id=uuid4().hex,
        tenant_id=tenant_id,
        name=name.strip(),
        description=description,
        category=category,
        service_type=service_type,
        availability=availability,
        price=price,
        unit=unit,
        max_quantity=max_quantity,
        requires_approval=requires_approval,
        estimated_delivery_time=estimated_delivery_time,
        instructions=instructions,
        tags=list(tags or []),
        metadata_json=dict(metadata or {}),
        pricing_tiers=normalize_tiers(pricing_tiers),
        dynamic_pricing=dynamic_pricing,
        minimum_order=minimum_order,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    session.add(service)
    await commit_or_raise(session, context="creating service")
    logger.info("service_created tenant_id=%s service_id=%s", tenant_id, service.id)
    return service


async def get_service(session: AsyncSession, *, tenant_id: str, service_id: str) -> Service:
    service = await catalog_repo.get_service(session, tenant_id, service_id)
    if service is None:
        raise NotFoundError("Service not found", code="SERVICE_NOT_FOUND")
    return service


async def update_service(
    session: AsyncSession,
    *,
    tenant_id: str,
    service_id: str,
    changes: dict[str, Any],
) -> Service:
    changes = {key: value for key, value in changes.items() if key in _UPDATABLE_FIELDS}
    if not changes:
        raise ValidationError("No fields to update", code="EMPTY_UPDATE")
    service = await get_service(session, tenant_id=tenant_id, service_id=service_id)
    if "name" in changes and not (changes["name"] or "").strip():
        raise ValidationError("Service name is required", code="SERVICE_NAME_REQUIRED")
    validate_service_fields(
        price=changes.get("price"),
        minimum_order=changes.get("minimum_order", service.minimum_order),
        max_quantity=changes.get("max_quantity", service.max_quantity),
    )
    for key, value in changes.items():
        if key == "metadata":
            service.metadata_json = dict(value or {})
        elif key == "pricing_tiers":
            service.pricing_tiers = normalize_tiers(value)
        elif key == "tags":
            service.tags = list(value or [])
        else:
            setattr(service, key, value)
    service.updated_at = utc_now()
    await commit_or_raise(session, context="updating service")
    return service


async def delete_service(session: AsyncSession, *, tenant_id: str, service_id: str) -> Service:
    service = await get_service(session, tenant_id=tenant_id, service_id=service_id)
    service.is_active = False
    service.updated_at = utc_now()
    await commit_or_raise(session, context="deleting service")
    logger.info("service_deactivated tenant_id=%s service_id=%s", tenant_id, service.id)
    return service


def _matches(service: Service, filters: CatalogFilters) -> bool:
    if filters.category and service.category != filters.category:
        return False
    if filters.service_type and service.service_type != filters.service_type:
        return False
    if filters.availability and service.availability != filters.availability:
        return False
    if filters.min_price is not None and Decimal(service.price) < filters.min_price:
        return False
    if filters.max_price is not None and Decimal(service.price) > filters.max_price:
        return False
    if filters.is_active is not None and bool(service.is_active) != filters.is_active:
        return False
    if filters.requires_approval is not None and bool(service.requires_approval) != filters.requires_approval:
        return False
    if filters.tags and not set(filters.tags) & set(service.tags or []):
        return False
    if filters.search:
        needle = filters.search.lower()
        haystack = f"{service.name} {service.description or ''}".lower()
        if needle not in haystack:
            return False
    return True


async def get_catalog(
    session: AsyncSession,
    *,
    tenant_id: str,
    filters: CatalogFilters | None = None,
    skip: int = 0,
    take: int = 50,
) -> CatalogPage:
    filters = filters or CatalogFilters()
    services = await catalog_repo.list_services(session, tenant_id)
    matched = [service for service in services if _matches(service, filters)]
    page = matched[skip : skip + take]
    return CatalogPage(services=page, total=len(matched), has_more=skip + take < len(matched))


async def services_by_category(session: AsyncSession, *, tenant_id: str, category: str) -> list[Service]:
    return await catalog_repo.list_services(session, tenant_id, category=category, is_active=True)


async def featured_services(session: AsyncSession, *, tenant_id: str, limit: int = 6) -> list[Service]:
    # Popularity is request volume weighted by rating; unrated services count as 1.
    services = await catalog_repo.list_services(session, tenant_id, is_active=True)
    counts = await catalog_repo.request_counts_by_service(session, tenant_id)

    def popularity(service: Service) -> float:
        return counts.get(service.id, 0) * (service.average_rating or 1)

    ranked = sorted(services, key=lambda service: (-popularity(service), service.name))
    return ranked[:limit]


async def search_services(
    session: AsyncSession, *, tenant_id: str, query: str, limit: int = 20
) -> list[Service]:
    needle = query.strip().lower()
    if not needle:
        raise ValidationError("Search query is required", code="SEARCH_QUERY_REQUIRED")
    services = await catalog_repo.list_services(session, tenant_id, is_active=True)
    hits = [
        service
        for service in services
        if needle in service.name.lower()
        or needle in (service.description or "").lower()
        or any(needle in tag.lower() for tag in service.tags or [])
    ]
    return hits[:limit]


async def catalog_analytics(
    session: AsyncSession,
    *,
    tenant_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict[str, Any]:
    services = await catalog_repo.list_services(session, tenant_id)
    requests = await requests_repo.list_requests(
        session, tenant_id, created_from=as_utc(start), created_to=as_utc(end)
    )
    active = [service for service in services if service.is_active]
    prices = [Decimal(service.price) for service in services]
    average = sum(prices, Decimal("0")) / len(prices) if prices else Decimal("0")

    request_counts: Counter[str] = Counter()
    revenue_by_service: dict[str, Decimal] = {}
    for request in requests:
        request_counts[request.service_id] += 1
        revenue_by_service[request.service_id] = revenue_by_service.get(request.service_id, Decimal("0")) + Decimal(
            request.total_amount
        )

    by_category: dict[str, dict[str, Any]] = {}
    by_type: dict[str, dict[str, Any]] = {}
    for service in services:
        category = by_category.setdefault(service.category, {"count": 0, "total_revenue": Decimal("0")})
        category["count"] += 1
        category["total_revenue"] += revenue_by_service.get(service.id, Decimal("0"))
        kind = by_type.setdefault(service.service_type, {"count": 0, "total_price": Decimal("0")})
        kind["count"] += 1
        kind["total_price"] += Decimal(service.price)

    popular = sorted(services, key=lambda service: (-request_counts[service.id], service.name))[:10]
    total_revenue = sum(revenue_by_service.values(), Decimal("0"))
    return {
        "total_services": len(services),
        "active_services": len(active),
        "average_price": _money(average),
        "services_by_category": {name: stats["count"] for name, stats in by_category.items()},
        "by_category": [
            {"category": name, "count": stats["count"], "total_revenue": _money(stats["total_revenue"])}
            for name, stats in sorted(by_category.items())
        ],
        "by_type": [
            {
                "type": name,
                "count": stats["count"],
                "average_price": _money(stats["total_price"] / stats["count"]),
            }
            for name, stats in sorted(by_type.items())
        ],
        "popular_services": [
            {
                "id": service.id,
                "name": service.name,
                "request_count": request_counts[service.id],
                "revenue": _money(revenue_by_service.get(service.id, Decimal("0"))),
                "rating": service.average_rating or 0.0,
            }
            for service in popular
        ],
        "revenue_metrics": {
            "total_revenue": _money(total_revenue),
            "average_order_value": _money(total_revenue / len(requests)) if requests else 0.0,
        },
    }


def _money(value: Decimal) -> float:
    return float(Decimal(value).quantize(Decimal("0.01")))
