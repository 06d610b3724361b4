from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from coworkhub.core.errors import ValidationError
from coworkhub.domain.models import Service
from coworkhub.services.pricing import (
    demand_multiplier_for,
    find_applicable_tier,
    order_total,
    price_service,
    priority_multiplier_for,
    time_multiplier_for,
    volume_discount_for,
)


NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _service(**overrides) -> Service:
    values = {
        "id": "svc-1",
        "tenant_id": "t1",
        "name": "Printing",
        "category": "PRINTING",
        "service_type": "ON_DEMAND",
        "price": Decimal("10.00"),
        "pricing_tiers": [],
        "dynamic_pricing": False,
        "minimum_order": 1,
        "metadata_json": {},
    }
    values.update(overrides)
    return Service(**values)


TIERS = [
    {"min_quantity": 1, "max_quantity": 9, "price_per_unit": "10.00"},
    {"min_quantity": 10, "max_quantity": 49, "price_per_unit": "8.00"},
    {"min_quantity": 25, "max_quantity": None, "price_per_unit": "7.00"},
]


def test_find_applicable_tier_prefers_highest_minimum() -> None:
    assert find_applicable_tier(TIERS, 5).price_per_unit == Decimal("10.00")
    assert find_applicable_tier(TIERS, 12).price_per_unit == Decimal("8.00")
    # 30 sits in both the 10-49 and 25+ tiers.
    assert find_applicable_tier(TIERS, 30).price_per_unit == Decimal("7.00")
    assert find_applicable_tier([], 3) is None
    assert find_applicable_tier(None, 3) is None


@pytest.mark.parametrize(
    ("recent", "expected"),
    [(0, "0.9"), (1, "0.9"), (2, "1"), (5, "1"), (6, "1.15"), (10, "1.15"), (11, "1.3")],
)
def test_demand_multiplier_bands(recent: int, expected: str) -> None:
    assert demand_multiplier_for(recent) == Decimal(expected)


def test_time_multiplier_bands() -> None:
    assert time_multiplier_for(None, now=NOW) == Decimal("1")
    assert time_multiplier_for(NOW + timedelta(minutes=30), now=NOW) == Decimal("2.0")
    assert time_multiplier_for(NOW + timedelta(hours=2), now=NOW) == Decimal("1.5")
    assert time_multiplier_for(NOW + timedelta(hours=10), now=NOW) == Decimal("1.2")
    assert time_multiplier_for(NOW + timedelta(days=3), now=NOW) == Decimal("1")
    assert time_multiplier_for(NOW + timedelta(days=8), now=NOW) == Decimal("0.95")


def test_priority_multiplier_defaults_to_neutral() -> None:
    assert priority_multiplier_for("URGENT") == Decimal("1.5")
    assert priority_multiplier_for("HIGH") == Decimal("1.2")
    assert priority_multiplier_for("LOW") == Decimal("0.9")
    assert priority_multiplier_for("NORMAL") == Decimal("1")
    assert priority_multiplier_for(None) == Decimal("1")


def test_volume_discount_thresholds() -> None:
    assert volume_discount_for(Decimal("10"), 19) == Decimal("0")
    assert volume_discount_for(Decimal("10"), 20) == Decimal("4.00")
    assert volume_discount_for(Decimal("10"), 50) == Decimal("25.00")
    assert volume_discount_for(Decimal("10"), 100) == Decimal("100.00")


def test_price_service_without_adjustments_is_base_times_quantity() -> None:
    result = price_service(_service(), quantity=3, recent_requests=0, now=NOW)
    assert result.subtotal == Decimal("30.00")
    assert result.final_price == Decimal("30.00")
    # Demand only applies when a delivery time is requested.
    assert result.demand_multiplier == Decimal("1")
    assert result.savings == Decimal("0")
    assert [line.type for line in result.breakdown] == ["base"]


def test_price_service_applies_tier_and_volume_discount() -> None:
    service = _service(dynamic_pricing=True, pricing_tiers=TIERS)
    result = price_service(service, quantity=30, recent_requests=None, now=NOW)
    assert result.applied_tier is not None
    assert result.subtotal == Decimal("210.00")
    # 2% of the untiered gross (30 x 10).
    assert result.volume_discount == Decimal("6.00")
    assert result.final_price == Decimal("204.00")
    assert result.savings == Decimal("96.00")


def test_price_service_stacks_multipliers() -> None:
    result = price_service(
        _service(),
        quantity=1,
        recent_requests=11,
        requested_delivery_time=NOW + timedelta(hours=2),
        priority="URGENT",
        now=NOW,
    )
    assert result.final_price == Decimal("10.00") * Decimal("1.3") * Decimal("1.5") * Decimal("1.5")
    assert {line.type for line in result.breakdown} == {"base", "fee"}


def test_price_service_rejects_non_positive_quantity() -> None:
    with pytest.raises(ValidationError) as excinfo:
        price_service(_service(), quantity=0, recent_requests=None, now=NOW)
    assert excinfo.value.code == "INVALID_QUANTITY"


def test_order_total_ignores_tiers_when_dynamic_pricing_disabled() -> None:
    assert order_total(_service(pricing_tiers=TIERS), 12) == Decimal("120.00")
    assert order_total(_service(dynamic_pricing=True, pricing_tiers=TIERS), 12) == Decimal("96.00")
