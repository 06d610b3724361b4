from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from coworkhub.core.errors import ValidationError
from coworkhub.domain.models import Space
from coworkhub.services.bookings import compute_cost, validate_duration
from coworkhub.services.catalog import normalize_tiers, validate_service_fields
from coworkhub.services.contracts import validate_parties
from coworkhub.services.spaces import validate_time_window


START = datetime(2026, 5, 4, 9, 0, tzinfo=timezone.utc)


def test_validate_duration_bounds() -> None:
    validate_duration(START, START + timedelta(minutes=30))
    validate_duration(START, START + timedelta(hours=8))
    with pytest.raises(ValidationError) as too_short:
        validate_duration(START, START + timedelta(minutes=29))
    assert too_short.value.code == "BOOKING_TOO_SHORT"
    with pytest.raises(ValidationError) as too_long:
        validate_duration(START, START + timedelta(hours=8, minutes=1))
    assert too_long.value.code == "BOOKING_TOO_LONG"


def test_validate_time_window_rejects_past_and_inverted() -> None:
    with pytest.raises(ValidationError) as inverted:
        validate_time_window(START, START, now=START - timedelta(days=1))
    assert inverted.value.code == "INVALID_TIME_WINDOW"
    with pytest.raises(ValidationError) as past:
        validate_time_window(START, START + timedelta(hours=1), now=START + timedelta(minutes=1))
    assert past.value.code == "TIME_IN_PAST"


def test_compute_cost_prorates_hourly_rate() -> None:
    space = Space(id="s-1", tenant_id="t1", name="Room A", type="MEETING_ROOM", capacity=6, hourly_rate=Decimal("25.00"))
    assert compute_cost(space, START, START + timedelta(minutes=90)) == Decimal("37.50")
    free = Space(id="s-2", tenant_id="t1", name="Lounge", type="COMMON_AREA", capacity=20, hourly_rate=None)
    assert compute_cost(free, START, START + timedelta(hours=2)) is None


def test_normalize_tiers_stores_prices_as_strings() -> None:
    tiers = normalize_tiers([{"min_quantity": 10, "max_quantity": None, "price_per_unit": 8.5}])
    assert tiers == [
        {"min_quantity": 10, "max_quantity": None, "price_per_unit": "8.5", "discount_percentage": None}
    ]


@pytest.mark.parametrize(
    "tier",
    [
        {"min_quantity": 0, "price_per_unit": 1},
        {"min_quantity": 5, "max_quantity": 2, "price_per_unit": 1},
        {"min_quantity": 1, "price_per_unit": -1},
        {"min_quantity": 1, "price_per_unit": 1, "discount_percentage": 120},
    ],
)
def test_normalize_tiers_rejects_invalid(tier: dict) -> None:
    with pytest.raises(ValidationError) as excinfo:
        normalize_tiers([tier])
    assert excinfo.value.code == "INVALID_PRICING_TIER"


def test_validate_service_fields() -> None:
    validate_service_fields(price=Decimal("0"), minimum_order=1, max_quantity=None)
    with pytest.raises(ValidationError):
        validate_service_fields(price=Decimal("-1"), minimum_order=1, max_quantity=None)
    with pytest.raises(ValidationError):
        validate_service_fields(price=None, minimum_order=0, max_quantity=None)
    with pytest.raises(ValidationError):
        validate_service_fields(price=None, minimum_order=5, max_quantity=4)


def test_validate_parties_roster_rules() -> None:
    client = {"name": "Acme", "email": "ops@acme.test", "role": "CLIENT"}
    company = {"name": "Hub", "email": "legal@hub.test", "role": "COMPANY"}
    parties = validate_parties([client, company])
    assert [party["role"] for party in parties] == ["CLIENT", "COMPANY"]
    assert parties[0]["signed_at"] is None

    with pytest.raises(ValidationError) as single:
        validate_parties([client])
    assert single.value.code == "CONTRACT_PARTIES_REQUIRED"
    with pytest.raises(ValidationError) as duplicate:
        validate_parties([client, {**company, "email": "OPS@acme.test"}])
    assert duplicate.value.code == "CONTRACT_PARTY_DUPLICATE"
    with pytest.raises(ValidationError) as roles:
        validate_parties([client, {**client, "email": "other@acme.test"}])
    assert roles.value.code == "CONTRACT_PARTY_ROLES"
