from __future__ import annotations

from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError

from coworkhub.core.clock import utc_now
from coworkhub.persistence.repos import catalog as catalog_repo
from coworkhub.tests.utils.auth import create_test_api_key, new_tenant
from coworkhub.tests.utils.client import api_client


TIERS = [
    {"min_quantity": 1, "max_quantity": 9, "price_per_unit": "10.00"},
    {"min_quantity": 10, "max_quantity": None, "price_per_unit": "8.00"},
]


async def _create_service(client: AsyncClient, headers: dict[str, str], **overrides) -> dict:
    payload = {
        "name": "Colour Printing",
        "category": "PRINTING",
        "type": "ON_DEMAND",
        "price": "10.00",
        "description": "A4 colour prints",
        "tags": ["print", "office"],
    }
    payload.update(overrides)
    response = await client.post("/v1/services", headers=headers, json=payload)
    assert response.status_code == 201, response.text
    return response.json()["data"]


@pytest.mark.asyncio
async def test_catalog_crud_filters_and_search() -> None:
    tenant_id = new_tenant("catalog")
    _raw, admin, _admin_id, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")
    _raw, reader, _reader_id, _key = await create_test_api_key(tenant_id=tenant_id, role="reader")
    async with api_client() as client:
        printing = await _create_service(client, admin)
        coffee = await _create_service(
            client,
            admin,
            name="Barista Coffee",
            category="COFFEE",
            price="3.50",
            description="Espresso drinks at the front desk",
            tags=["drinks"],
        )
        assert printing["price"] == 10.0
        assert printing["type"] == "ON_DEMAND"

        forbidden = await client.post(
            "/v1/services",
            headers=reader,
            json={"name": "Lockers", "category": "STORAGE", "type": "SUBSCRIPTION", "price": "20"},
        )
        assert forbidden.status_code == 403

        bad_category = await client.post(
            "/v1/services",
            headers=admin,
            json={"name": "Gym", "category": "GYM", "type": "ON_DEMAND", "price": "5"},
        )
        assert bad_category.status_code == 422

        page = await client.get("/v1/services", headers=reader, params={"min_price": "5"})
        assert page.json()["data"]["total"] == 1
        assert page.json()["data"]["services"][0]["id"] == printing["id"]

        by_category = await client.get("/v1/services/category/COFFEE", headers=reader)
        assert [row["id"] for row in by_category.json()["data"]] == [coffee["id"]]

        search = await client.get("/v1/services/search", headers=reader, params={"q": "PRINT"})
        assert [row["id"] for row in search.json()["data"]] == [printing["id"]]

        featured = await client.get("/v1/services/featured", headers=reader, params={"limit": 1})
        assert len(featured.json()["data"]) == 1

        updated = await client.patch(
            f"/v1/services/{coffee['id']}", headers=admin, json={"requires_approval": True}
        )
        assert updated.json()["data"]["requires_approval"] is True

        removed = await client.delete(f"/v1/services/{coffee['id']}", headers=admin)
        assert removed.json()["data"]["is_active"] is False
        search_after = await client.get("/v1/services/search", headers=reader, params={"q": "coffee"})
        assert search_after.json()["data"] == []


@pytest.mark.asyncio
async def test_price_calculation_uses_tiers_and_config_updates() -> None:
    tenant_id = new_tenant("pricing")
    _raw, admin, _admin_id, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")
    _raw, reader, _reader_id, _key = await create_test_api_key(tenant_id=tenant_id, role="reader")
    async with api_client() as client:
        service = await _create_service(client, admin, dynamic_pricing=True, pricing_tiers=TIERS)

        quote = await client.post(
            "/v1/pricing/calculate", headers=reader, json={"service_id": service["id"], "quantity": 12}
        )
        assert quote.status_code == 200, quote.text
        result = quote.json()["data"]
        assert result["subtotal"] == 96.0
        assert result["final_price"] == 96.0
        assert result["savings"] == 24.0
        assert result["applied_tier"]["min_quantity"] == 10

        bulk = await client.post(
            "/v1/pricing/calculate/bulk",
            headers=reader,
            json={
                "requests": [
                    {"service_id": service["id"], "quantity": 2},
                    {"service_id": service["id"], "quantity": 1, "priority": "URGENT"},
                ]
            },
        )
        assert [item["final_price"] for item in bulk.json()["data"]] == [20.0, 15.0]

        missing = await client.post(
            "/v1/pricing/calculate", headers=reader, json={"service_id": "nope", "quantity": 1}
        )
        assert missing.status_code == 404
        assert missing.json()["error"]["code"] == "SERVICE_NOT_FOUND"

        reader_config = await client.put(
            f"/v1/pricing/services/{service['id']}/config", headers=reader, json={"price": "12.00"}
        )
        assert reader_config.status_code == 403

        config = await client.put(
            f"/v1/pricing/services/{service['id']}/config",
            headers=admin,
            json={"price": "12.00", "dynamic_pricing": False},
        )
        assert config.status_code == 200
        assert config.json()["data"]["price"] == 12.0

        requote = await client.post(
            "/v1/pricing/calculate", headers=reader, json={"service_id": service["id"], "quantity": 12}
        )
        assert requote.json()["data"]["final_price"] == 144.0
        assert requote.json()["data"]["applied_tier"] is None


@pytest.mark.asyncio
async def test_seasonal_and_promotional_pricing_are_recorded_on_metadata() -> None:
    tenant_id = new_tenant("promo")
    _raw, admin, _admin_id, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")
    start = utc_now() + timedelta(days=1)
    async with api_client() as client:
        service = await _create_service(client, admin)

        seasonal = await client.post(
            "/v1/pricing/seasonal",
            headers=admin,
            json={
                "service_ids": [service["id"]],
                "multiplier": "1.25",
                "start_date": start.isoformat(),
                "end_date": (start + timedelta(days=30)).isoformat(),
            },
        )
        assert seasonal.status_code == 200, seasonal.text
        assert seasonal.json()["data"][0]["metadata"]["seasonal_pricing"]["multiplier"] == "1.25"

        inverted = await client.post(
            "/v1/pricing/seasonal",
            headers=admin,
            json={
                "service_ids": [service["id"]],
                "multiplier": "1.25",
                "start_date": start.isoformat(),
                "end_date": (start - timedelta(days=1)).isoformat(),
            },
        )
        assert inverted.json()["error"]["code"] == "INVALID_DATE_RANGE"

        promo = await client.post(
            f"/v1/pricing/services/{service['id']}/promotions",
            headers=admin,
            json={"discount_percentage": "15", "valid_until": (start + timedelta(days=7)).isoformat()},
        )
        assert promo.status_code == 201
        code = promo.json()["data"]["promo_code"]
        assert code.startswith("PROMO_")

        fetched = await client.get(f"/v1/services/{service['id']}", headers=admin)
    promotion = fetched.json()["data"]["metadata"]["promotional_pricing"]
    assert promotion["code"] == code
    assert promotion["is_active"] is True


@pytest.mark.asyncio
async def test_unknown_request_fields_are_rejected() -> None:
    tenant_id = new_tenant("strict")
    _raw, admin, _admin_id, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")
    async with api_client() as client:
        response = await client.post(
            "/v1/services",
            headers=admin,
            json={"name": "Lockers", "category": "STORAGE", "type": "SUBSCRIPTION", "price": "20", "bogus_field": 1},
        )
        listed = await client.get("/v1/services", headers=admin)
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "REQUEST_VALIDATION_ERROR"
    assert listed.json()["data"]["total"] == 0


@pytest.mark.asyncio
async def test_demand_count_failure_falls_back_to_neutral_multiplier(monkeypatch) -> None:
    tenant_id = new_tenant("demand")
    _raw, admin, _admin_id, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")

    async def failing_count(*_args, **_kwargs) -> int:
        raise OperationalError("SELECT count(*) FROM service_requests", {}, Exception("database unavailable"))

    async with api_client() as client:
        service = await _create_service(client, admin)
        monkeypatch.setattr(catalog_repo, "count_recent_requests", failing_count)
        quote = await client.post(
            "/v1/pricing/calculate",
            headers=admin,
            json={
                "service_id": service["id"],
                "quantity": 1,
                "requested_delivery_time": (utc_now() + timedelta(days=3)).isoformat(),
            },
        )
    assert quote.status_code == 200, quote.text
    result = quote.json()["data"]
    assert result["demand_multiplier"] == 1.0
    assert result["time_multiplier"] == 1.0
    assert result["final_price"] == 10.0


@pytest.mark.asyncio
async def test_pricing_analytics_buckets_and_optimization() -> None:
    tenant_id = new_tenant("price-analytics")
    _raw, admin, _admin_id, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")
    _raw, reader, _reader_id, _key = await create_test_api_key(tenant_id=tenant_id, role="reader")
    async with api_client() as client:
        empty = await client.get("/v1/pricing/analytics", headers=admin)
        assert empty.json()["data"]["revenue_by_price_range"] == []

        service = await _create_service(client, admin, name="Meeting Catering", category="FOOD", price="100.00")
        for quantity in (1, 2):
            created = await client.post(
                "/v1/service-requests", headers=reader, json={"service_id": service["id"], "quantity": quantity}
            )
            assert created.status_code == 201, created.text
        # Orders averaged 150 against the new price of 200.
        await client.put(f"/v1/pricing/services/{service['id']}/config", headers=admin, json={"price": "200.00"})

        assert (await client.get("/v1/pricing/analytics", headers=reader)).status_code == 403
        analytics = await client.get("/v1/pricing/analytics", headers=admin, params={"service_id": service["id"]})
        assert analytics.status_code == 200, analytics.text
        data = analytics.json()["data"]
        assert data["total_revenue"] == 300.0
        assert data["average_order_value"] == 150.0
        assert data["pricing_efficiency"] == 0.0
        buckets = {row["price_range"]: row for row in data["revenue_by_price_range"]}
        assert buckets["$100-$500"] == {"price_range": "$100-$500", "order_count": 2, "revenue": 300.0}
        assert buckets["$0-$10"]["order_count"] == 0
        [recommendation] = data["optimal_price_recommendations"]
        assert recommendation["recommended_price"] == 180.0
        assert recommendation["expected_impact"] == "Increase demand by 20-30%"

        optimized = await client.get(
            f"/v1/pricing/services/{service['id']}/optimize", headers=admin, params={"target_metric": "volume"}
        )
    result = optimized.json()["data"]
    assert result["current_price"] == 200.0
    assert result["recommended_price"] == 180.0
    assert result["confidence"] == 0.75
    assert result["target_metric"] == "volume"
