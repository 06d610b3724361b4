from __future__ import annotations

import pytest
from httpx import AsyncClient

from coworkhub.tests.utils.auth import create_test_api_key, new_tenant
from coworkhub.tests.utils.client import api_client


async def _service(client: AsyncClient, headers: dict[str, str], *, requires_approval: bool) -> dict:
    response = await client.post(
        "/v1/services",
        headers=headers,
        json={
            "name": "Event Catering" if requires_approval else "Mail Handling",
            "category": "FOOD" if requires_approval else "MAIL",
            "type": "ONE_TIME" if requires_approval else "ON_DEMAND",
            "price": "25.00",
            "requires_approval": requires_approval,
            "max_quantity": 10,
        },
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


@pytest.mark.asyncio
async def test_approval_assignment_and_completion_flow() -> None:
    tenant_id = new_tenant("requests")
    _raw, admin, admin_id, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")
    _raw, member, member_id, _key = await create_test_api_key(tenant_id=tenant_id, role="reader")
    _raw, staff, staff_id, _key = await create_test_api_key(tenant_id=tenant_id, role="editor")
    async with api_client() as client:
        service = await _service(client, admin, requires_approval=True)

        created = await client.post(
            "/v1/service-requests",
            headers=member,
            json={"service_id": service["id"], "quantity": 2, "priority": "HIGH", "notes": "Lunch for 2"},
        )
        assert created.status_code == 201, created.text
        item = created.json()["data"]
        assert item["status"] == "PENDING"
        assert item["user_id"] == member_id
        assert item["total_amount"] == 50.0

        # Pending requests cannot be assigned yet.
        early = await client.post(
            f"/v1/service-requests/{item['id']}/assign", headers=staff, json={"assigned_to": staff_id}
        )
        assert early.status_code == 400
        assert early.json()["error"]["code"] == "INVALID_STATUS_TRANSITION"

        pending = await client.get("/v1/service-requests/pending-approvals", headers=staff)
        assert [row["id"] for row in pending.json()["data"]["requests"]] == [item["id"]]

        approved = await client.post(
            f"/v1/service-requests/{item['id']}/approval",
            headers=admin,
            json={"approve": True, "notes": "Kitchen confirmed"},
        )
        assert approved.status_code == 200, approved.text
        assert approved.json()["data"]["status"] == "APPROVED"
        assert approved.json()["data"]["approved_by"] == admin_id

        repeat = await client.post(
            f"/v1/service-requests/{item['id']}/approval", headers=admin, json={"approve": True}
        )
        assert repeat.status_code == 404
        assert repeat.json()["error"]["code"] == "SERVICE_REQUEST_NOT_PENDING"

        assigned = await client.post(
            f"/v1/service-requests/{item['id']}/assign", headers=admin, json={"assigned_to": staff_id}
        )
        assert assigned.json()["data"]["status"] == "IN_PROGRESS"

        not_mine = await client.post(
            f"/v1/service-requests/{item['id']}/progress", headers=member, json={"progress_notes": "Hi"}
        )
        assert not_mine.status_code == 404
        assert not_mine.json()["error"]["code"] == "SERVICE_REQUEST_NOT_ASSIGNED"

        progress = await client.post(
            f"/v1/service-requests/{item['id']}/progress",
            headers=staff,
            json={"progress_notes": "Order placed with caterer"},
        )
        assert progress.json()["data"]["progress_notes"] == "Order placed with caterer"

        queue = await client.get("/v1/service-requests/assigned", headers=staff)
        assert [row["id"] for row in queue.json()["data"]["requests"]] == [item["id"]]

        held = await client.post(
            f"/v1/service-requests/{item['id']}/hold", headers=staff, json={"reason": "Waiting on menu"}
        )
        assert held.json()["data"]["status"] == "ON_HOLD"
        resumed = await client.post(f"/v1/service-requests/{item['id']}/resume", headers=staff, json={})
        assert resumed.json()["data"]["status"] == "IN_PROGRESS"

        completed = await client.post(
            f"/v1/service-requests/{item['id']}/complete", headers=staff, json={"notes": "Delivered"}
        )
        data = completed.json()["data"]
        assert data["status"] == "COMPLETED"
        assert data["completed_at"] is not None
        assert data["actual_delivery_time"] is not None

        cancel_done = await client.post(f"/v1/service-requests/{item['id']}/cancel", headers=member)
        assert cancel_done.status_code == 400
        assert cancel_done.json()["error"]["code"] == "INVALID_STATUS_TRANSITION"

        history = await client.get(f"/v1/service-requests/{item['id']}/history", headers=member)
    statuses = [row["status"] for row in history.json()["data"]]
    assert statuses == ["PENDING", "APPROVED", "IN_PROGRESS", "ON_HOLD", "IN_PROGRESS", "COMPLETED"]


@pytest.mark.asyncio
async def test_rejection_records_reason() -> None:
    tenant_id = new_tenant("reject")
    _raw, admin, _admin_id, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")
    _raw, member, _member_id, _key = await create_test_api_key(tenant_id=tenant_id, role="reader")
    async with api_client() as client:
        service = await _service(client, admin, requires_approval=True)
        created = await client.post("/v1/service-requests", headers=member, json={"service_id": service["id"]})
        request_id = created.json()["data"]["id"]
        rejected = await client.post(
            f"/v1/service-requests/{request_id}/approval",
            headers=admin,
            json={"approve": False, "reason": "Budget exceeded"},
        )
    assert rejected.json()["data"]["status"] == "REJECTED"
    assert rejected.json()["data"]["rejection_reason"] == "Budget exceeded"


@pytest.mark.asyncio
async def test_auto_approved_requests_quantity_limits_and_cancellation() -> None:
    tenant_id = new_tenant("auto")
    _raw, admin, _admin_id, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")
    _raw, member, _member_id, _key = await create_test_api_key(tenant_id=tenant_id, role="reader")
    _raw, other, _other_id, _key = await create_test_api_key(tenant_id=tenant_id, role="reader")
    async with api_client() as client:
        service = await _service(client, admin, requires_approval=False)

        too_many = await client.post(
            "/v1/service-requests", headers=member, json={"service_id": service["id"], "quantity": 11}
        )
        assert too_many.status_code == 400
        assert too_many.json()["error"]["code"] == "QUANTITY_ABOVE_MAXIMUM"

        created = await client.post(
            "/v1/service-requests", headers=member, json={"service_id": service["id"], "quantity": 1}
        )
        item = created.json()["data"]
        assert item["status"] == "APPROVED"
        assert item["requires_approval"] is False

        not_pending = await client.post(
            f"/v1/service-requests/{item['id']}/approval", headers=admin, json={"approve": True}
        )
        assert not_pending.status_code == 404

        stranger = await client.post(f"/v1/service-requests/{item['id']}/cancel", headers=other)
        assert stranger.status_code == 403

        cancelled = await client.post(
            f"/v1/service-requests/{item['id']}/cancel", headers=member, json={"reason": "No longer needed"}
        )
        assert cancelled.json()["data"]["status"] == "CANCELLED"

        mine = await client.get("/v1/service-requests/mine", headers=member)
        assert [row["id"] for row in mine.json()["data"]] == [item["id"]]
        assert (await client.get("/v1/service-requests/mine", headers=other)).json()["data"] == []

        member_stats = await client.get("/v1/service-requests/stats", headers=member)
        assert member_stats.status_code == 403
        stats = await client.get("/v1/service-requests/stats", headers=admin)
    data = stats.json()["data"]
    assert data["total"] == 1
    assert data["by_status"] == [{"status": "CANCELLED", "count": 1, "percentage": 100.0}]
    assert data["pending_approvals"] == 0
    assert data["total_amount"] == 25.0
