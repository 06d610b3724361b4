from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient

from coworkhub.core.clock import utc_now
from coworkhub.tests.utils.auth import create_test_api_key, new_tenant
from coworkhub.tests.utils.client import api_client


def _slot(days_ahead: int, hour: int) -> datetime:
    day = (utc_now() + timedelta(days=days_ahead)).replace(minute=0, second=0, microsecond=0)
    return day.replace(hour=hour)


async def _create_space(client: AsyncClient, headers: dict[str, str], **overrides) -> dict:
    payload = {
        "name": "Atlas Room",
        "type": "MEETING_ROOM",
        "capacity": 8,
        "hourly_rate": "40.00",
        "amenities": ["whiteboard", "projector"],
    }
    payload.update(overrides)
    response = await client.post("/v1/spaces", headers=headers, json=payload)
    assert response.status_code == 201, response.text
    return response.json()["data"]


@pytest.mark.asyncio
async def test_space_lifecycle_and_name_uniqueness() -> None:
    tenant_id = new_tenant("spaces")
    _raw, admin, _admin_id, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")
    _raw, reader, _reader_id, _key = await create_test_api_key(tenant_id=tenant_id, role="reader")
    async with api_client() as client:
        space = await _create_space(client, admin)
        assert space["hourly_rate"] == 40.0
        assert space["is_active"] is True

        duplicate = await client.post(
            "/v1/spaces", headers=admin, json={"name": "Atlas Room", "type": "LOUNGE", "capacity": 3}
        )
        assert duplicate.status_code == 409
        assert duplicate.json()["error"]["code"] == "SPACE_NAME_CONFLICT"

        forbidden = await client.post(
            "/v1/spaces", headers=reader, json={"name": "Booth", "type": "PHONE_BOOTH", "capacity": 1}
        )
        assert forbidden.status_code == 403

        updated = await client.patch(f"/v1/spaces/{space['id']}", headers=admin, json={"capacity": 10})
        assert updated.json()["data"]["capacity"] == 10

        listed = await client.get("/v1/spaces", headers=reader, params={"min_capacity": 9})
        assert [row["id"] for row in listed.json()["data"]] == [space["id"]]

        deleted = await client.delete(f"/v1/spaces/{space['id']}", headers=admin)
        assert deleted.status_code == 200
        assert deleted.json()["data"]["is_active"] is False


@pytest.mark.asyncio
async def test_spaces_are_tenant_isolated() -> None:
    tenant_a = new_tenant("iso-a")
    tenant_b = new_tenant("iso-b")
    _raw, admin_a, _id, _key = await create_test_api_key(tenant_id=tenant_a, role="admin")
    _raw, admin_b, _id, _key = await create_test_api_key(tenant_id=tenant_b, role="admin")
    async with api_client() as client:
        space = await _create_space(client, admin_a)
        other = await client.get(f"/v1/spaces/{space['id']}", headers=admin_b)
        assert other.status_code == 404
        # Same name is fine in another tenant.
        await _create_space(client, admin_b)


@pytest.mark.asyncio
async def test_booking_flow_with_conflicts_cost_and_ownership() -> None:
    tenant_id = new_tenant("bookings")
    _raw, admin, _admin_id, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")
    _raw, member, member_id, _key = await create_test_api_key(tenant_id=tenant_id, role="reader")
    _raw, other_member, _other_id, _key = await create_test_api_key(tenant_id=tenant_id, role="reader")
    start = _slot(3, 10)
    async with api_client() as client:
        space = await _create_space(client, admin)

        created = await client.post(
            "/v1/bookings",
            headers=member,
            json={
                "space_id": space["id"],
                "title": "Sprint review",
                "start_time": start.isoformat(),
                "end_time": (start + timedelta(minutes=90)).isoformat(),
            },
        )
        assert created.status_code == 201, created.text
        booking = created.json()["data"]
        assert booking["status"] == "CONFIRMED"
        assert booking["user_id"] == member_id
        assert booking["cost"] == 60.0

        overlap = await client.post(
            "/v1/bookings",
            headers=other_member,
            json={
                "space_id": space["id"],
                "title": "Interview",
                "start_time": (start + timedelta(hours=1)).isoformat(),
                "end_time": (start + timedelta(hours=2)).isoformat(),
            },
        )
        assert overlap.status_code == 409
        assert overlap.json()["error"]["code"] == "BOOKING_CONFLICT"

        # Back-to-back bookings do not overlap.
        adjacent = await client.post(
            "/v1/bookings",
            headers=other_member,
            json={
                "space_id": space["id"],
                "title": "Interview",
                "start_time": (start + timedelta(minutes=90)).isoformat(),
                "end_time": (start + timedelta(hours=2)).isoformat(),
            },
        )
        assert adjacent.status_code == 201

        availability = await client.get(
            f"/v1/spaces/{space['id']}/availability",
            headers=member,
            params={"start_time": start.isoformat(), "end_time": (start + timedelta(hours=1)).isoformat()},
        )
        assert availability.json()["data"]["available"] is False
        assert availability.json()["data"]["conflicts"][0]["booking_id"] == booking["id"]

        stranger_cancel = await client.post(f"/v1/bookings/{booking['id']}/cancel", headers=other_member)
        assert stranger_cancel.status_code == 403

        moved = await client.patch(
            f"/v1/bookings/{booking['id']}",
            headers=member,
            json={"end_time": (start + timedelta(hours=1)).isoformat()},
        )
        assert moved.status_code == 200
        assert moved.json()["data"]["cost"] == 40.0

        upcoming = await client.get("/v1/bookings/upcoming", headers=member)
        assert [row["id"] for row in upcoming.json()["data"]] == [booking["id"]]

        cancelled = await client.post(
            f"/v1/bookings/{booking['id']}/cancel", headers=member, json={"reason": "Moved online"}
        )
        assert cancelled.json()["data"]["status"] == "CANCELLED"
        again = await client.post(f"/v1/bookings/{booking['id']}/cancel", headers=admin)
        assert again.status_code == 400
        assert again.json()["error"]["code"] == "BOOKING_ALREADY_CANCELLED"

        stats = await client.get("/v1/bookings/stats", headers=admin)
    data = stats.json()["data"]
    assert data["total_bookings"] == 2
    assert data["cancelled_bookings"] == 1
    assert data["confirmed_bookings"] == 1


@pytest.mark.asyncio
async def test_booking_rejects_bad_durations() -> None:
    tenant_id = new_tenant("durations")
    _raw, admin, _admin_id, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")
    start = _slot(2, 9)
    async with api_client() as client:
        space = await _create_space(client, admin)
        short = await client.post(
            "/v1/bookings",
            headers=admin,
            json={
                "space_id": space["id"],
                "title": "Quick sync",
                "start_time": start.isoformat(),
                "end_time": (start + timedelta(minutes=15)).isoformat(),
            },
        )
        past = await client.post(
            "/v1/bookings",
            headers=admin,
            json={
                "space_id": space["id"],
                "title": "Yesterday",
                "start_time": (utc_now() - timedelta(days=1)).isoformat(),
                "end_time": (utc_now() - timedelta(days=1, minutes=-60)).isoformat(),
            },
        )
    assert short.json()["error"]["code"] == "BOOKING_TOO_SHORT"
    assert past.json()["error"]["code"] == "TIME_IN_PAST"


@pytest.mark.asyncio
async def test_available_spaces_excludes_booked_rooms() -> None:
    tenant_id = new_tenant("available")
    _raw, admin, _admin_id, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")
    start = _slot(4, 13)
    end = start + timedelta(hours=1)
    async with api_client() as client:
        busy = await _create_space(client, admin, name="Busy Room")
        free = await _create_space(client, admin, name="Free Room")
        await client.post(
            "/v1/bookings",
            headers=admin,
            json={"space_id": busy["id"], "title": "Hold", "start_time": start.isoformat(), "end_time": end.isoformat()},
        )
        available = await client.get(
            "/v1/spaces/available",
            headers=admin,
            params={"start_time": start.isoformat(), "end_time": end.isoformat(), "capacity": 4},
        )
    ids = {row["id"] for row in available.json()["data"]}
    assert free["id"] in ids
    assert busy["id"] not in ids


@pytest.mark.asyncio
async def test_space_utilization_counts_confirmed_hours_and_peak_slots() -> None:
    tenant_id = new_tenant("utilization")
    _raw, admin, _admin_id, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")
    _raw, member, _member_id, _key = await create_test_api_key(tenant_id=tenant_id, role="reader")
    async with api_client() as client:
        space = await _create_space(client, admin)
        slots = [(_slot(3, 10), 2), (_slot(4, 10), 1), (_slot(4, 14), 1), (_slot(4, 16), 1)]
        booking_ids = []
        for start, hours in slots:
            created = await client.post(
                "/v1/bookings",
                headers=member,
                json={
                    "space_id": space["id"],
                    "title": "Team sync",
                    "start_time": start.isoformat(),
                    "end_time": (start + timedelta(hours=hours)).isoformat(),
                },
            )
            assert created.status_code == 201, created.text
            booking_ids.append(created.json()["data"]["id"])
        # Cancelled bookings do not count towards utilization.
        await client.post(f"/v1/bookings/{booking_ids[-1]}/cancel", headers=member)

        report = await client.get(
            "/v1/spaces/utilization",
            headers=member,
            params={
                "space_id": space["id"],
                "start": _slot(3, 0).isoformat(),
                "end": _slot(5, 0).isoformat(),
            },
        )
    assert report.status_code == 200, report.text
    data = report.json()["data"]
    assert data["total_bookings"] == 3
    assert data["total_hours"] == 4.0
    assert data["period_days"] == 2
    # 4 booked hours over 2 business days of 12 hours.
    assert data["utilization_rate"] == 16.67
    assert data["average_duration_hours"] == 1.33
    assert data["revenue"] == 160.0
    assert data["peak_time_slots"] == [
        {"time_slot": "10:00-11:00", "bookings": 2},
        {"time_slot": "14:00-15:00", "bookings": 1},
    ]
