from __future__ import annotations

from datetime import timedelta

import pytest
from httpx import AsyncClient

from coworkhub.core.clock import utc_now
from coworkhub.tests.utils.auth import create_test_api_key, new_tenant
from coworkhub.tests.utils.client import api_client


PARTIES = [
    {"name": "Acme Ltd", "email": "ops@acme.test", "role": "CLIENT"},
    {"name": "Hub Legal", "email": "legal@hub.test", "role": "COMPANY"},
]


async def _create_contract(client: AsyncClient, headers: dict[str, str], **overrides) -> dict:
    start = utc_now() - timedelta(days=1)
    payload = {
        "title": "Dedicated desk membership",
        "type": "MEMBERSHIP",
        "parties": PARTIES,
        "start_date": start.isoformat(),
        "end_date": (start + timedelta(days=20)).isoformat(),
        "value": "1200.00",
    }
    payload.update(overrides)
    response = await client.post("/v1/contracts", headers=headers, json=payload)
    assert response.status_code == 201, response.text
    return response.json()["data"]


@pytest.mark.asyncio
async def test_contract_signature_and_lifecycle() -> None:
    tenant_id = new_tenant("contracts")
    _raw, editor, editor_id, _key = await create_test_api_key(tenant_id=tenant_id, role="editor")
    _raw, reader, _reader_id, _key = await create_test_api_key(tenant_id=tenant_id, role="reader")
    async with api_client() as client:
        contract = await _create_contract(client, editor)
        assert contract["status"] == "DRAFT"
        assert contract["created_by"] == editor_id
        assert all(party["signed_at"] is None for party in contract["parties"])
        contract_id = contract["id"]

        sign_draft = await client.post(
            f"/v1/contracts/{contract_id}/sign", headers=reader, json={"party_email": "ops@acme.test"}
        )
        assert sign_draft.json()["error"]["code"] == "CONTRACT_NOT_PENDING_SIGNATURE"

        sent = await client.post(f"/v1/contracts/{contract_id}/send-for-signature", headers=editor)
        assert sent.json()["data"]["status"] == "PENDING_SIGNATURE"

        signed = await client.post(
            f"/v1/contracts/{contract_id}/sign", headers=reader, json={"party_email": "OPS@acme.test"}
        )
        assert signed.status_code == 200, signed.text
        assert signed.json()["data"]["signed_at"] is None

        early = await client.post(f"/v1/contracts/{contract_id}/activate", headers=editor)
        assert early.status_code == 400
        assert early.json()["error"]["code"] == "CONTRACT_UNSIGNED_PARTIES"
        assert early.json()["error"]["details"]["unsigned"] == ["legal@hub.test"]

        twice = await client.post(
            f"/v1/contracts/{contract_id}/sign", headers=reader, json={"party_email": "ops@acme.test"}
        )
        assert twice.json()["error"]["code"] == "CONTRACT_PARTY_ALREADY_SIGNED"
        stranger = await client.post(
            f"/v1/contracts/{contract_id}/sign", headers=reader, json={"party_email": "who@else.test"}
        )
        assert stranger.status_code == 404

        countersigned = await client.post(
            f"/v1/contracts/{contract_id}/sign", headers=editor, json={"party_email": "legal@hub.test"}
        )
        assert countersigned.json()["data"]["signed_at"] is not None

        active = await client.post(f"/v1/contracts/{contract_id}/activate", headers=editor)
        assert active.json()["data"]["status"] == "ACTIVE"

        no_cancel = await client.post(f"/v1/contracts/{contract_id}/cancel", headers=editor)
        assert no_cancel.json()["error"]["code"] == "CONTRACT_ACTIVE"

        suspended = await client.post(
            f"/v1/contracts/{contract_id}/suspend", headers=editor, json={"reason": "Payment overdue"}
        )
        assert suspended.json()["data"]["status"] == "SUSPENDED"
        reactivated = await client.post(f"/v1/contracts/{contract_id}/reactivate", headers=editor)
        assert reactivated.json()["data"]["status"] == "ACTIVE"

        expiring = await client.get("/v1/contracts/expiring", headers=reader, params={"days": 30})
        assert [row["id"] for row in expiring.json()["data"]] == [contract_id]

        stats = await client.get("/v1/contracts/stats", headers=editor)
        assert stats.json()["data"]["active_contracts"] == 1
        assert stats.json()["data"]["total_active_value"] == 1200.0

        terminated = await client.post(
            f"/v1/contracts/{contract_id}/terminate", headers=editor, json={"reason": "Client moved out"}
        )
        data = terminated.json()["data"]
        assert data["status"] == "TERMINATED"
        assert data["termination_reason"] == "Client moved out"

        closed = await client.patch(f"/v1/contracts/{contract_id}", headers=editor, json={"title": "Renamed"})
        assert closed.json()["error"]["code"] == "CONTRACT_CLOSED"

        activities = await client.get(f"/v1/contracts/{contract_id}/activities", headers=reader)
    kinds = [row["activity_type"] for row in activities.json()["data"]]
    assert kinds[0] == "CONTRACT_CREATED"
    assert kinds.count("CONTRACT_SIGNED") == 2
    assert kinds[-1] == "CONTRACT_TERMINATED"
    assert {"SIGNATURE_REQUESTED", "CONTRACT_ACTIVATED", "CONTRACT_SUSPENDED", "CONTRACT_REACTIVATED"} <= set(kinds)


@pytest.mark.asyncio
async def test_contract_validation_and_cancellation() -> None:
    tenant_id = new_tenant("contract-rules")
    _raw, editor, _editor_id, _key = await create_test_api_key(tenant_id=tenant_id, role="editor")
    _raw, reader, _reader_id, _key = await create_test_api_key(tenant_id=tenant_id, role="reader")
    start = utc_now() + timedelta(days=5)
    async with api_client() as client:
        one_party = await client.post(
            "/v1/contracts",
            headers=editor,
            json={"title": "Solo", "type": "SERVICE", "parties": PARTIES[:1], "start_date": start.isoformat()},
        )
        assert one_party.json()["error"]["code"] == "CONTRACT_PARTIES_REQUIRED"

        bad_dates = await client.post(
            "/v1/contracts",
            headers=editor,
            json={
                "title": "Backwards",
                "type": "SERVICE",
                "parties": PARTIES,
                "start_date": start.isoformat(),
                "end_date": (start - timedelta(days=1)).isoformat(),
            },
        )
        assert bad_dates.json()["error"]["code"] == "INVALID_CONTRACT_DATES"

        forbidden = await client.post(
            "/v1/contracts",
            headers=reader,
            json={"title": "Nope", "type": "SERVICE", "parties": PARTIES, "start_date": start.isoformat()},
        )
        assert forbidden.status_code == 403

        contract = await _create_contract(client, editor, type="EVENT_SPACE", start_date=start.isoformat(), end_date=None)
        updated = await client.patch(
            f"/v1/contracts/{contract['id']}", headers=editor, json={"value": "900.00"}
        )
        assert updated.json()["data"]["value"] == 900.0

        cancelled = await client.post(
            f"/v1/contracts/{contract['id']}/cancel", headers=editor, json={"reason": "Event moved"}
        )
        assert cancelled.json()["data"]["status"] == "CANCELLED"
        again = await client.post(f"/v1/contracts/{contract['id']}/cancel", headers=editor)
        assert again.json()["error"]["code"] == "CONTRACT_CLOSED"

        listed = await client.get("/v1/contracts", headers=reader, params={"status": "CANCELLED"})
    assert [row["id"] for row in listed.json()["data"]["contracts"]] == [contract["id"]]
