from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient, Response
from sqlalchemy import select

from coworkhub.core.clock import utc_now
from coworkhub.core.config import get_settings
from coworkhub.domain.models import RenewalNotification
from coworkhub.persistence.db import SessionLocal
from coworkhub.services import renewal_notifications
from coworkhub.services.renewal_notifications import build_renewal_signature
from coworkhub.tests.utils.auth import create_test_api_key, new_tenant
from coworkhub.tests.utils.client import api_client


PARTIES = [
    {"name": "Acme Ltd", "email": "ops@acme.test", "role": "CLIENT"},
    {"name": "Hub Legal", "email": "legal@hub.test", "role": "COMPANY"},
]


async def _active_contract(client: AsyncClient, headers: dict[str, str], *, end_date: datetime) -> dict:
    created = await client.post(
        "/v1/contracts",
        headers=headers,
        json={
            "title": "Private office",
            "type": "MEMBERSHIP",
            "parties": PARTIES,
            "start_date": (utc_now() - timedelta(days=300)).isoformat(),
            "end_date": end_date.isoformat(),
            "value": "1000.00",
        },
    )
    assert created.status_code == 201, created.text
    contract_id = created.json()["data"]["id"]
    await client.post(f"/v1/contracts/{contract_id}/send-for-signature", headers=headers)
    for party in PARTIES:
        await client.post(f"/v1/contracts/{contract_id}/sign", headers=headers, json={"party_email": party["email"]})
    activated = await client.post(f"/v1/contracts/{contract_id}/activate", headers=headers)
    assert activated.json()["data"]["status"] == "ACTIVE", activated.text
    return activated.json()["data"]


@pytest.mark.asyncio
async def test_rule_crud_and_validation() -> None:
    tenant_id = new_tenant("rules")
    _raw, admin, admin_id, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")
    _raw, editor, _editor_id, _key = await create_test_api_key(tenant_id=tenant_id, role="editor")
    async with api_client() as client:
        missing_days = await client.post(
            "/v1/renewals/rules",
            headers=admin,
            json={
                "name": "Expiry rule",
                "contract_types": ["MEMBERSHIP"],
                "trigger": "DAYS_BEFORE_EXPIRY",
                "renewal_type": "EXTEND_CURRENT",
            },
        )
        assert missing_days.json()["error"]["code"] == "RULE_TRIGGER_DAYS_REQUIRED"

        steep = await client.post(
            "/v1/renewals/rules",
            headers=admin,
            json={
                "name": "Steep",
                "contract_types": ["MEMBERSHIP"],
                "trigger": "MANUAL",
                "renewal_type": "EXTEND_CURRENT",
                "price_adjustment": {"type": "PERCENTAGE", "value": 150},
            },
        )
        assert steep.json()["error"]["code"] == "RULE_INVALID_ADJUSTMENT"

        created = await client.post(
            "/v1/renewals/rules",
            headers=admin,
            json={
                "name": "Standard membership",
                "contract_types": ["MEMBERSHIP", "SERVICE"],
                "trigger": "DAYS_BEFORE_EXPIRY",
                "trigger_days": 30,
                "renewal_type": "EXTEND_CURRENT",
            },
        )
        assert created.status_code == 201, created.text
        rule = created.json()["data"]
        assert rule["renewal_period"] == 12
        assert rule["created_by"] == admin_id
        assert rule["notification_settings"]["enabled"] is False

        assert (await client.get("/v1/renewals/rules", headers=editor)).status_code == 403

        updated = await client.patch(
            f"/v1/renewals/rules/{rule['id']}", headers=admin, json={"is_active": False, "renewal_period": 6}
        )
        assert updated.json()["data"]["renewal_period"] == 6
        active_only = await client.get("/v1/renewals/rules", headers=admin, params={"is_active": True})
        assert active_only.json()["data"] == []

        deleted = await client.delete(f"/v1/renewals/rules/{rule['id']}", headers=admin)
        assert deleted.json()["data"] == {"id": rule["id"], "deleted": True}
        gone = await client.get(f"/v1/renewals/rules/{rule['id']}", headers=admin)
    assert gone.status_code == 404
    assert gone.json()["error"]["code"] == "RENEWAL_RULE_NOT_FOUND"


@pytest.mark.asyncio
async def test_manual_proposal_approval_extends_contract() -> None:
    tenant_id = new_tenant("proposals")
    _raw, admin, admin_id, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")
    end_date = (utc_now() + timedelta(days=60)).replace(microsecond=0)
    async with api_client() as client:
        rule = (
            await client.post(
                "/v1/renewals/rules",
                headers=admin,
                json={
                    "name": "Ten percent uplift",
                    "contract_types": ["MEMBERSHIP"],
                    "trigger": "MANUAL",
                    "renewal_type": "EXTEND_CURRENT",
                    "price_adjustment": {"type": "PERCENTAGE", "value": 10},
                },
            )
        ).json()["data"]
        contract = await _active_contract(client, admin, end_date=end_date)

        created = await client.post(
            "/v1/renewals/proposals", headers=admin, json={"contract_id": contract["id"], "notes": "Annual"}
        )
        assert created.status_code == 201, created.text
        proposal = created.json()["data"]
        assert proposal["status"] == "PENDING"
        assert proposal["rule_id"] == rule["id"]
        assert proposal["current_value"] == 1000.0
        assert proposal["proposed_value"] == 1100.0
        assert proposal["price_adjustment"]["reason"] == "10% price adjustment"
        assert proposal["metadata"]["auto_generated"] is True

        duplicate = await client.post("/v1/renewals/proposals", headers=admin, json={"contract_id": contract["id"]})
        assert duplicate.status_code == 409
        assert duplicate.json()["error"]["code"] == "RENEWAL_PROPOSAL_PENDING"

        blocked = await client.delete(f"/v1/renewals/rules/{rule['id']}", headers=admin)
        assert blocked.json()["error"]["code"] == "RULE_HAS_PENDING_PROPOSALS"

        no_reason = await client.post(
            f"/v1/renewals/proposals/{proposal['id']}/process", headers=admin, json={"action": "DECLINE"}
        )
        assert no_reason.json()["error"]["code"] == "DECLINE_REASON_REQUIRED"

        approved = await client.post(
            f"/v1/renewals/proposals/{proposal['id']}/process",
            headers=admin,
            json={"action": "APPROVE", "modify_terms": True, "new_value": "1050.00"},
        )
        assert approved.status_code == 200, approved.text
        assert approved.json()["data"]["status"] == "APPROVED"
        assert approved.json()["data"]["approved_by"] == admin_id

        again = await client.post(
            f"/v1/renewals/proposals/{proposal['id']}/process", headers=admin, json={"action": "APPROVE"}
        )
        assert again.json()["error"]["code"] == "RENEWAL_PROPOSAL_NOT_PENDING"

        renewed = (await client.get(f"/v1/contracts/{contract['id']}", headers=admin)).json()["data"]
        assert renewed["status"] == "ACTIVE"
        assert renewed["value"] == 1050.0
        assert renewed["renewal_status"] == "APPROVED"
        assert datetime.fromisoformat(renewed["end_date"]).year == end_date.year + 1

        listed = await client.get("/v1/renewals/proposals", headers=admin, params={"status": "APPROVED"})
        assert listed.json()["data"]["total"] == 1

        stats = await client.get("/v1/renewals/stats", headers=admin)
    data = stats.json()["data"]
    assert data["total_proposals"] == 1
    assert data["approved"] == 1
    assert data["success_rate"] == 100.0


@pytest.mark.asyncio
async def test_sweep_auto_renews_into_new_contract_once() -> None:
    tenant_id = new_tenant("sweep")
    _raw, admin, _admin_id, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")
    end_date = utc_now() + timedelta(days=29, hours=12)
    async with api_client() as client:
        await client.post(
            "/v1/renewals/rules",
            headers=admin,
            json={
                "name": "Auto renew",
                "contract_types": ["MEMBERSHIP"],
                "trigger": "DAYS_BEFORE_EXPIRY",
                "trigger_days": 30,
                "renewal_type": "NEW_CONTRACT",
                "auto_approve": True,
                "notification_settings": {"enabled": True, "types": ["IN_APP"], "recipients": ["ops@acme.test"]},
            },
        )
        contract = await _active_contract(client, admin, end_date=end_date)

        first = await client.post("/v1/renewals/sweep", headers=admin)
        assert first.status_code == 200, first.text
        assert first.json()["data"] == {"created": 1, "processed": 1, "notifications": 1, "errors": 0}

        second = await client.post("/v1/renewals/sweep", headers=admin)
        assert second.json()["data"]["created"] == 0

        original = (await client.get(f"/v1/contracts/{contract['id']}", headers=admin)).json()["data"]
        assert original["status"] == "TERMINATED"
        assert original["renewal_status"] == "AUTO_RENEWED"

        active = await client.get("/v1/contracts", headers=admin, params={"status": "ACTIVE"})
    [renewed] = active.json()["data"]["contracts"]
    assert renewed["title"] == "Private office (Renewed)"
    assert renewed["metadata"]["renewed_from"] == contract["id"]

    async with SessionLocal() as session:
        notifications = (
            await session.execute(select(RenewalNotification).where(RenewalNotification.tenant_id == tenant_id))
        ).scalars().all()
    assert [(row.channel, row.status) for row in notifications] == [("IN_APP", "queued")]


@pytest.mark.asyncio
async def test_webhook_notifications_are_signed_after_commit(monkeypatch) -> None:
    tenant_id = new_tenant("webhooks")
    _raw, admin, _admin_id, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")
    delivered: list[tuple[str, bytes, dict[str, str]]] = []

    class StubClient:
        def __init__(self, timeout: float) -> None:
            self.timeout = timeout

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def post(self, url, content, headers):
            delivered.append((url, content, headers))
            return Response(202)

    async with api_client() as client:
        rule = (
            await client.post(
                "/v1/renewals/rules",
                headers=admin,
                json={
                    "name": "Webhook fan-out",
                    "contract_types": ["MEMBERSHIP"],
                    "trigger": "MANUAL",
                    "renewal_type": "EXTEND_CURRENT",
                    "notification_settings": {
                        "enabled": True,
                        "types": ["WEBHOOK"],
                        "recipients": ["ops@acme.test"],
                    },
                },
            )
        ).json()["data"]
        contract = await _active_contract(client, admin, end_date=utc_now() + timedelta(days=45))

        # No webhook configured: the row is still recorded, as failed.
        created = await client.post(
            "/v1/renewals/proposals", headers=admin, json={"contract_id": contract["id"], "rule_id": rule["id"]}
        )
        assert created.status_code == 201, created.text
        proposal = created.json()["data"]
        assert proposal["metadata"]["auto_generated"] is False

        monkeypatch.setenv("RENEWAL_WEBHOOK_URL", "http://renewals.test/hook")
        monkeypatch.setenv("RENEWAL_WEBHOOK_SECRET", "hook-secret")
        get_settings.cache_clear()
        monkeypatch.setattr(renewal_notifications.httpx, "AsyncClient", StubClient)

        approved = await client.post(
            f"/v1/renewals/proposals/{proposal['id']}/process", headers=admin, json={"action": "APPROVE"}
        )
        assert approved.status_code == 200, approved.text

    [(url, body, headers)] = delivered
    assert url == "http://renewals.test/hook"
    assert headers["X-Renewal-Event"] == "PROPOSAL_APPROVED"
    assert headers["X-Renewal-Signature"] == build_renewal_signature("hook-secret", body)
    assert b'"recipient":"ops@acme.test"' in body

    async with SessionLocal() as session:
        rows = (
            await session.execute(
                select(RenewalNotification)
                .where(RenewalNotification.tenant_id == tenant_id)
                .order_by(RenewalNotification.id)
            )
        ).scalars().all()
    assert [(row.event_type, row.channel, row.status) for row in rows] == [
        ("PROPOSAL_CREATED", "WEBHOOK", "failed"),
        ("PROPOSAL_APPROVED", "WEBHOOK", "sent"),
    ]
    assert rows[0].error_message == "Renewal webhook is not configured"
    assert rows[1].error_message is None
