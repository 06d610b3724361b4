from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select

from coworkhub.core.clock import utc_now
from coworkhub.domain.models import AuditEvent, SecurityEvent
from coworkhub.persistence.db import SessionLocal
from coworkhub.tests.utils.auth import create_test_api_key, new_tenant
from coworkhub.tests.utils.client import api_client


@pytest.mark.asyncio
async def test_health_is_public_and_enveloped() -> None:
    async with api_client() as client:
        response = await client.get("/v1/health", headers={"X-Request-Id": "req-health-1"})
    assert response.status_code == 200
    body = response.json()
    assert body["data"]["status"] == "ok"
    assert body["meta"] == {"request_id": "req-health-1", "api_version": "v1"}
    assert response.headers["X-Request-Id"] == "req-health-1"


@pytest.mark.asyncio
async def test_missing_and_invalid_keys_are_rejected_and_audited() -> None:
    async with api_client() as client:
        missing = await client.get("/v1/me")
        invalid = await client.get("/v1/me", headers={"Authorization": "Bearer chk_nope_nope"})
        malformed = await client.get("/v1/me", headers={"Authorization": "Token abc"})
    assert missing.status_code == 401
    assert missing.json()["error"]["code"] == "AUTH_UNAUTHORIZED"
    assert invalid.status_code == 401
    assert malformed.status_code == 401

    async with SessionLocal() as session:
        failures = (
            await session.execute(
                select(AuditEvent).where(
                    AuditEvent.event_type == "auth.access.failure",
                    AuditEvent.request_id == invalid.headers["X-Request-Id"],
                )
            )
        ).scalars().all()
    assert failures
    assert failures[0].resource_type == "auth"


@pytest.mark.asyncio
async def test_me_returns_principal_and_records_login() -> None:
    tenant_id = new_tenant("me")
    _raw, headers, user_id, key_id = await create_test_api_key(tenant_id=tenant_id, role="editor")
    async with api_client() as client:
        response = await client.get("/v1/me", headers=headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["tenant_id"] == tenant_id
    assert data["role"] == "editor"
    assert data["api_key_id"] == key_id
    assert data["subject_id"] == user_id


@pytest.mark.asyncio
async def test_revoked_and_expired_keys_are_rejected() -> None:
    tenant_id = new_tenant("revoked")
    _raw, revoked_headers, _user, _key = await create_test_api_key(
        tenant_id=tenant_id, role="admin", key_revoked=True
    )
    _raw, expired_headers, _user, _key = await create_test_api_key(
        tenant_id=tenant_id, role="admin", key_expires_at=utc_now() - timedelta(minutes=1)
    )
    _raw, inactive_headers, _user, _key = await create_test_api_key(
        tenant_id=tenant_id, role="admin", user_active=False
    )
    async with api_client() as client:
        assert (await client.get("/v1/me", headers=revoked_headers)).status_code == 401
        assert (await client.get("/v1/me", headers=expired_headers)).status_code == 401
        assert (await client.get("/v1/me", headers=inactive_headers)).status_code == 401


@pytest.mark.asyncio
async def test_insufficient_role_is_forbidden_and_logged_as_security_event() -> None:
    tenant_id = new_tenant("rbac")
    _raw, headers, user_id, _key = await create_test_api_key(tenant_id=tenant_id, role="reader")
    async with api_client() as client:
        response = await client.get("/v1/admin/api-keys", headers=headers)
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "AUTH_FORBIDDEN"

    async with SessionLocal() as session:
        denial = (
            await session.execute(
                select(AuditEvent).where(
                    AuditEvent.tenant_id == tenant_id, AuditEvent.event_type == "rbac.forbidden"
                )
            )
        ).scalar_one()
        security = (
            await session.execute(select(SecurityEvent).where(SecurityEvent.tenant_id == tenant_id))
        ).scalars().all()
    assert denial.metadata_json["required_role"] == "admin"
    assert [event.event_type for event in security] == ["UNAUTHORIZED_ACCESS"]
    assert security[0].user_id == user_id


@pytest.mark.asyncio
async def test_admin_provisions_lists_and_revokes_keys() -> None:
    tenant_id = new_tenant("keys")
    _raw, admin_headers, _admin_id, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")
    async with api_client() as client:
        created = await client.post(
            "/v1/admin/api-keys",
            headers=admin_headers,
            json={"name": "front-desk", "role": "reader", "email": "desk@hub.test"},
        )
        assert created.status_code == 201
        new_key = created.json()["data"]
        assert new_key["api_key"].startswith("chk_")
        reader_headers = {"Authorization": f"Bearer {new_key['api_key']}"}
        assert (await client.get("/v1/me", headers=reader_headers)).status_code == 200

        listed = await client.get("/v1/admin/api-keys", headers=admin_headers)
        assert new_key["key_id"] in {row["key_id"] for row in listed.json()["data"]}
        assert all("api_key" not in row for row in listed.json()["data"])

        revoked = await client.post(f"/v1/admin/api-keys/{new_key['key_id']}/revoke", headers=admin_headers)
        assert revoked.status_code == 200
        assert revoked.json()["data"]["is_active"] is False
        assert (await client.get("/v1/me", headers=reader_headers)).status_code == 401

        events = await client.get(
            "/v1/audit/events", headers=admin_headers, params={"resource_type": "ApiKey"}
        )
    assert events.status_code == 200
    event_types = {item["event_type"] for item in events.json()["data"]["items"]}
    assert {"auth.api_key.created", "auth.api_key.revoked"} <= event_types


@pytest.mark.asyncio
async def test_tenant_id_in_body_is_rejected() -> None:
    tenant_id = new_tenant("body")
    _raw, headers, _user, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")
    async with api_client() as client:
        response = await client.post(
            "/v1/admin/api-keys", headers=headers, json={"role": "reader", "tenant_id": "other"}
        )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "TENANT_ID_NOT_ALLOWED"
