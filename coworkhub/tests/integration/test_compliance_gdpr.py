from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select, update

from coworkhub.core.clock import utc_now
from coworkhub.domain.models import AuditEvent, DataExportRequest, SecurityEvent
from coworkhub.persistence.db import SessionLocal
from coworkhub.tests.utils.auth import create_test_api_key, new_tenant
from coworkhub.tests.utils.client import api_client


def _window(days: int = 7) -> dict[str, str]:
    now = utc_now()
    return {
        "start_date": (now - timedelta(days=days)).isoformat(),
        "end_date": (now + timedelta(hours=1)).isoformat(),
    }


@pytest.mark.asyncio
async def test_security_events_feed_hipaa_report_and_dashboard() -> None:
    tenant_id = new_tenant("compliance")
    _raw, admin, admin_id, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")
    _raw, editor, _editor_id, _key = await create_test_api_key(tenant_id=tenant_id, role="editor")
    async with api_client() as client:
        created = await client.post(
            "/v1/compliance/security-events",
            headers=admin,
            json={
                "event_type": "UNAUTHORIZED_ACCESS",
                "severity": "CRITICAL",
                "description": "Badge reader bypassed",
                "ip_address": "10.0.0.8",
            },
        )
        assert created.status_code == 201, created.text
        event = created.json()["data"]
        assert event["resolved"] is False

        hipaa = await client.post("/v1/compliance/reports/hipaa", headers=admin, json=_window())
        assert hipaa.status_code == 200, hipaa.text
        report = hipaa.json()["data"]
        assert report["framework"] == "HIPAA"
        assert report["summary"]["unauthorized_access"] == 1
        assert report["summary"]["security_incidents"] == 1
        assert report["risk_assessment"]["critical_findings"] == 1
        assert report["disclosures"]["breach_notifications"][0]["outcome"] == "WARNING"

        dashboard = await client.get("/v1/compliance/dashboard", headers=admin, params={"period_days": 7})
        assert [alert["id"] for alert in dashboard.json()["data"]["alerts"]] == [event["id"]]
        assert dashboard.json()["data"]["trends"]["security_events"] == {"UNAUTHORIZED_ACCESS": 1}

        resolved = await client.post(
            f"/v1/compliance/security-events/{event['id']}/resolve",
            headers=admin,
            json={"notes": "Reader firmware patched"},
        )
        assert resolved.json()["data"]["resolved"] is True
        assert resolved.json()["data"]["metadata"]["resolved_by"] == admin_id
        twice = await client.post(f"/v1/compliance/security-events/{event['id']}/resolve", headers=admin)
        assert twice.json()["error"]["code"] == "SECURITY_EVENT_RESOLVED"

        after = await client.get("/v1/compliance/dashboard", headers=admin, params={"period_days": 7})
        data = after.json()["data"]
        assert data["alerts"] == []
        assert set(data["frameworks"]) == {"sox", "gdpr", "hipaa", "pci_dss"}
        assert 0 <= data["overall_score"] <= 100

        forbidden = await client.post("/v1/compliance/reports/sox", headers=editor, json=_window())
        assert forbidden.status_code == 403


@pytest.mark.asyncio
async def test_report_generation_is_audited_and_validates_window() -> None:
    tenant_id = new_tenant("reports")
    _raw, admin, _admin_id, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")
    now = utc_now()
    async with api_client() as client:
        sox = await client.post("/v1/compliance/reports/sox", headers=admin, json=_window(30))
        assert sox.json()["data"]["framework"] == "SOX"
        assert set(sox.json()["data"]["financial_controls"]) == {
            "invoice_creation",
            "payment_processing",
            "financial_reporting",
            "user_access",
        }

        pci = await client.post("/v1/compliance/reports/pci-dss", headers=admin, json=_window(30))
        assert pci.json()["data"]["framework"] == "PCI_DSS"

        inverted = await client.post(
            "/v1/compliance/reports/gdpr",
            headers=admin,
            json={"start_date": now.isoformat(), "end_date": (now - timedelta(days=1)).isoformat()},
        )
    assert inverted.status_code == 400
    assert inverted.json()["error"]["code"] == "INVALID_REPORT_WINDOW"

    async with SessionLocal() as session:
        rows = (
            await session.execute(
                select(AuditEvent).where(
                    AuditEvent.tenant_id == tenant_id, AuditEvent.resource_type == "ComplianceReport"
                )
            )
        ).scalars().all()
    assert {row.action for row in rows} == {"READ"}
    assert len(rows) == 2


@pytest.mark.asyncio
async def test_retention_policy_execution_and_report() -> None:
    tenant_id = new_tenant("retention")
    _raw, admin, _admin_id, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")
    async with api_client() as client:
        for days_ago in (100, 1):
            await client.post(
                "/v1/compliance/security-events",
                headers=admin,
                json={
                    "event_type": "SUSPICIOUS_ACTIVITY",
                    "severity": "LOW",
                    "ip_address": "192.0.2.4",
                    "occurred_at": (utc_now() - timedelta(days=days_ago)).isoformat(),
                },
            )

        too_short = await client.post(
            "/v1/gdpr/retention-policies",
            headers=admin,
            json={
                "name": "Audit trail",
                "entity_type": "AuditLog",
                "retention_period_days": 90,
                "action": "DELETE",
                "legal_basis": "LEGAL_OBLIGATION",
            },
        )
        assert too_short.json()["error"]["code"] == "RETENTION_BELOW_MINIMUM"

        created = await client.post(
            "/v1/gdpr/retention-policies",
            headers=admin,
            json={
                "name": "Security event scrub",
                "entity_type": "SecurityEvent",
                "retention_period_days": 30,
                "action": "ANONYMIZE",
                "legal_basis": "LEGITIMATE_INTERESTS",
            },
        )
        assert created.status_code == 201, created.text
        policy = created.json()["data"]
        assert policy["criteria"] == {"field": "occurred_at", "operation": "older_than", "value": None}

        before = await client.get("/v1/gdpr/retention/report", headers=admin)
        assert before.json()["data"]["compliance_score"] == 90
        assert before.json()["data"]["upcoming_actions"][0]["record_count"] == 1

        executed = await client.post("/v1/gdpr/retention/execute", headers=admin)
        assert executed.status_code == 200, executed.text
        [execution] = executed.json()["data"]
        assert execution["status"] == "SUCCESS"
        assert execution["records_processed"] == 1
        assert execution["records_anonymized"] == 1

        after = await client.get("/v1/gdpr/retention/report", headers=admin)
        assert after.json()["data"]["compliance_score"] == 100
        assert after.json()["data"]["violations"] == []

        paused = await client.patch(
            f"/v1/gdpr/retention-policies/{policy['id']}", headers=admin, json={"is_active": False}
        )
        assert paused.json()["data"]["is_active"] is False

    async with SessionLocal() as session:
        events = (
            await session.execute(
                select(SecurityEvent)
                .where(SecurityEvent.tenant_id == tenant_id)
                .order_by(SecurityEvent.occurred_at)
            )
        ).scalars().all()
    assert events[0].ip_address is None
    assert events[0].metadata_json == {"anonymized": True}
    assert events[1].ip_address == "192.0.2.4"


@pytest.mark.asyncio
async def test_consent_export_and_anonymization() -> None:
    tenant_id = new_tenant("subjects")
    _raw, admin, _admin_id, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")
    _raw, member, member_id, _key = await create_test_api_key(
        tenant_id=tenant_id, role="reader", email="member@hub.test"
    )
    async with api_client() as client:
        unknown = await client.post(
            "/v1/gdpr/consents",
            headers=admin,
            json={"user_id": "ghost", "consent_type": "MARKETING", "purpose": "News", "is_granted": True, "version": "1"},
        )
        assert unknown.json()["error"]["code"] == "USER_NOT_FOUND"

        granted = await client.post(
            "/v1/gdpr/consents",
            headers=admin,
            json={
                "user_id": member_id,
                "consent_type": "MARKETING",
                "purpose": "Monthly newsletter",
                "is_granted": True,
                "version": "2026-01",
                "expiry_days": 365,
            },
        )
        assert granted.status_code == 201, granted.text
        assert granted.json()["data"]["expires_at"] is not None

        status = await client.get(f"/v1/gdpr/consents/{member_id}", headers=admin)
        assert status.json()["data"]["consents"][0]["status"] == "GRANTED"

        withdrawn = await client.post(
            "/v1/gdpr/consents/withdraw",
            headers=admin,
            json={"user_id": member_id, "consent_type": "MARKETING", "reason": "Too many emails"},
        )
        assert withdrawn.json()["data"]["withdrawal_reason"] == "Too many emails"
        again = await client.post(
            "/v1/gdpr/consents/withdraw", headers=admin, json={"user_id": member_id, "consent_type": "MARKETING"}
        )
        assert again.status_code == 404
        assert again.json()["error"]["code"] == "CONSENT_NOT_FOUND"

        report = await client.get("/v1/gdpr/consents/report", headers=admin)
        assert report.json()["data"]["withdrawn_consents"] == 1
        assert report.json()["data"]["compliance_score"] == 0

        export = await client.post("/v1/gdpr/exports", headers=admin, json={"user_id": member_id})
        assert export.status_code == 201, export.text
        export_id = export.json()["data"]["id"]
        assert export.json()["data"]["status"] == "COMPLETED"

        download = await client.get(f"/v1/gdpr/exports/{export_id}/download", headers=admin)
        payload = download.json()["data"]
        assert payload["profile"]["id"] == member_id
        assert payload["profile"]["email"] == "member@hub.test"
        assert [row["consent_type"] for row in payload["consents"]] == ["MARKETING"]

        anonymized = await client.post(
            f"/v1/gdpr/users/{member_id}/anonymize", headers=admin, json={"reason": "Erasure request"}
        )
        assert anonymized.status_code == 200, anonymized.text
        assert anonymized.json()["data"]["api_keys_revoked"] == 1
        assert (await client.get("/v1/me", headers=member)).status_code == 401

        repeat = await client.post(
            f"/v1/gdpr/users/{member_id}/anonymize", headers=admin, json={"reason": "Erasure request"}
        )
        assert repeat.json()["error"]["code"] == "USER_ALREADY_ANONYMIZED"

        gdpr = await client.post("/v1/compliance/reports/gdpr", headers=admin, json=_window(1))
    subject_requests = gdpr.json()["data"]["data_subject_requests"]
    assert subject_requests["exports"] == 1
    assert subject_requests["anonymizations"] == 1

    async with SessionLocal() as session:
        exports = (
            await session.execute(
                select(AuditEvent).where(AuditEvent.tenant_id == tenant_id, AuditEvent.action == "EXPORT_DATA")
            )
        ).scalars().all()
    assert [row.resource_id for row in exports] == [export_id]


@pytest.mark.asyncio
async def test_expired_export_download_is_gone() -> None:
    tenant_id = new_tenant("export-ttl")
    _raw, admin, admin_id, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")
    async with api_client() as client:
        export = await client.post("/v1/gdpr/exports", headers=admin, json={"user_id": admin_id})
        assert export.status_code == 201, export.text
        export_id = export.json()["data"]["id"]
        assert (await client.get(f"/v1/gdpr/exports/{export_id}/download", headers=admin)).status_code == 200

        async with SessionLocal() as session:
            await session.execute(
                update(DataExportRequest)
                .where(DataExportRequest.id == export_id)
                .values(expires_at=utc_now() - timedelta(minutes=1))
            )
            await session.commit()

        expired = await client.get(f"/v1/gdpr/exports/{export_id}/download", headers=admin)
        missing = await client.get("/v1/gdpr/exports/unknown/download", headers=admin)
    assert expired.status_code == 410
    assert expired.json()["error"]["code"] == "EXPORT_EXPIRED"
    assert missing.status_code == 404
