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


def _template_payload(**overrides) -> dict:
    payload = {
        "name": "Dedicated desk agreement",
        "description": "Standard membership terms",
        "category": "membership",
        "contract_type": "MEMBERSHIP",
        "content": "This agreement is made with {{ client_name }} for {{desk_count}} desks.",
        "variables": [
            {"name": "client_name", "label": "Client", "required": True},
            {"name": "desk_count", "type": "number", "default_value": 1},
            {"name": "monthly_fee", "type": "currency", "required": True},
            {"name": "parking", "type": "boolean", "default_value": False},
        ],
        "sections": [
            {
                "id": "fees",
                "title": "Fees",
                "content": "Monthly fee: {{monthly_fee}}",
                "order": 1,
            },
            {
                "id": "parking",
                "title": "Parking",
                "content": "Parking included: {{ parking }}",
                "order": 2,
                "is_optional": True,
            },
        ],
    }
    payload.update(overrides)
    return payload


async def _create_template(client: AsyncClient, headers: dict[str, str], **overrides) -> dict:
    response = await client.post("/v1/contract-templates", headers=headers, json=_template_payload(**overrides))
    assert response.status_code == 201, response.text
    return response.json()["data"]


@pytest.mark.asyncio
async def test_template_crud_filters_and_categories() -> None:
    tenant_id = new_tenant("templates")
    _raw, editor, editor_id, _key = await create_test_api_key(tenant_id=tenant_id, role="editor")
    _raw, reader, _reader_id, _key = await create_test_api_key(tenant_id=tenant_id, role="reader")
    _raw, admin, _admin_id, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")
    async with api_client() as client:
        forbidden = await client.post("/v1/contract-templates", headers=reader, json=_template_payload())
        assert forbidden.status_code == 403

        template = await _create_template(client, editor)
        assert template["created_by"] == editor_id
        assert template["is_active"] is True
        assert [section["id"] for section in template["sections"]] == ["fees", "parking"]
        assert template["variables"][0]["label"] == "Client"

        duplicate_name = await client.post("/v1/contract-templates", headers=editor, json=_template_payload())
        assert duplicate_name.status_code == 409
        assert duplicate_name.json()["error"]["code"] == "TEMPLATE_NAME_CONFLICT"

        undefined = await client.post(
            "/v1/contract-templates",
            headers=editor,
            json=_template_payload(name="Broken", content="Signed by {{ signatory }}"),
        )
        assert undefined.status_code == 400
        assert undefined.json()["error"]["code"] == "TEMPLATE_INVALID"

        await _create_template(
            client,
            editor,
            name="Event hire",
            description="One-off event space booking",
            category="events",
            contract_type="EVENT_SPACE",
            content="Event for {{client_name}}",
            variables=[{"name": "client_name", "required": True}],
            sections=[],
        )

        listed = await client.get(
            "/v1/contract-templates", headers=reader, params={"search": "membership", "limit": 1}
        )
        assert listed.status_code == 200
        page = listed.json()["data"]
        assert page["total"] == 1
        assert page["pages"] == 1
        assert page["templates"][0]["id"] == template["id"]

        by_category = await client.get("/v1/contract-templates", headers=reader, params={"category": "events"})
        assert [item["name"] for item in by_category.json()["data"]["templates"]] == ["Event hire"]

        categories = await client.get("/v1/contract-templates/categories", headers=reader)
        assert categories.json()["data"] == [
            {"category": "events", "count": 1},
            {"category": "membership", "count": 1},
        ]

        updated = await client.patch(
            f"/v1/contract-templates/{template['id']}",
            headers=editor,
            json={"content": "Agreement for {{ client_name }} covering {{ missing_value }}"},
        )
        assert updated.status_code == 400
        assert updated.json()["error"]["code"] == "TEMPLATE_INVALID"

        deactivated = await client.patch(
            f"/v1/contract-templates/{template['id']}", headers=editor, json={"is_active": False}
        )
        assert deactivated.json()["data"]["is_active"] is False
        active_only = await client.get("/v1/contract-templates", headers=reader, params={"is_active": True})
        assert active_only.json()["data"]["total"] == 1

        copy = await client.post(
            f"/v1/contract-templates/{template['id']}/duplicate",
            headers=editor,
            json={"new_name": "Dedicated desk agreement v2"},
        )
        assert copy.status_code == 201
        assert copy.json()["data"]["is_active"] is True
        assert copy.json()["data"]["metadata"]["duplicated_from"] == template["id"]
        assert copy.json()["data"]["content"] == template["content"]

        editor_delete = await client.delete(f"/v1/contract-templates/{template['id']}", headers=editor)
        assert editor_delete.status_code == 403
        deleted = await client.delete(f"/v1/contract-templates/{template['id']}", headers=admin)
        assert deleted.json()["data"] == {"id": template["id"], "deleted": True}
        missing = await client.get(f"/v1/contract-templates/{template['id']}", headers=reader)
        assert missing.status_code == 404
        assert missing.json()["error"]["code"] == "TEMPLATE_NOT_FOUND"


@pytest.mark.asyncio
async def test_validate_and_preview_template() -> None:
    tenant_id = new_tenant("templates")
    _raw, editor, _editor_id, _key = await create_test_api_key(tenant_id=tenant_id, role="editor")
    _raw, reader, _reader_id, _key = await create_test_api_key(tenant_id=tenant_id, role="reader")
    async with api_client() as client:
        template = await _create_template(
            client,
            editor,
            variables=[
                {"name": "client_name", "label": "Client", "required": True},
                {"name": "desk_count", "type": "number", "default_value": 1},
                {"name": "monthly_fee", "type": "currency", "required": True},
                {"name": "parking", "type": "boolean", "default_value": False},
                {"name": "notes"},
            ],
        )

        checked = await client.get(f"/v1/contract-templates/{template['id']}/validate", headers=reader)
        assert checked.json()["data"] == {
            "is_valid": True,
            "errors": [],
            "warnings": ["Unused variables: notes"],
        }

        preview = await client.post(
            f"/v1/contract-templates/{template['id']}/preview",
            headers=reader,
            json={"sample_data": {"monthly_fee": 450}},
        )
        assert preview.status_code == 200, preview.text
        data = preview.json()["data"]
        assert data["content"] == (
            "This agreement is made with [Sample Client] for 1 desks.\n\n"
            "Fees\nMonthly fee: $450.00\n\n"
            "Parking\nParking included: No"
        )
        assert data["missing_variables"] == ["client_name", "notes"]


@pytest.mark.asyncio
async def test_generate_contract_from_template_creates_draft() -> None:
    tenant_id = new_tenant("templates")
    _raw, editor, editor_id, _key = await create_test_api_key(tenant_id=tenant_id, role="editor")
    _raw, admin, _admin_id, _key = await create_test_api_key(tenant_id=tenant_id, role="admin")
    start = utc_now() + timedelta(days=1)
    async with api_client() as client:
        template = await _create_template(client, editor)
        body = {
            "variables": {"client_name": "Acme Ltd", "desk_count": 3, "monthly_fee": "1250"},
            "parties": PARTIES,
            "start_date": start.isoformat(),
            "end_date": (start + timedelta(days=365)).isoformat(),
            "value": "15000.00",
            "selected_sections": ["fees"],
        }

        missing = await client.post(
            f"/v1/contract-templates/{template['id']}/generate",
            headers=editor,
            json={**body, "variables": {"desk_count": 3}},
        )
        assert missing.status_code == 400
        error = missing.json()["error"]
        assert error["code"] == "TEMPLATE_VARIABLES_MISSING"
        assert error["message"] == "Missing required variables: client_name, monthly_fee"

        unknown_section = await client.post(
            f"/v1/contract-templates/{template['id']}/generate",
            headers=editor,
            json={**body, "selected_sections": ["annex"]},
        )
        assert unknown_section.json()["error"]["code"] == "TEMPLATE_SECTION_NOT_FOUND"

        generated = await client.post(
            f"/v1/contract-templates/{template['id']}/generate", headers=editor, json=body
        )
        assert generated.status_code == 201, generated.text
        contract = generated.json()["data"]
        assert contract["status"] == "DRAFT"
        assert contract["type"] == "MEMBERSHIP"
        assert contract["title"] == "Dedicated desk agreement - Acme Ltd"
        assert contract["created_by"] == editor_id
        assert contract["terms"] == (
            "This agreement is made with Acme Ltd for 3 desks.\n\nFees\nMonthly fee: $1,250.00"
        )
        metadata = contract["metadata"]
        assert metadata["template_id"] == template["id"]
        assert metadata["template_name"] == "Dedicated desk agreement"
        assert metadata["sections_included"] == ["fees"]
        assert metadata["variables_used"] == ["client_name", "desk_count", "monthly_fee", "parking"]

        fetched = await client.get(f"/v1/contracts/{contract['id']}", headers=editor)
        assert fetched.json()["data"]["terms"] == contract["terms"]

        in_use = await client.delete(f"/v1/contract-templates/{template['id']}", headers=admin)
        assert in_use.status_code == 409
        assert in_use.json()["error"]["code"] == "TEMPLATE_IN_USE"

        await client.patch(f"/v1/contract-templates/{template['id']}", headers=editor, json={"is_active": False})
        inactive = await client.post(
            f"/v1/contract-templates/{template['id']}/generate", headers=editor, json=body
        )
        assert inactive.status_code == 400
        assert inactive.json()["error"]["code"] == "TEMPLATE_INACTIVE"
