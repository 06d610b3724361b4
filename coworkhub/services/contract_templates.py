from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
import logging
import re
from typing import Any
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.core.clock import utc_now
from coworkhub.core.errors import ConflictError, NotFoundError, ValidationError
from coworkhub.domain.enums import CONTRACT_TYPES, TEMPLATE_VARIABLE_TYPES
from coworkhub.domain.models import Contract, ContractTemplate
from coworkhub.persistence.db import commit_or_raise
from coworkhub.persistence.repos import contract_templates as templates_repo
from coworkhub.persistence.repos import contracts as contracts_repo
from coworkhub.services import contracts as contracts_service
from coworkhub.services.contracts import CLOSED_STATUSES


logger = logging.getLogger(__name__)

VARIABLE_NAME_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*\}\}")

_UPDATABLE_FIELDS = {
    "name",
    "description",
    "category",
    "contract_type",
    "content",
    "variables",
    "sections",
    "is_active",
    "metadata",
}


@dataclass
class TemplateCheck:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def as_dict(self) -> dict[str, Any]:
        return {"is_valid": self.is_valid, "errors": list(self.errors), "warnings": list(self.warnings)}


def placeholders(text: str | None) -> list[str]:
    """Return placeholder names in order of first appearance."""
    seen: list[str] = []
    for match in PLACEHOLDER_PATTERN.finditer(text or ""):
        if match.group(1) not in seen:
            seen.append(match.group(1))
    return seen


def normalize_variables(variables: list[dict[str, Any]]) -> list[dict[str, Any]]:
    names: set[str] = set()
    normalized: list[dict[str, Any]] = []
    for variable in variables:
        name = str(variable.get("name") or "")
        if not VARIABLE_NAME_PATTERN.match(name):
            raise ValidationError(
                f"Invalid variable name: {name or '<empty>'}",
                code="TEMPLATE_VARIABLE_NAME_INVALID",
                details={"name": name},
            )
        if name in names:
            raise ValidationError(
                f"Duplicate variable name: {name}", code="TEMPLATE_VARIABLE_DUPLICATE", details={"name": name}
            )
        var_type = variable.get("type", "text")
        if var_type not in TEMPLATE_VARIABLE_TYPES:
            raise ValidationError(
                f"Unsupported variable type: {var_type}",
                code="TEMPLATE_VARIABLE_TYPE_INVALID",
                details={"name": name, "type": var_type},
            )
        rules = dict(variable.get("validation") or {})
        if rules.get("pattern"):
            try:
                re.compile(rules["pattern"])
            except re.error as exc:
                raise ValidationError(
                    f"Invalid pattern for variable {name}",
                    code="TEMPLATE_VARIABLE_PATTERN_INVALID",
                    details={"name": name},
                ) from exc
        names.add(name)
        normalized.append(
            {
                "name": name,
                "type": var_type,
                "label": variable.get("label") or name,
                "description": variable.get("description"),
                "required": bool(variable.get("required", False)),
                "default_value": variable.get("default_value"),
                "validation": rules,
            }
        )
    return normalized


def normalize_sections(sections: list[dict[str, Any]]) -> list[dict[str, Any]]:
    ids: set[str] = set()
    normalized: list[dict[str, Any]] = []
    for section in sections:
        section_id = str(section.get("id") or "").strip()
        if not section_id:
            raise ValidationError("Section id is required", code="TEMPLATE_SECTION_INVALID")
        if section_id in ids:
            raise ValidationError(
                f"Duplicate section id: {section_id}",
                code="TEMPLATE_SECTION_INVALID",
                details={"section_id": section_id},
            )
        order = int(section.get("order", 1))
        if order < 1:
            raise ValidationError(
                "Section order must be at least 1",
                code="TEMPLATE_SECTION_INVALID",
                details={"section_id": section_id},
            )
        ids.add(section_id)
        normalized.append(
            {
                "id": section_id,
                "title": section.get("title") or section_id,
                "content": section.get("content") or "",
                "order": order,
                "is_optional": bool(section.get("is_optional", False)),
                "variables": list(section.get("variables") or []),
            }
        )
    return sorted(normalized, key=lambda item: (item["order"], item["id"]))


def check_template(
    content: str, variables: list[dict[str, Any]], sections: list[dict[str, Any]]
) -> TemplateCheck:
    """Cross-check placeholders against declared variables.

    Placeholders with no declared variable are errors; declared variables
    that nothing references are only warnings.
    """
    check = TemplateCheck()
    used = placeholders(content)
    for section in sections:
        used.extend(name for name in placeholders(section.get("content")) if name not in used)
    declared = [variable["name"] for variable in variables]
    undefined = [name for name in used if name not in declared]
    if undefined:
        check.errors.append(f"Undefined variables in content: {', '.join(undefined)}")
    unused = [name for name in declared if name not in used]
    if unused:
        check.warnings.append(f"Unused variables: {', '.join(unused)}")
    if not content.strip():
        check.errors.append("Template content is required")
    return check


def _raise_if_invalid(check: TemplateCheck) -> None:
    if check.is_valid:
        return
    raise ValidationError(
        check.errors[0],
        code="TEMPLATE_INVALID",
        details={"errors": check.errors, "warnings": check.warnings},
    )


def _invalid_value(variable: dict[str, Any], reason: str) -> ValidationError:
    return ValidationError(
        f"Invalid value for {variable['name']}: {reason}",
        code="TEMPLATE_VARIABLE_INVALID",
        details={"name": variable["name"]},
    )


def _as_decimal(variable: dict[str, Any], value: Any) -> Decimal:
    if isinstance(value, bool):
        raise _invalid_value(variable, "expected a number")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise _invalid_value(variable, "expected a number") from exc


def _as_date(variable: dict[str, Any], value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value)).date()
    except ValueError as exc:
        raise _invalid_value(variable, "expected an ISO date") from exc


def check_value(variable: dict[str, Any], value: Any) -> None:
    rules = variable.get("validation") or {}
    var_type = variable["type"]
    if var_type in ("number", "currency"):
        amount = _as_decimal(variable, value)
        if rules.get("min") is not None and amount < Decimal(str(rules["min"])):
            raise _invalid_value(variable, f"must be at least {rules['min']}")
        if rules.get("max") is not None and amount > Decimal(str(rules["max"])):
            raise _invalid_value(variable, f"must be at most {rules['max']}")
    elif var_type == "date":
        _as_date(variable, value)
    elif var_type == "list":
        options = rules.get("options") or []
        if options and value not in options:
            raise _invalid_value(variable, f"must be one of {', '.join(map(str, options))}")
    elif var_type == "text" and rules.get("pattern"):
        if not re.fullmatch(rules["pattern"], str(value)):
            raise _invalid_value(variable, "does not match the required pattern")


def format_value(variable: dict[str, Any], value: Any, *, currency: str = "USD") -> str:
    var_type = variable["type"]
    if var_type == "currency":
        amount = _as_decimal(variable, value)
        if currency == "USD":
            return f"${amount:,.2f}"
        return f"{amount:,.2f} {currency}"
    if var_type == "number":
        amount = _as_decimal(variable, value)
        if amount == amount.to_integral_value():
            return str(int(amount))
        return format(amount.normalize(), "f")
    if var_type == "date":
        return _as_date(variable, value).isoformat()
    if var_type == "boolean":
        if isinstance(value, str):
            return "Yes" if value.strip().lower() in ("true", "yes", "1") else "No"
        return "Yes" if value else "No"
    return str(value)


def render(text: str, formatted: dict[str, str]) -> str:
    # Placeholders without a value stay in place.
    return PLACEHOLDER_PATTERN.sub(lambda match: formatted.get(match.group(1), match.group(0)), text)


def sample_value(variable: dict[str, Any]) -> Any:
    var_type = variable["type"]
    if var_type == "number":
        return 100
    if var_type == "currency":
        return 1000
    if var_type == "date":
        return utc_now().date()
    if var_type == "boolean":
        return True
    if var_type == "list":
        options = (variable.get("validation") or {}).get("options") or []
        return options[0] if options else "Option 1"
    return f"[Sample {variable.get('label') or variable['name']}]"


def _select_sections(template: ContractTemplate, selected: list[str] | None) -> list[dict[str, Any]]:
    sections = template.sections or []
    if selected is None:
        return list(sections)
    known = {section["id"] for section in sections}
    unknown = [section_id for section_id in selected if section_id not in known]
    if unknown:
        raise ValidationError(
            f"Unknown sections: {', '.join(unknown)}",
            code="TEMPLATE_SECTION_NOT_FOUND",
            details={"section_ids": unknown},
        )
    return [section for section in sections if section["id"] in selected]


def compose_body(template: ContractTemplate, sections: list[dict[str, Any]]) -> str:
    parts = [template.content]
    for section in sections:
        parts.append(f"{section['title']}\n{section['content']}")
    return "\n\n".join(part for part in parts if part)


async def _ensure_unique_name(
    session: AsyncSession, tenant_id: str, name: str, *, exclude_id: str | None = None
) -> None:
    existing = await templates_repo.get_template_by_name(session, tenant_id, name)
    if existing is not None and existing.id != exclude_id:
        raise ConflictError("A contract template with this name already exists", code="TEMPLATE_NAME_CONFLICT")


def _validate_contract_type(contract_type: str) -> None:
    if contract_type not in CONTRACT_TYPES:
        raise ValidationError(f"Unsupported contract type: {contract_type}", code="INVALID_CONTRACT_TYPE")


async def create_template(
    session: AsyncSession,
    *,
    tenant_id: str,
    created_by: str,
    name: str,
    category: str,
    content: str,
    variables: list[dict[str, Any]],
    sections: list[dict[str, Any]] | None = None,
    description: str | None = None,
    contract_type: str = "CUSTOM",
    is_active: bool = True,
    metadata: dict[str, Any] | None = None,
) -> ContractTemplate:
    if not name or not name.strip():
        raise ValidationError("Template name is required", code="TEMPLATE_NAME_REQUIRED")
    if not category or not category.strip():
        raise ValidationError("Template category is required", code="TEMPLATE_CATEGORY_REQUIRED")
    _validate_contract_type(contract_type)
    normalized_variables = normalize_variables(variables)
    normalized_sections = normalize_sections(sections or [])
    _raise_if_invalid(check_template(content, normalized_variables, normalized_sections))
    name = name.strip()
    await _ensure_unique_name(session, tenant_id, name)

    template = ContractTemplate(
        id=uuid4().hex,
        tenant_id=tenant_id,
        name=name,
        description=description,
        category=category.strip(),
        contract_type=contract_type,
        content=content,
        variables=normalized_variables,
        sections=normalized_sections,
        is_active=is_active,
        metadata_json=dict(metadata or {}),
        created_by=created_by,
    )
    session.add(template)
    await commit_or_raise(session, context="creating contract template")
    logger.info("contract_template_created tenant_id=%s template_id=%s", tenant_id, template.id)
    return template


async def get_template(session: AsyncSession, *, tenant_id: str, template_id: str) -> ContractTemplate:
    template = await templates_repo.get_template(session, tenant_id, template_id)
    if template is None:
        raise NotFoundError("Contract template not found", code="TEMPLATE_NOT_FOUND")
    return template


async def list_templates(
    session: AsyncSession,
    *,
    tenant_id: str,
    category: str | None = None,
    is_active: bool | None = None,
    search: str | None = None,
    sort_by: str = "name",
    sort_order: str = "asc",
    page: int = 1,
    limit: int = 10,
) -> tuple[list[ContractTemplate], int]:
    rows = await templates_repo.list_templates(
        session,
        tenant_id,
        category=category,
        is_active=is_active,
        search=search,
        sort_by=sort_by,
        descending=sort_order == "desc",
    )
    offset = (page - 1) * limit
    return rows[offset : offset + limit], len(rows)


async def update_template(
    session: AsyncSession, *, tenant_id: str, template_id: str, changes: dict[str, Any]
) -> ContractTemplate:
    template = await get_template(session, tenant_id=tenant_id, template_id=template_id)
    unknown = set(changes) - _UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unsupported fields: {', '.join(sorted(unknown))}", code="TEMPLATE_FIELD_INVALID")

    if "name" in changes:
        if not changes["name"] or not changes["name"].strip():
            raise ValidationError("Template name is required", code="TEMPLATE_NAME_REQUIRED")
        changes["name"] = changes["name"].strip()
        await _ensure_unique_name(session, tenant_id, changes["name"], exclude_id=template.id)
    if "contract_type" in changes:
        _validate_contract_type(changes["contract_type"])
    if "variables" in changes:
        changes["variables"] = normalize_variables(changes["variables"])
    if "sections" in changes:
        changes["sections"] = normalize_sections(changes["sections"])
    # The merged template is checked, not just the fields being changed.
    _raise_if_invalid(
        check_template(
            changes.get("content", template.content),
            changes.get("variables", template.variables or []),
            changes.get("sections", template.sections or []),
        )
    )

    for key, value in changes.items():
        if key == "metadata":
            template.metadata_json = dict(value or {})
        else:
            setattr(template, key, value)
    template.updated_at = utc_now()
    await commit_or_raise(session, context="updating contract template")
    logger.info("contract_template_updated tenant_id=%s template_id=%s", tenant_id, template.id)
    return template


async def _contracts_using(session: AsyncSession, tenant_id: str, template_id: str) -> list[Contract]:
    contracts = await contracts_repo.list_contracts(session, tenant_id)
    return [
        contract
        for contract in contracts
        if (contract.metadata_json or {}).get("template_id") == template_id
        and contract.status not in CLOSED_STATUSES
    ]


async def delete_template(session: AsyncSession, *, tenant_id: str, template_id: str) -> None:
    template = await get_template(session, tenant_id=tenant_id, template_id=template_id)
    in_use = await _contracts_using(session, tenant_id, template.id)
    if in_use:
        raise ConflictError(
            "Template is referenced by open contracts",
            code="TEMPLATE_IN_USE",
            details={"contract_ids": [contract.id for contract in in_use]},
        )
    await session.delete(template)
    await commit_or_raise(session, context="deleting contract template")
    logger.info("contract_template_deleted tenant_id=%s template_id=%s", tenant_id, template_id)


async def duplicate_template(
    session: AsyncSession, *, tenant_id: str, template_id: str, new_name: str, created_by: str
) -> ContractTemplate:
    source = await get_template(session, tenant_id=tenant_id, template_id=template_id)
    return await create_template(
        session,
        tenant_id=tenant_id,
        created_by=created_by,
        name=new_name,
        category=source.category,
        content=source.content,
        variables=[dict(variable) for variable in source.variables or []],
        sections=[dict(section) for section in source.sections or []],
        description=source.description,
        contract_type=source.contract_type,
        metadata={**(source.metadata_json or {}), "duplicated_from": source.id},
    )


async def template_categories(session: AsyncSession, *, tenant_id: str) -> list[dict[str, Any]]:
    rows = await templates_repo.category_counts(session, tenant_id)
    return [{"category": category, "count": count} for category, count in rows]


async def validate_template(session: AsyncSession, *, tenant_id: str, template_id: str) -> dict[str, Any]:
    template = await get_template(session, tenant_id=tenant_id, template_id=template_id)
    return check_template(template.content, template.variables or [], template.sections or []).as_dict()


def resolve_values(
    variables: list[dict[str, Any]], provided: dict[str, Any], *, currency: str = "USD"
) -> dict[str, str]:
    """Merge provided values with defaults and format each for the body.

    Raises ``ValidationError`` listing every required variable that has
    neither a provided value nor a default.
    """
    missing = [
        variable["name"]
        for variable in variables
        if variable.get("required")
        and provided.get(variable["name"]) is None
        and variable.get("default_value") is None
    ]
    if missing:
        raise ValidationError(
            f"Missing required variables: {', '.join(missing)}",
            code="TEMPLATE_VARIABLES_MISSING",
            details={"missing": missing},
        )
    formatted: dict[str, str] = {}
    for variable in variables:
        value = provided.get(variable["name"])
        if value is None:
            value = variable.get("default_value")
        if value is None:
            continue
        check_value(variable, value)
        formatted[variable["name"]] = format_value(variable, value, currency=currency)
    return formatted


async def preview_template(
    session: AsyncSession,
    *,
    tenant_id: str,
    template_id: str,
    sample_data: dict[str, Any] | None = None,
    currency: str = "USD",
) -> dict[str, Any]:
    template = await get_template(session, tenant_id=tenant_id, template_id=template_id)
    sample_data = sample_data or {}
    formatted: dict[str, str] = {}
    generated: list[str] = []
    for variable in template.variables or []:
        value = sample_data.get(variable["name"])
        if value is None:
            value = variable.get("default_value")
        if value is None:
            value = sample_value(variable)
            generated.append(variable["name"])
        check_value(variable, value)
        formatted[variable["name"]] = format_value(variable, value, currency=currency)
    body = compose_body(template, list(template.sections or []))
    return {"content": render(body, formatted), "missing_variables": generated}


async def generate_contract(
    session: AsyncSession,
    *,
    tenant_id: str,
    created_by: str,
    template_id: str,
    variables: dict[str, Any],
    parties: list[dict[str, Any]],
    start_date: datetime,
    end_date: datetime | None = None,
    value: Decimal | None = None,
    currency: str = "USD",
    title: str | None = None,
    description: str | None = None,
    contract_type: str | None = None,
    selected_sections: list[str] | None = None,
) -> Contract:
    """Render a template and store the result as a DRAFT contract."""
    template = await get_template(session, tenant_id=tenant_id, template_id=template_id)
    if not template.is_active:
        raise ValidationError("Contract template is inactive", code="TEMPLATE_INACTIVE")
    sections = _select_sections(template, selected_sections)
    formatted = resolve_values(template.variables or [], variables, currency=currency)
    terms = render(compose_body(template, sections), formatted)

    client_name = variables.get("client_name") or next(
        (party.get("name") for party in parties if party.get("role") == "CLIENT"), None
    )
    contract = await contracts_service.create_contract(
        session,
        tenant_id=tenant_id,
        created_by=created_by,
        title=title or f"{template.name} - {client_name or 'Contract'}",
        contract_type=contract_type or template.contract_type,
        parties=parties,
        start_date=start_date,
        end_date=end_date,
        description=description if description is not None else template.description,
        value=value,
        currency=currency,
        terms=terms,
        metadata={
            "template_id": template.id,
            "template_name": template.name,
            "generated_at": utc_now().isoformat(),
            "variables_used": sorted(formatted),
            "sections_included": [section["id"] for section in sections],
        },
    )
    logger.info(
        "contract_generated_from_template tenant_id=%s template_id=%s contract_id=%s",
        tenant_id,
        template.id,
        contract.id,
    )
    return contract
