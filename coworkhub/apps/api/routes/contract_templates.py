from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.apps.api.auditing import audit_action
from coworkhub.apps.api.deps import Principal, get_db, reject_tenant_id_in_body, require_role
from coworkhub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from coworkhub.apps.api.response import SuccessEnvelope, success_response
from coworkhub.apps.api.routes.contracts import ContractResponse, PartyPayload, contract_response
from coworkhub.core.clock import as_utc
from coworkhub.domain.enums import ContractType, TemplateVariableType
from coworkhub.domain.models import ContractTemplate
from coworkhub.services import contract_templates as templates_service


router = APIRouter(prefix="/contract-templates", tags=["contract-templates"], responses=DEFAULT_ERROR_RESPONSES)


class VariableRulesPayload(BaseModel):
    model_config = {"extra": "forbid"}

    min: float | None = None
    max: float | None = None
    pattern: str | None = None
    options: list[str] | None = None


class VariablePayload(BaseModel):
    model_config = {"extra": "forbid"}

    name: str = Field(min_length=1, max_length=100)
    type: TemplateVariableType = "text"
    label: str | None = Field(default=None, max_length=200)
    description: str | None = None
    required: bool = False
    default_value: Any = None
    validation: VariableRulesPayload | None = None


class SectionPayload(BaseModel):
    model_config = {"extra": "forbid"}

    id: str = Field(min_length=1, max_length=100)
    title: str = Field(min_length=1, max_length=200)
    content: str = ""
    order: int = Field(default=1, ge=1)
    is_optional: bool = False
    variables: list[str] = Field(default_factory=list)


class TemplateCreateRequest(BaseModel):
    model_config = {"extra": "forbid"}

    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    category: str = Field(min_length=1, max_length=100)
    contract_type: ContractType = "CUSTOM"
    content: str = Field(min_length=1)
    variables: list[VariablePayload] = Field(default_factory=list)
    sections: list[SectionPayload] = Field(default_factory=list)
    is_active: bool = True
    metadata: dict[str, Any] = Field(default_factory=dict)


class TemplateUpdateRequest(BaseModel):
    model_config = {"extra": "forbid"}

    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    category: str | None = Field(default=None, min_length=1, max_length=100)
    contract_type: ContractType | None = None
    content: str | None = Field(default=None, min_length=1)
    variables: list[VariablePayload] | None = None
    sections: list[SectionPayload] | None = None
    is_active: bool | None = None
    metadata: dict[str, Any] | None = None


class DuplicateRequest(BaseModel):
    model_config = {"extra": "forbid"}

    new_name: str = Field(min_length=1, max_length=200)


class PreviewRequest(BaseModel):
    model_config = {"extra": "forbid"}

    sample_data: dict[str, Any] = Field(default_factory=dict)
    currency: str = Field(default="USD", min_length=3, max_length=3)


class GenerateContractRequest(BaseModel):
    model_config = {"extra": "forbid"}

    variables: dict[str, Any] = Field(default_factory=dict)
    parties: list[PartyPayload]
    start_date: datetime
    end_date: datetime | None = None
    value: Decimal | None = Field(default=None, ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    type: ContractType | None = None
    selected_sections: list[str] | None = None


class TemplateResponse(BaseModel):
    id: str
    name: str
    description: str | None
    category: str
    contract_type: str
    content: str
    variables: list[dict[str, Any]]
    sections: list[dict[str, Any]]
    is_active: bool
    metadata: dict[str, Any]
    created_by: str | None
    created_at: str | None
    updated_at: str | None


class TemplatePageResponse(BaseModel):
    templates: list[TemplateResponse]
    total: int
    page: int
    limit: int
    pages: int


class CategoryCountResponse(BaseModel):
    category: str
    count: int


class TemplateCheckResponse(BaseModel):
    is_valid: bool
    errors: list[str]
    warnings: list[str]


class PreviewResponse(BaseModel):
    content: str
    missing_variables: list[str]


class TemplateDeletedResponse(BaseModel):
    id: str
    deleted: bool


def _iso(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value else None


def _to_response(template: ContractTemplate) -> TemplateResponse:
    return TemplateResponse(
        id=template.id,
        name=template.name,
        description=template.description,
        category=template.category,
        contract_type=template.contract_type,
        content=template.content,
        variables=list(template.variables or []),
        sections=list(template.sections or []),
        is_active=template.is_active,
        metadata=dict(template.metadata_json or {}),
        created_by=template.created_by,
        created_at=_iso(template.created_at),
        updated_at=_iso(template.updated_at),
    )


def _variables(variables: list[VariablePayload]) -> list[dict[str, Any]]:
    return [variable.model_dump(exclude_none=True) for variable in variables]


@router.post(
    "",
    status_code=201,
    response_model=SuccessEnvelope[TemplateResponse] | TemplateResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def create_template(
    request: Request,
    payload: TemplateCreateRequest,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    template = await templates_service.create_template(
        db,
        tenant_id=principal.tenant_id,
        created_by=principal.subject_id,
        name=payload.name,
        category=payload.category,
        content=payload.content,
        variables=_variables(payload.variables),
        sections=[section.model_dump() for section in payload.sections],
        description=payload.description,
        contract_type=payload.contract_type,
        is_active=payload.is_active,
        metadata=payload.metadata,
    )
    response = _to_response(template)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="contract_template.created",
        action="CREATE",
        resource_type="ContractTemplate",
        resource_id=response.id,
        metadata={"category": response.category},
    )
    return success_response(request=request, data=response)


@router.get("", response_model=SuccessEnvelope[TemplatePageResponse] | TemplatePageResponse)
async def list_templates(
    request: Request,
    category: str | None = None,
    is_active: bool | None = None,
    search: str | None = None,
    sort_by: Literal["name", "category", "created_at", "updated_at"] = "name",
    sort_order: Literal["asc", "desc"] = "asc",
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    templates, total = await templates_service.list_templates(
        db,
        tenant_id=principal.tenant_id,
        category=category,
        is_active=is_active,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    payload = TemplatePageResponse(
        templates=[_to_response(template) for template in templates],
        total=total,
        page=page,
        limit=limit,
        pages=(total + limit - 1) // limit,
    )
    return success_response(request=request, data=payload)


@router.get(
    "/categories",
    response_model=SuccessEnvelope[list[CategoryCountResponse]] | list[CategoryCountResponse],
)
async def template_categories(
    request: Request,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    categories = await templates_service.template_categories(db, tenant_id=principal.tenant_id)
    return success_response(request=request, data=[CategoryCountResponse(**item) for item in categories])


@router.get("/{template_id}", response_model=SuccessEnvelope[TemplateResponse] | TemplateResponse)
async def get_template(
    template_id: str,
    request: Request,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    template = await templates_service.get_template(db, tenant_id=principal.tenant_id, template_id=template_id)
    return success_response(request=request, data=_to_response(template))


@router.patch(
    "/{template_id}",
    response_model=SuccessEnvelope[TemplateResponse] | TemplateResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def update_template(
    template_id: str,
    request: Request,
    payload: TemplateUpdateRequest,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Only description and metadata may be cleared with null.
    changes = {
        key: value
        for key, value in payload.model_dump(exclude_unset=True).items()
        if value is not None or key in ("description", "metadata")
    }
    if payload.variables is not None:
        changes["variables"] = _variables(payload.variables)
    template = await templates_service.update_template(
        db, tenant_id=principal.tenant_id, template_id=template_id, changes=changes
    )
    response = _to_response(template)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="contract_template.updated",
        action="UPDATE",
        resource_type="ContractTemplate",
        resource_id=response.id,
        metadata={"fields": sorted(changes)},
    )
    return success_response(request=request, data=response)


@router.delete(
    "/{template_id}",
    response_model=SuccessEnvelope[TemplateDeletedResponse] | TemplateDeletedResponse,
)
async def delete_template(
    template_id: str,
    request: Request,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await templates_service.delete_template(db, tenant_id=principal.tenant_id, template_id=template_id)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="contract_template.deleted",
        action="DELETE",
        resource_type="ContractTemplate",
        resource_id=template_id,
    )
    return success_response(request=request, data=TemplateDeletedResponse(id=template_id, deleted=True))


@router.post(
    "/{template_id}/duplicate",
    status_code=201,
    response_model=SuccessEnvelope[TemplateResponse] | TemplateResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def duplicate_template(
    template_id: str,
    request: Request,
    payload: DuplicateRequest,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    template = await templates_service.duplicate_template(
        db,
        tenant_id=principal.tenant_id,
        template_id=template_id,
        new_name=payload.new_name,
        created_by=principal.subject_id,
    )
    response = _to_response(template)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="contract_template.duplicated",
        action="CREATE",
        resource_type="ContractTemplate",
        resource_id=response.id,
        metadata={"source_id": template_id},
    )
    return success_response(request=request, data=response)


@router.get(
    "/{template_id}/validate",
    response_model=SuccessEnvelope[TemplateCheckResponse] | TemplateCheckResponse,
)
async def validate_template(
    template_id: str,
    request: Request,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await templates_service.validate_template(db, tenant_id=principal.tenant_id, template_id=template_id)
    return success_response(request=request, data=TemplateCheckResponse(**result))


@router.post(
    "/{template_id}/preview",
    response_model=SuccessEnvelope[PreviewResponse] | PreviewResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def preview_template(
    template_id: str,
    request: Request,
    payload: PreviewRequest,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    preview = await templates_service.preview_template(
        db,
        tenant_id=principal.tenant_id,
        template_id=template_id,
        sample_data=payload.sample_data,
        currency=payload.currency,
    )
    return success_response(request=request, data=PreviewResponse(**preview))


@router.post(
    "/{template_id}/generate",
    status_code=201,
    response_model=SuccessEnvelope[ContractResponse] | ContractResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def generate_contract(
    template_id: str,
    request: Request,
    payload: GenerateContractRequest,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    contract = await templates_service.generate_contract(
        db,
        tenant_id=principal.tenant_id,
        created_by=principal.subject_id,
        template_id=template_id,
        variables=payload.variables,
        parties=[party.model_dump() for party in payload.parties],
        start_date=as_utc(payload.start_date),
        end_date=as_utc(payload.end_date),
        value=payload.value,
        currency=payload.currency,
        title=payload.title,
        description=payload.description,
        contract_type=payload.type,
        selected_sections=payload.selected_sections,
    )
    response = contract_response(contract)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="contract.generated",
        action="CREATE",
        resource_type="Contract",
        resource_id=response.id,
        metadata={"template_id": template_id},
    )
    return success_response(request=request, data=response)
