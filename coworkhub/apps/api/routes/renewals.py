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
from coworkhub.core.clock import as_utc
from coworkhub.domain.enums import (
    ContractType,
    NotificationType,
    PriceAdjustmentType,
    ProposalAction,
    ProposalStatus,
    RenewalTrigger,
    RenewalType,
)
from coworkhub.domain.models import RenewalProposal, RenewalRule
from coworkhub.services import renewals as renewals_service


router = APIRouter(prefix="/renewals", tags=["renewals"], responses=DEFAULT_ERROR_RESPONSES)


class PriceAdjustmentPayload(BaseModel):
    model_config = {"extra": "forbid"}

    type: PriceAdjustmentType
    value: float


class NotificationSettingsPayload(BaseModel):
    model_config = {"extra": "forbid"}

    enabled: bool = False
    types: list[NotificationType] = Field(default_factory=list)
    recipients: list[str] = Field(default_factory=list)
    template: str | None = None


class RuleConditionsPayload(BaseModel):
    model_config = {"extra": "forbid"}

    min_contract_value: float | None = None
    max_contract_value: float | None = None
    client_types: list[str] = Field(default_factory=list)
    exclude_client_ids: list[str] = Field(default_factory=list)


class RuleCreateRequest(BaseModel):
    model_config = {"extra": "forbid"}

    name: str = Field(min_length=1, max_length=200)
    contract_types: list[ContractType] = Field(min_length=1)
    trigger: RenewalTrigger
    renewal_type: RenewalType
    trigger_days: int | None = None
    description: str | None = None
    is_active: bool = True
    auto_approve: bool = False
    renewal_period: int = renewals_service.DEFAULT_RENEWAL_PERIOD
    price_adjustment: PriceAdjustmentPayload | None = None
    notification_settings: NotificationSettingsPayload | None = None
    conditions: RuleConditionsPayload | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class RuleUpdateRequest(BaseModel):
    model_config = {"extra": "forbid"}

    name: str | None = Field(default=None, min_length=1, max_length=200)
    contract_types: list[ContractType] | None = None
    trigger: RenewalTrigger | None = None
    renewal_type: RenewalType | None = None
    trigger_days: int | None = None
    description: str | None = None
    is_active: bool | None = None
    auto_approve: bool | None = None
    renewal_period: int | None = None
    price_adjustment: PriceAdjustmentPayload | None = None
    notification_settings: NotificationSettingsPayload | None = None
    conditions: RuleConditionsPayload | None = None
    metadata: dict[str, Any] | None = None


class RuleResponse(BaseModel):
    id: str
    name: str
    description: str | None
    is_active: bool
    contract_types: list[str]
    trigger: str
    trigger_days: int | None
    renewal_type: str
    auto_approve: bool
    renewal_period: int
    price_adjustment: dict[str, Any] | None
    notification_settings: dict[str, Any]
    conditions: dict[str, Any]
    metadata: dict[str, Any]
    created_by: str | None
    created_at: str | None


class RuleDeletedResponse(BaseModel):
    id: str
    deleted: bool


class ProposalCreateRequest(BaseModel):
    model_config = {"extra": "forbid"}

    contract_id: str
    rule_id: str | None = None
    notes: str | None = None
    terms: list[str] = Field(default_factory=list)


class ProposalProcessRequest(BaseModel):
    model_config = {"extra": "forbid"}

    action: ProposalAction
    notes: str | None = None
    decline_reason: str | None = Field(default=None, max_length=1000)
    modify_terms: bool = False
    new_value: Decimal | None = Field(default=None, ge=0)
    new_end_date: datetime | None = None


class ProposalResponse(BaseModel):
    id: str
    contract_id: str
    rule_id: str | None
    current_end_date: str
    proposed_start_date: str
    proposed_end_date: str
    renewal_period: int
    current_value: float | None
    proposed_value: float | None
    price_adjustment: dict[str, Any] | None
    status: str
    renewal_type: str
    terms: list[str]
    notes: str | None
    approved_by: str | None
    approved_at: str | None
    declined_by: str | None
    declined_at: str | None
    decline_reason: str | None
    processed_at: str | None
    metadata: dict[str, Any]
    created_by: str
    created_at: str | None


class ProposalPageResponse(BaseModel):
    proposals: list[ProposalResponse]
    total: int
    page: int
    limit: int


class SweepResponse(BaseModel):
    created: int
    processed: int
    notifications: int
    errors: int


def _iso(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value else None


def _money(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def _rule_response(rule: RenewalRule) -> RuleResponse:
    return RuleResponse(
        id=rule.id,
        name=rule.name,
        description=rule.description,
        is_active=rule.is_active,
        contract_types=list(rule.contract_types or []),
        trigger=rule.trigger,
        trigger_days=rule.trigger_days,
        renewal_type=rule.renewal_type,
        auto_approve=rule.auto_approve,
        renewal_period=rule.renewal_period,
        price_adjustment=rule.price_adjustment,
        notification_settings=dict(rule.notification_settings or {}),
        conditions=dict(rule.conditions or {}),
        metadata=dict(rule.metadata_json or {}),
        created_by=rule.created_by,
        created_at=_iso(rule.created_at),
    )


def _proposal_response(proposal: RenewalProposal) -> ProposalResponse:
    return ProposalResponse(
        id=proposal.id,
        contract_id=proposal.contract_id,
        rule_id=proposal.rule_id,
        current_end_date=_iso(proposal.current_end_date),
        proposed_start_date=_iso(proposal.proposed_start_date),
        proposed_end_date=_iso(proposal.proposed_end_date),
        renewal_period=proposal.renewal_period,
        current_value=_money(proposal.current_value),
        proposed_value=_money(proposal.proposed_value),
        price_adjustment=proposal.price_adjustment,
        status=proposal.status,
        renewal_type=proposal.renewal_type,
        terms=list(proposal.terms or []),
        notes=proposal.notes,
        approved_by=proposal.approved_by,
        approved_at=_iso(proposal.approved_at),
        declined_by=proposal.declined_by,
        declined_at=_iso(proposal.declined_at),
        decline_reason=proposal.decline_reason,
        processed_at=_iso(proposal.processed_at),
        metadata=dict(proposal.metadata_json or {}),
        created_by=proposal.created_by,
        created_at=_iso(proposal.created_at),
    )


@router.post(
    "/rules",
    status_code=201,
    response_model=SuccessEnvelope[RuleResponse] | RuleResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def create_rule(
    request: Request,
    payload: RuleCreateRequest,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rule = await renewals_service.create_rule(
        db,
        tenant_id=principal.tenant_id,
        created_by=principal.subject_id,
        name=payload.name,
        contract_types=list(payload.contract_types),
        trigger=payload.trigger,
        renewal_type=payload.renewal_type,
        trigger_days=payload.trigger_days,
        description=payload.description,
        is_active=payload.is_active,
        auto_approve=payload.auto_approve,
        renewal_period=payload.renewal_period,
        price_adjustment=payload.price_adjustment.model_dump() if payload.price_adjustment else None,
        notification_settings=(
            payload.notification_settings.model_dump() if payload.notification_settings else None
        ),
        conditions=payload.conditions.model_dump() if payload.conditions else None,
        metadata=payload.metadata,
    )
    response = _rule_response(rule)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="renewal_rule.created",
        action="CREATE",
        resource_type="RenewalRule",
        resource_id=response.id,
        metadata={"trigger": response.trigger, "auto_approve": response.auto_approve},
    )
    return success_response(request=request, data=response)


@router.get("/rules", response_model=SuccessEnvelope[list[RuleResponse]] | list[RuleResponse])
async def list_rules(
    request: Request,
    is_active: bool | None = None,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rules = await renewals_service.list_rules(db, tenant_id=principal.tenant_id, is_active=is_active)
    return success_response(request=request, data=[_rule_response(rule) for rule in rules])


@router.get("/rules/{rule_id}", response_model=SuccessEnvelope[RuleResponse] | RuleResponse)
async def get_rule(
    rule_id: str,
    request: Request,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rule = await renewals_service.get_rule(db, tenant_id=principal.tenant_id, rule_id=rule_id)
    return success_response(request=request, data=_rule_response(rule))


@router.patch(
    "/rules/{rule_id}",
    response_model=SuccessEnvelope[RuleResponse] | RuleResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def update_rule(
    rule_id: str,
    request: Request,
    payload: RuleUpdateRequest,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    rule = await renewals_service.update_rule(
        db, tenant_id=principal.tenant_id, rule_id=rule_id, changes=changes
    )
    response = _rule_response(rule)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="renewal_rule.updated",
        action="UPDATE",
        resource_type="RenewalRule",
        resource_id=response.id,
        metadata={"fields": sorted(changes)},
    )
    return success_response(request=request, data=response)


@router.delete("/rules/{rule_id}", response_model=SuccessEnvelope[RuleDeletedResponse] | RuleDeletedResponse)
async def delete_rule(
    rule_id: str,
    request: Request,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await renewals_service.delete_rule(db, tenant_id=principal.tenant_id, rule_id=rule_id)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="renewal_rule.deleted",
        action="DELETE",
        resource_type="RenewalRule",
        resource_id=rule_id,
    )
    return success_response(request=request, data=RuleDeletedResponse(id=rule_id, deleted=True))


@router.post(
    "/proposals",
    status_code=201,
    response_model=SuccessEnvelope[ProposalResponse] | ProposalResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def create_proposal(
    request: Request,
    payload: ProposalCreateRequest,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    proposal = await renewals_service.create_proposal(
        db,
        tenant_id=principal.tenant_id,
        contract_id=payload.contract_id,
        created_by=principal.subject_id,
        rule_id=payload.rule_id,
        notes=payload.notes,
        terms=payload.terms,
    )
    response = _proposal_response(proposal)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="renewal_proposal.created",
        action="CREATE",
        resource_type="RenewalProposal",
        resource_id=response.id,
        metadata={"contract_id": response.contract_id, "status": response.status},
    )
    return success_response(request=request, data=response)


@router.get("/proposals", response_model=SuccessEnvelope[ProposalPageResponse] | ProposalPageResponse)
async def list_proposals(
    request: Request,
    status: ProposalStatus | None = None,
    contract_id: str | None = None,
    rule_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    sort_by: str = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    proposals, total = await renewals_service.list_proposals(
        db,
        tenant_id=principal.tenant_id,
        status=status,
        contract_id=contract_id,
        rule_id=rule_id,
        start=as_utc(start),
        end=as_utc(end),
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    payload = ProposalPageResponse(
        proposals=[_proposal_response(proposal) for proposal in proposals],
        total=total,
        page=page,
        limit=limit,
    )
    return success_response(request=request, data=payload)


@router.get("/proposals/{proposal_id}", response_model=SuccessEnvelope[ProposalResponse] | ProposalResponse)
async def get_proposal(
    proposal_id: str,
    request: Request,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    proposal = await renewals_service.get_proposal(db, tenant_id=principal.tenant_id, proposal_id=proposal_id)
    return success_response(request=request, data=_proposal_response(proposal))


@router.post(
    "/proposals/{proposal_id}/process",
    response_model=SuccessEnvelope[ProposalResponse] | ProposalResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def process_proposal(
    proposal_id: str,
    request: Request,
    payload: ProposalProcessRequest,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    proposal = await renewals_service.process_proposal(
        db,
        tenant_id=principal.tenant_id,
        proposal_id=proposal_id,
        processed_by=principal.subject_id,
        action=payload.action,
        notes=payload.notes,
        decline_reason=payload.decline_reason,
        modify_terms=payload.modify_terms,
        new_value=payload.new_value,
        new_end_date=as_utc(payload.new_end_date),
    )
    response = _proposal_response(proposal)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type=f"renewal_proposal.{response.status.lower()}",
        action="UPDATE",
        resource_type="RenewalProposal",
        resource_id=response.id,
        metadata={"contract_id": response.contract_id, "action": payload.action},
    )
    return success_response(request=request, data=response)


@router.post("/sweep", response_model=SuccessEnvelope[SweepResponse] | SweepResponse)
async def run_sweep(
    request: Request,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    summary = await renewals_service.check_and_create_renewals(db, tenant_id=principal.tenant_id)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="renewal.sweep",
        action="SYSTEM_CONFIG",
        resource_type="RenewalProposal",
        metadata=summary,
    )
    return success_response(request=request, data=SweepResponse(**summary))


@router.get("/stats", response_model=SuccessEnvelope[dict[str, Any]] | dict[str, Any])
async def renewal_stats(
    request: Request,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    stats = await renewals_service.renewal_stats(db, tenant_id=principal.tenant_id)
    return success_response(request=request, data=stats)
