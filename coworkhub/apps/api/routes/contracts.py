from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.apps.api.auditing import audit_action
from coworkhub.apps.api.deps import Principal, get_db, reject_tenant_id_in_body, require_role
from coworkhub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from coworkhub.apps.api.response import SuccessEnvelope, success_response
from coworkhub.core.clock import as_utc
from coworkhub.domain.enums import ContractStatus, ContractType, PartyRole
from coworkhub.domain.models import Contract, ContractActivity
from coworkhub.services import contracts as contracts_service


router = APIRouter(prefix="/contracts", tags=["contracts"], responses=DEFAULT_ERROR_RESPONSES)


class PartyPayload(BaseModel):
    model_config = {"extra": "forbid"}

    name: str = Field(min_length=1, max_length=200)
    email: str = Field(min_length=3, max_length=320)
    role: PartyRole
    client_id: str | None = None


class ContractCreateRequest(BaseModel):
    model_config = {"extra": "forbid"}

    title: str = Field(min_length=1, max_length=200)
    type: ContractType
    parties: list[PartyPayload]
    start_date: datetime
    end_date: datetime | None = None
    description: str | None = None
    value: Decimal | None = Field(default=None, ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    terms: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ContractUpdateRequest(BaseModel):
    model_config = {"extra": "forbid"}

    title: str | None = Field(default=None, min_length=1, max_length=200)
    type: ContractType | None = None
    parties: list[PartyPayload] | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    description: str | None = None
    value: Decimal | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    terms: str | None = None
    metadata: dict[str, Any] | None = None


class SignRequest(BaseModel):
    model_config = {"extra": "forbid"}

    party_email: str = Field(min_length=3, max_length=320)


class ReasonRequest(BaseModel):
    model_config = {"extra": "forbid"}

    reason: str | None = Field(default=None, max_length=1000)


class TerminateRequest(BaseModel):
    model_config = {"extra": "forbid"}

    reason: str = Field(min_length=1, max_length=1000)


class PartyResponse(BaseModel):
    name: str | None
    email: str
    role: str
    client_id: str | None = None
    signed_at: str | None = None


class ContractResponse(BaseModel):
    id: str
    title: str
    description: str | None
    type: str
    status: str
    parties: list[PartyResponse]
    start_date: str
    end_date: str | None
    value: float | None
    currency: str
    terms: str | None
    workflow_id: str | None
    renewal_status: str
    signed_at: str | None
    activated_at: str | None
    terminated_at: str | None
    termination_reason: str | None
    metadata: dict[str, Any]
    created_by: str | None
    created_at: str | None


class ContractPageResponse(BaseModel):
    contracts: list[ContractResponse]
    total: int
    has_more: bool


class ActivityResponse(BaseModel):
    id: int
    activity_type: str
    description: str
    actor_id: str | None
    metadata: dict[str, Any]
    created_at: str


def _iso(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value else None


def contract_response(contract: Contract) -> ContractResponse:
    return ContractResponse(
        id=contract.id,
        title=contract.title,
        description=contract.description,
        type=contract.type,
        status=contract.status,
        parties=[PartyResponse(**party) for party in contract.parties or []],
        start_date=_iso(contract.start_date),
        end_date=_iso(contract.end_date),
        value=float(contract.value) if contract.value is not None else None,
        currency=contract.currency,
        terms=contract.terms,
        workflow_id=contract.workflow_id,
        renewal_status=contract.renewal_status,
        signed_at=_iso(contract.signed_at),
        activated_at=_iso(contract.activated_at),
        terminated_at=_iso(contract.terminated_at),
        termination_reason=contract.termination_reason,
        metadata=dict(contract.metadata_json or {}),
        created_by=contract.created_by,
        created_at=_iso(contract.created_at),
    )


def _activity_response(activity: ContractActivity) -> ActivityResponse:
    return ActivityResponse(
        id=activity.id,
        activity_type=activity.activity_type,
        description=activity.description,
        actor_id=activity.actor_id,
        metadata=dict(activity.metadata_json or {}),
        created_at=_iso(activity.created_at),
    )


async def _audit_transition(
    db: AsyncSession,
    principal: Principal,
    request: Request,
    response: ContractResponse,
    event_type: str,
    metadata: dict[str, Any] | None = None,
) -> None:
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type=event_type,
        action="UPDATE",
        resource_type="Contract",
        resource_id=response.id,
        metadata={"status": response.status, **(metadata or {})},
    )


@router.post(
    "",
    status_code=201,
    response_model=SuccessEnvelope[ContractResponse] | ContractResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def create_contract(
    request: Request,
    payload: ContractCreateRequest,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    contract = await contracts_service.create_contract(
        db,
        tenant_id=principal.tenant_id,
        created_by=principal.subject_id,
        title=payload.title,
        contract_type=payload.type,
        parties=[party.model_dump() for party in payload.parties],
        start_date=as_utc(payload.start_date),
        end_date=as_utc(payload.end_date),
        description=payload.description,
        value=payload.value,
        currency=payload.currency,
        terms=payload.terms,
        metadata=payload.metadata,
    )
    response = contract_response(contract)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="contract.created",
        action="CREATE",
        resource_type="Contract",
        resource_id=response.id,
        metadata={"type": response.type, "value": response.value},
    )
    return success_response(request=request, data=response)


@router.get("", response_model=SuccessEnvelope[ContractPageResponse] | ContractPageResponse)
async def list_contracts(
    request: Request,
    status: ContractStatus | None = None,
    type: ContractType | None = None,
    search: str | None = None,
    skip: int = Query(default=0, ge=0),
    take: int = Query(default=50, ge=1, le=200),
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    contracts, total = await contracts_service.list_contracts(
        db,
        tenant_id=principal.tenant_id,
        status=status,
        contract_type=type,
        search=search,
        skip=skip,
        take=take,
    )
    payload = ContractPageResponse(
        contracts=[contract_response(contract) for contract in contracts],
        total=total,
        has_more=skip + take < total,
    )
    return success_response(request=request, data=payload)


@router.get("/expiring", response_model=SuccessEnvelope[list[ContractResponse]] | list[ContractResponse])
async def expiring_contracts(
    request: Request,
    days: int = Query(default=30, ge=1, le=365),
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    contracts = await contracts_service.expiring_contracts(db, tenant_id=principal.tenant_id, days=days)
    return success_response(request=request, data=[contract_response(contract) for contract in contracts])


@router.get("/stats", response_model=SuccessEnvelope[dict[str, Any]] | dict[str, Any])
async def contract_stats(
    request: Request,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    stats = await contracts_service.contract_stats(db, tenant_id=principal.tenant_id)
    return success_response(request=request, data=stats)


@router.get("/{contract_id}", response_model=SuccessEnvelope[ContractResponse] | ContractResponse)
async def get_contract(
    contract_id: str,
    request: Request,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    contract = await contracts_service.get_contract(db, tenant_id=principal.tenant_id, contract_id=contract_id)
    return success_response(request=request, data=contract_response(contract))


@router.patch(
    "/{contract_id}",
    response_model=SuccessEnvelope[ContractResponse] | ContractResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def update_contract(
    contract_id: str,
    request: Request,
    payload: ContractUpdateRequest,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    for key in ("start_date", "end_date"):
        if changes.get(key) is not None:
            changes[key] = as_utc(changes[key])
    contract = await contracts_service.update_contract(
        db,
        tenant_id=principal.tenant_id,
        contract_id=contract_id,
        actor_id=principal.subject_id,
        changes=changes,
    )
    response = contract_response(contract)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="contract.updated",
        action="UPDATE",
        resource_type="Contract",
        resource_id=response.id,
        metadata={"fields": sorted(changes)},
    )
    return success_response(request=request, data=response)


@router.get(
    "/{contract_id}/activities",
    response_model=SuccessEnvelope[list[ActivityResponse]] | list[ActivityResponse],
)
async def contract_activities(
    contract_id: str,
    request: Request,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    activities = await contracts_service.contract_activities(
        db, tenant_id=principal.tenant_id, contract_id=contract_id
    )
    return success_response(request=request, data=[_activity_response(item) for item in activities])


async def _run_step(
    operation, event_type: str, contract_id: str, request: Request, principal: Principal, db: AsyncSession
) -> dict:
    contract = await operation(
        db, tenant_id=principal.tenant_id, contract_id=contract_id, actor_id=principal.subject_id
    )
    response = contract_response(contract)
    await _audit_transition(db, principal, request, response, event_type)
    return success_response(request=request, data=response)


@router.post(
    "/{contract_id}/send-for-signature",
    response_model=SuccessEnvelope[ContractResponse] | ContractResponse,
)
async def send_for_signature(
    contract_id: str,
    request: Request,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return await _run_step(
        contracts_service.send_for_signature, "contract.signature_requested", contract_id, request, principal, db
    )


@router.post(
    "/{contract_id}/activate",
    response_model=SuccessEnvelope[ContractResponse] | ContractResponse,
)
async def activate_contract(
    contract_id: str,
    request: Request,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return await _run_step(
        contracts_service.activate_contract, "contract.activated", contract_id, request, principal, db
    )


@router.post(
    "/{contract_id}/reactivate",
    response_model=SuccessEnvelope[ContractResponse] | ContractResponse,
)
async def reactivate_contract(
    contract_id: str,
    request: Request,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return await _run_step(
        contracts_service.reactivate_contract, "contract.reactivated", contract_id, request, principal, db
    )


@router.post(
    "/{contract_id}/sign",
    response_model=SuccessEnvelope[ContractResponse] | ContractResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def sign_contract(
    contract_id: str,
    request: Request,
    payload: SignRequest,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    contract = await contracts_service.sign_contract(
        db,
        tenant_id=principal.tenant_id,
        contract_id=contract_id,
        party_email=payload.party_email,
        actor_id=principal.subject_id,
    )
    response = contract_response(contract)
    await _audit_transition(
        db, principal, request, response, "contract.signed", {"party_email": payload.party_email.lower()}
    )
    return success_response(request=request, data=response)


@router.post(
    "/{contract_id}/suspend",
    response_model=SuccessEnvelope[ContractResponse] | ContractResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def suspend_contract(
    contract_id: str,
    request: Request,
    payload: ReasonRequest | None = None,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    reason = payload.reason if payload else None
    contract = await contracts_service.suspend_contract(
        db, tenant_id=principal.tenant_id, contract_id=contract_id, actor_id=principal.subject_id, reason=reason
    )
    response = contract_response(contract)
    await _audit_transition(db, principal, request, response, "contract.suspended", {"reason": reason})
    return success_response(request=request, data=response)


@router.post(
    "/{contract_id}/terminate",
    response_model=SuccessEnvelope[ContractResponse] | ContractResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def terminate_contract(
    contract_id: str,
    request: Request,
    payload: TerminateRequest,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    contract = await contracts_service.terminate_contract(
        db,
        tenant_id=principal.tenant_id,
        contract_id=contract_id,
        actor_id=principal.subject_id,
        reason=payload.reason,
    )
    response = contract_response(contract)
    await _audit_transition(db, principal, request, response, "contract.terminated", {"reason": payload.reason})
    return success_response(request=request, data=response)


@router.post(
    "/{contract_id}/cancel",
    response_model=SuccessEnvelope[ContractResponse] | ContractResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def cancel_contract(
    contract_id: str,
    request: Request,
    payload: ReasonRequest | None = None,
    principal: Principal = Depends(require_role("editor")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    reason = payload.reason if payload else None
    contract = await contracts_service.cancel_contract(
        db, tenant_id=principal.tenant_id, contract_id=contract_id, actor_id=principal.subject_id, reason=reason
    )
    response = contract_response(contract)
    await _audit_transition(db, principal, request, response, "contract.cancelled", {"reason": reason})
    return success_response(request=request, data=response)
