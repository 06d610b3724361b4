from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.apps.api.auditing import audit_action
from coworkhub.apps.api.deps import Principal, get_db, reject_tenant_id_in_body, require_role
from coworkhub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from coworkhub.apps.api.response import SuccessEnvelope, success_response
from coworkhub.core.clock import as_utc
from coworkhub.domain.enums import (
    ConsentSource,
    ConsentType,
    ExportFormat,
    ExportRequestType,
    LegalBasis,
    RetentionAction,
    RetentionEntityType,
    RetentionOperation,
)
from coworkhub.domain.models import ConsentRecord, DataExportRequest, RetentionExecution, RetentionPolicy
from coworkhub.services.audit import get_request_context
from coworkhub.services.gdpr import anonymization, consent, exports, retention


router = APIRouter(prefix="/gdpr", tags=["gdpr"], responses=DEFAULT_ERROR_RESPONSES)


class RetentionCriteriaPayload(BaseModel):
    model_config = {"extra": "forbid"}

    field: str | None = None
    operation: RetentionOperation = "older_than"
    value: Any = None


class RetentionPolicyCreateRequest(BaseModel):
    model_config = {"extra": "forbid"}

    name: str = Field(min_length=1, max_length=200)
    entity_type: RetentionEntityType
    retention_period_days: int = Field(ge=1)
    action: RetentionAction
    legal_basis: LegalBasis
    description: str | None = None
    criteria: RetentionCriteriaPayload | None = None
    exceptions: list[str] = Field(default_factory=list)
    is_active: bool = True


class RetentionPolicyUpdateRequest(BaseModel):
    model_config = {"extra": "forbid"}

    name: str | None = Field(default=None, min_length=1, max_length=200)
    retention_period_days: int | None = Field(default=None, ge=1)
    action: RetentionAction | None = None
    legal_basis: LegalBasis | None = None
    description: str | None = None
    criteria: RetentionCriteriaPayload | None = None
    exceptions: list[str] | None = None
    is_active: bool | None = None


class RetentionPolicyResponse(BaseModel):
    id: str
    name: str
    description: str | None
    entity_type: str
    retention_period_days: int
    action: str
    legal_basis: str
    criteria: dict[str, Any]
    exceptions: list[str]
    is_active: bool
    created_by: str | None
    last_executed_at: str | None
    created_at: str | None


class RetentionExecutionResponse(BaseModel):
    id: str
    policy_id: str
    executed_at: str
    executed_by: str
    records_processed: int
    records_deleted: int
    records_anonymized: int
    records_archived: int
    records_flagged: int
    errors: list[str]
    status: str


class ConsentCreateRequest(BaseModel):
    model_config = {"extra": "forbid"}

    user_id: str
    consent_type: ConsentType
    purpose: str = Field(min_length=1)
    is_granted: bool
    version: str = Field(min_length=1, max_length=32)
    source: ConsentSource = "API"
    legal_basis: LegalBasis = "CONSENT"
    expiry_days: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConsentWithdrawRequest(BaseModel):
    model_config = {"extra": "forbid"}

    user_id: str
    consent_type: ConsentType
    reason: str | None = Field(default=None, max_length=1000)


class ConsentResponse(BaseModel):
    id: str
    user_id: str
    consent_type: str
    purpose: str
    is_granted: bool
    version: str
    source: str
    legal_basis: str
    recorded_at: str
    expires_at: str | None
    withdrawn_at: str | None
    withdrawal_reason: str | None


class ExportCreateRequest(BaseModel):
    model_config = {"extra": "forbid"}

    user_id: str
    request_type: ExportRequestType = "ACCESS"
    format: ExportFormat = "JSON"
    include_related_data: bool = True


class ExportResponse(BaseModel):
    id: str
    user_id: str
    request_type: str
    format: str
    status: str
    requested_by: str
    include_related_data: bool
    created_at: str
    completed_at: str | None
    expires_at: str | None


class AnonymizeRequest(BaseModel):
    model_config = {"extra": "forbid"}

    reason: str = Field(min_length=1, max_length=1000)


def _iso(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value else None


def _policy_response(policy: RetentionPolicy) -> RetentionPolicyResponse:
    return RetentionPolicyResponse(
        id=policy.id,
        name=policy.name,
        description=policy.description,
        entity_type=policy.entity_type,
        retention_period_days=policy.retention_period_days,
        action=policy.action,
        legal_basis=policy.legal_basis,
        criteria=dict(policy.criteria or {}),
        exceptions=list(policy.exceptions or []),
        is_active=policy.is_active,
        created_by=policy.created_by,
        last_executed_at=_iso(policy.last_executed_at),
        created_at=_iso(policy.created_at),
    )


def _execution_response(execution: RetentionExecution) -> RetentionExecutionResponse:
    return RetentionExecutionResponse(
        id=execution.id,
        policy_id=execution.policy_id,
        executed_at=_iso(execution.executed_at),
        executed_by=execution.executed_by,
        records_processed=execution.records_processed,
        records_deleted=execution.records_deleted,
        records_anonymized=execution.records_anonymized,
        records_archived=execution.records_archived,
        records_flagged=execution.records_flagged,
        errors=list(execution.errors or []),
        status=execution.status,
    )


def _consent_response(record: ConsentRecord) -> ConsentResponse:
    return ConsentResponse(
        id=record.id,
        user_id=record.user_id,
        consent_type=record.consent_type,
        purpose=record.purpose,
        is_granted=record.is_granted,
        version=record.version,
        source=record.source,
        legal_basis=record.legal_basis,
        recorded_at=_iso(record.recorded_at),
        expires_at=_iso(record.expires_at),
        withdrawn_at=_iso(record.withdrawn_at),
        withdrawal_reason=record.withdrawal_reason,
    )


def _export_response(export: DataExportRequest) -> ExportResponse:
    return ExportResponse(
        id=export.id,
        user_id=export.user_id,
        request_type=export.request_type,
        format=export.format,
        status=export.status,
        requested_by=export.requested_by,
        include_related_data=export.include_related_data,
        created_at=_iso(export.created_at),
        completed_at=_iso(export.completed_at),
        expires_at=_iso(export.expires_at),
    )


@router.post(
    "/retention-policies",
    status_code=201,
    response_model=SuccessEnvelope[RetentionPolicyResponse] | RetentionPolicyResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def create_retention_policy(
    request: Request,
    payload: RetentionPolicyCreateRequest,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    policy = await retention.create_policy(
        db,
        tenant_id=principal.tenant_id,
        created_by=principal.subject_id,
        name=payload.name,
        entity_type=payload.entity_type,
        retention_period_days=payload.retention_period_days,
        action=payload.action,
        legal_basis=payload.legal_basis,
        description=payload.description,
        criteria=payload.criteria.model_dump() if payload.criteria else None,
        exceptions=payload.exceptions,
        is_active=payload.is_active,
    )
    response = _policy_response(policy)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="gdpr.retention_policy.created",
        action="SYSTEM_CONFIG",
        resource_type="RetentionPolicy",
        resource_id=response.id,
        metadata={"entity_type": response.entity_type, "action": response.action},
    )
    return success_response(request=request, data=response)


@router.get(
    "/retention-policies",
    response_model=SuccessEnvelope[list[RetentionPolicyResponse]] | list[RetentionPolicyResponse],
)
async def list_retention_policies(
    request: Request,
    is_active: bool | None = None,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    policies = await retention.list_policies(db, tenant_id=principal.tenant_id, is_active=is_active)
    return success_response(request=request, data=[_policy_response(policy) for policy in policies])


@router.patch(
    "/retention-policies/{policy_id}",
    response_model=SuccessEnvelope[RetentionPolicyResponse] | RetentionPolicyResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def update_retention_policy(
    policy_id: str,
    request: Request,
    payload: RetentionPolicyUpdateRequest,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    policy = await retention.update_policy(db, tenant_id=principal.tenant_id, policy_id=policy_id, changes=changes)
    response = _policy_response(policy)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="gdpr.retention_policy.updated",
        action="SYSTEM_CONFIG",
        resource_type="RetentionPolicy",
        resource_id=response.id,
        metadata={"fields": sorted(changes)},
    )
    return success_response(request=request, data=response)


@router.delete(
    "/retention-policies/{policy_id}",
    response_model=SuccessEnvelope[RetentionPolicyResponse] | RetentionPolicyResponse,
)
async def delete_retention_policy(
    policy_id: str,
    request: Request,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    policy = await retention.delete_policy(db, tenant_id=principal.tenant_id, policy_id=policy_id)
    response = _policy_response(policy)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="gdpr.retention_policy.deleted",
        action="DELETE",
        resource_type="RetentionPolicy",
        resource_id=response.id,
    )
    return success_response(request=request, data=response)


@router.post(
    "/retention/execute",
    response_model=SuccessEnvelope[list[RetentionExecutionResponse]] | list[RetentionExecutionResponse],
)
async def execute_retention(
    request: Request,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    executions = await retention.execute_retention_policies(
        db, tenant_id=principal.tenant_id, executed_by=principal.subject_id
    )
    responses = [_execution_response(execution) for execution in executions]
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="gdpr.retention.executed",
        action="DELETE",
        resource_type="RetentionExecution",
        metadata={
            "policies": len(responses),
            "statuses": {item.policy_id: item.status for item in responses},
        },
    )
    return success_response(request=request, data=responses)


@router.get("/retention/report", response_model=SuccessEnvelope[dict[str, Any]] | dict[str, Any])
async def retention_report(
    request: Request,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    report = await retention.retention_report(db, tenant_id=principal.tenant_id)
    return success_response(request=request, data=report)


@router.post(
    "/consents",
    status_code=201,
    response_model=SuccessEnvelope[ConsentResponse] | ConsentResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def record_consent(
    request: Request,
    payload: ConsentCreateRequest,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    record = await consent.record_consent(
        db,
        tenant_id=principal.tenant_id,
        user_id=payload.user_id,
        consent_type=payload.consent_type,
        purpose=payload.purpose,
        is_granted=payload.is_granted,
        version=payload.version,
        source=payload.source,
        legal_basis=payload.legal_basis,
        expiry_days=payload.expiry_days,
        metadata=payload.metadata,
    )
    response = _consent_response(record)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="gdpr.consent.recorded",
        action="CREATE",
        resource_type="ConsentRecord",
        resource_id=response.id,
        metadata={"user_id": response.user_id, "consent_type": response.consent_type, "granted": response.is_granted},
    )
    return success_response(request=request, data=response)


@router.post(
    "/consents/withdraw",
    response_model=SuccessEnvelope[ConsentResponse] | ConsentResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def withdraw_consent(
    request: Request,
    payload: ConsentWithdrawRequest,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    record = await consent.withdraw_consent(
        db,
        tenant_id=principal.tenant_id,
        user_id=payload.user_id,
        consent_type=payload.consent_type,
        reason=payload.reason,
    )
    response = _consent_response(record)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="gdpr.consent.withdrawn",
        action="UPDATE",
        resource_type="ConsentRecord",
        resource_id=response.id,
        metadata={"user_id": response.user_id, "consent_type": response.consent_type},
    )
    return success_response(request=request, data=response)


@router.get("/consents/report", response_model=SuccessEnvelope[dict[str, Any]] | dict[str, Any])
async def consent_report(
    request: Request,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    report = await consent.consent_report(db, tenant_id=principal.tenant_id)
    return success_response(request=request, data=report)


@router.get("/consents/{user_id}", response_model=SuccessEnvelope[dict[str, Any]] | dict[str, Any])
async def consent_status(
    user_id: str,
    request: Request,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    status = await consent.consent_status(db, tenant_id=principal.tenant_id, user_id=user_id)
    return success_response(request=request, data=status)


@router.post(
    "/exports",
    status_code=201,
    response_model=SuccessEnvelope[ExportResponse] | ExportResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def create_export(
    request: Request,
    payload: ExportCreateRequest,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # The EXPORT_DATA audit row is committed with the export itself.
    export = await exports.create_export_request(
        db,
        tenant_id=principal.tenant_id,
        user_id=payload.user_id,
        requested_by=principal.subject_id,
        request_type=payload.request_type,
        format=payload.format,
        include_related_data=payload.include_related_data,
        request_context=get_request_context(request),
    )
    return success_response(request=request, data=_export_response(export))


@router.get("/exports/{export_id}", response_model=SuccessEnvelope[ExportResponse] | ExportResponse)
async def get_export(
    export_id: str,
    request: Request,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    export = await exports.get_export_request(db, tenant_id=principal.tenant_id, export_id=export_id)
    return success_response(request=request, data=_export_response(export))


@router.get("/exports/{export_id}/download", response_model=SuccessEnvelope[dict[str, Any]] | dict[str, Any])
async def download_export(
    export_id: str,
    request: Request,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    payload = await exports.download_export(db, tenant_id=principal.tenant_id, export_id=export_id)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="gdpr.export.downloaded",
        action="READ",
        resource_type="DataExportRequest",
        resource_id=export_id,
    )
    return success_response(request=request, data=payload)


@router.post(
    "/users/{user_id}/anonymize",
    response_model=SuccessEnvelope[dict[str, Any]] | dict[str, Any],
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def anonymize_user(
    user_id: str,
    request: Request,
    payload: AnonymizeRequest,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    summary = await anonymization.anonymize_user(
        db, tenant_id=principal.tenant_id, user_id=user_id, reason=payload.reason
    )
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="gdpr.user.anonymized",
        action="USER_DEACTIVATE",
        resource_type="User",
        resource_id=user_id,
        metadata={key: value for key, value in summary.items() if key not in ("user_id", "anonymized_at")},
    )
    return success_response(request=request, data=summary)
