from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.apps.api.auditing import audit_action
from coworkhub.apps.api.deps import Principal, get_db, reject_tenant_id_in_body, require_role
from coworkhub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from coworkhub.apps.api.response import SuccessEnvelope, success_response
from coworkhub.core.clock import as_utc
from coworkhub.domain.enums import SecurityEventType, Severity
from coworkhub.domain.models import SecurityEvent
from coworkhub.services import compliance as compliance_service
from coworkhub.services.audit import get_request_context
from coworkhub.services.security_events import record_security_event, resolve_security_event


router = APIRouter(prefix="/compliance", tags=["compliance"], responses=DEFAULT_ERROR_RESPONSES)


class ReportRequestPayload(BaseModel):
    model_config = {"extra": "forbid"}

    start_date: datetime
    end_date: datetime
    include_details: bool = False
    filter_by_user: str | None = None
    filter_by_entity: str | None = None


class HipaaReportPayload(ReportRequestPayload):
    patient_id: str | None = None


class SecurityEventCreateRequest(BaseModel):
    model_config = {"extra": "forbid"}

    event_type: SecurityEventType
    severity: Severity
    description: str | None = Field(default=None, max_length=2000)
    user_id: str | None = None
    ip_address: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime | None = None


class SecurityEventResolveRequest(BaseModel):
    model_config = {"extra": "forbid"}

    notes: str | None = Field(default=None, max_length=2000)


class SecurityEventResponse(BaseModel):
    id: str
    event_type: str
    severity: str
    description: str | None
    user_id: str | None
    ip_address: str | None
    metadata: dict[str, Any]
    resolved: bool
    resolved_at: str | None
    occurred_at: str


def _event_response(event: SecurityEvent) -> SecurityEventResponse:
    return SecurityEventResponse(
        id=event.id,
        event_type=event.event_type,
        severity=event.severity,
        description=event.description,
        user_id=event.user_id,
        ip_address=event.ip_address,
        metadata=dict(event.metadata_json or {}),
        resolved=event.resolved,
        resolved_at=as_utc(event.resolved_at).isoformat() if event.resolved_at else None,
        occurred_at=as_utc(event.occurred_at).isoformat(),
    )


def _report_request(payload: ReportRequestPayload) -> compliance_service.ReportRequest:
    return compliance_service.build_report_request(
        start_date=payload.start_date,
        end_date=payload.end_date,
        include_details=payload.include_details,
        filter_by_user=payload.filter_by_user,
        filter_by_entity=payload.filter_by_entity,
    )


async def _audit_report(
    db: AsyncSession, principal: Principal, request: Request, framework: str, report_request
) -> None:
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="compliance.report.generated",
        action="READ",
        resource_type="ComplianceReport",
        resource_id=framework,
        metadata={
            "framework": framework,
            "start_date": report_request.start_date.isoformat(),
            "end_date": report_request.end_date.isoformat(),
        },
    )


@router.post("/reports/sox", response_model=SuccessEnvelope[dict[str, Any]] | dict[str, Any])
async def sox_report(
    request: Request,
    payload: ReportRequestPayload,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    report_request = _report_request(payload)
    report = await compliance_service.generate_sox_report(db, tenant_id=principal.tenant_id, request=report_request)
    await _audit_report(db, principal, request, "SOX", report_request)
    return success_response(request=request, data=report)


@router.post("/reports/hipaa", response_model=SuccessEnvelope[dict[str, Any]] | dict[str, Any])
async def hipaa_report(
    request: Request,
    payload: HipaaReportPayload,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    report_request = _report_request(payload)
    report = await compliance_service.generate_hipaa_report(
        db, tenant_id=principal.tenant_id, request=report_request, patient_id=payload.patient_id
    )
    await _audit_report(db, principal, request, "HIPAA", report_request)
    return success_response(request=request, data=report)


@router.post("/reports/pci-dss", response_model=SuccessEnvelope[dict[str, Any]] | dict[str, Any])
async def pci_dss_report(
    request: Request,
    payload: ReportRequestPayload,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    report_request = _report_request(payload)
    report = await compliance_service.generate_pci_dss_report(
        db, tenant_id=principal.tenant_id, request=report_request
    )
    await _audit_report(db, principal, request, "PCI_DSS", report_request)
    return success_response(request=request, data=report)


@router.post("/reports/gdpr", response_model=SuccessEnvelope[dict[str, Any]] | dict[str, Any])
async def gdpr_report(
    request: Request,
    payload: ReportRequestPayload,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    report_request = _report_request(payload)
    report = await compliance_service.generate_gdpr_report(db, tenant_id=principal.tenant_id, request=report_request)
    await _audit_report(db, principal, request, "GDPR", report_request)
    return success_response(request=request, data=report)


@router.get("/dashboard", response_model=SuccessEnvelope[dict[str, Any]] | dict[str, Any])
async def dashboard(
    request: Request,
    period_days: int = Query(default=30, ge=1, le=365),
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    report = await compliance_service.compliance_dashboard(
        db, tenant_id=principal.tenant_id, period_days=period_days
    )
    return success_response(request=request, data=report)


@router.post(
    "/security-events",
    status_code=201,
    response_model=SuccessEnvelope[SecurityEventResponse] | SecurityEventResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def create_security_event(
    request: Request,
    payload: SecurityEventCreateRequest,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    event = await record_security_event(
        db,
        tenant_id=principal.tenant_id,
        event_type=payload.event_type,
        severity=payload.severity,
        description=payload.description,
        user_id=payload.user_id,
        ip_address=payload.ip_address or get_request_context(request)["ip_address"],
        metadata=payload.metadata,
        occurred_at=as_utc(payload.occurred_at),
    )
    response = _event_response(event)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="security_event.recorded",
        action="CREATE",
        resource_type="SecurityEvent",
        resource_id=response.id,
        metadata={"event_type": response.event_type, "severity": response.severity},
    )
    return success_response(request=request, data=response)


@router.post(
    "/security-events/{event_id}/resolve",
    response_model=SuccessEnvelope[SecurityEventResponse] | SecurityEventResponse,
    dependencies=[Depends(reject_tenant_id_in_body)],
)
async def resolve_event(
    event_id: str,
    request: Request,
    payload: SecurityEventResolveRequest | None = None,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    event = await resolve_security_event(
        db,
        tenant_id=principal.tenant_id,
        event_id=event_id,
        resolved_by=principal.subject_id,
        notes=payload.notes if payload else None,
    )
    response = _event_response(event)
    await audit_action(
        db=db,
        principal=principal,
        request=request,
        event_type="security_event.resolved",
        action="UPDATE",
        resource_type="SecurityEvent",
        resource_id=response.id,
    )
    return success_response(request=request, data=response)
