from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.core.clock import as_utc, utc_now
from coworkhub.core.errors import ValidationError
from coworkhub.domain.models import AuditEvent, SecurityEvent
from coworkhub.persistence.repos import audit as audit_repo


@dataclass(frozen=True)
class ReportRequest:
    start_date: datetime
    end_date: datetime
    include_details: bool = False
    filter_by_user: str | None = None
    filter_by_entity: str | None = None


def build_report_request(
    *,
    start_date: datetime,
    end_date: datetime,
    include_details: bool = False,
    filter_by_user: str | None = None,
    filter_by_entity: str | None = None,
) -> ReportRequest:
    start = as_utc(start_date)
    end = as_utc(end_date)
    if end < start:
        raise ValidationError("end_date must not precede start_date", code="INVALID_REPORT_WINDOW")
    return ReportRequest(
        start_date=start,
        end_date=end,
        include_details=include_details,
        filter_by_user=filter_by_user,
        filter_by_entity=filter_by_entity,
    )


def trailing_window(days: int, *, now: datetime | None = None) -> ReportRequest:
    if days < 1:
        raise ValidationError("Period must be at least 1 day", code="INVALID_REPORT_WINDOW")
    end = now or utc_now()
    return ReportRequest(start_date=end - timedelta(days=days), end_date=end)


def entry_outcome(details: dict[str, Any]) -> str:
    if details.get("success") is False:
        return "FAILURE"
    if details.get("warning"):
        return "WARNING"
    return "SUCCESS"


def entry_risk(action: str | None, entity: str | None) -> str:
    if action == "DELETE":
        return "HIGH"
    if action == "EXPORT_DATA":
        return "MEDIUM"
    if entity == "Payment":
        return "HIGH"
    return "LOW"


def to_entry(event: AuditEvent, *, include_details: bool) -> dict[str, Any]:
    details = event.metadata_json or {}
    entry = {
        "id": str(event.id),
        "timestamp": as_utc(event.occurred_at).isoformat(),
        "user_id": event.actor_id,
        "action": event.action,
        "entity": event.resource_type,
        "entity_id": event.resource_id,
        "ip_address": event.ip_address,
        "outcome": entry_outcome(details),
        "risk_level": entry_risk(event.action, event.resource_type),
    }
    if include_details:
        entry["details"] = details
    return entry


def security_entry(event: SecurityEvent) -> dict[str, Any]:
    return {
        "id": event.id,
        "timestamp": as_utc(event.occurred_at).isoformat(),
        "event_type": event.event_type,
        "severity": event.severity,
        "description": event.description,
        "user_id": event.user_id,
        "ip_address": event.ip_address,
        "resolved": event.resolved,
    }


async def load_entries(
    session: AsyncSession,
    *,
    tenant_id: str,
    request: ReportRequest,
    resource_types: list[str],
    actions: list[str] | None = None,
) -> list[AuditEvent]:
    return await audit_repo.list_actions_for_resources(
        session,
        tenant_id=tenant_id,
        resource_types=resource_types,
        actions=actions,
        occurred_from=request.start_date,
        occurred_to=request.end_date,
        actor_id=request.filter_by_user,
        resource_id=request.filter_by_entity,
    )


async def load_security_events(
    session: AsyncSession,
    *,
    tenant_id: str,
    request: ReportRequest,
    event_types: list[str] | None = None,
    severities: list[str] | None = None,
) -> list[SecurityEvent]:
    return await audit_repo.list_security_events(
        session,
        tenant_id=tenant_id,
        occurred_from=request.start_date,
        occurred_to=request.end_date,
        event_types=event_types,
        severities=severities,
    )


def report_header(framework: str, request: ReportRequest) -> dict[str, Any]:
    return {
        "framework": framework,
        "generated_at": utc_now().isoformat(),
        "period": {
            "start_date": request.start_date.isoformat(),
            "end_date": request.end_date.isoformat(),
        },
    }
