from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.core.clock import as_utc
from coworkhub.persistence.repos import gdpr as gdpr_repo
from coworkhub.services.compliance.entries import ReportRequest, report_header
from coworkhub.services.gdpr.consent import consent_report
from coworkhub.services.gdpr.retention import retention_report


COMPLIANT_THRESHOLD = 80
REVIEW_THRESHOLD = 50


def gdpr_status(consent_score: int, retention_score: int, failed_executions: int) -> str:
    if failed_executions == 0 and min(consent_score, retention_score) >= COMPLIANT_THRESHOLD:
        return "COMPLIANT"
    if min(consent_score, retention_score) >= REVIEW_THRESHOLD:
        return "PENDING_REVIEW"
    return "NON_COMPLIANT"


async def generate_gdpr_report(session: AsyncSession, *, tenant_id: str, request: ReportRequest) -> dict[str, Any]:
    consents = await consent_report(session, tenant_id=tenant_id, now=request.end_date)
    retention = await retention_report(session, tenant_id=tenant_id, now=request.end_date)

    exports = [
        export
        for export in await gdpr_repo.list_exports(session, tenant_id)
        if request.start_date <= as_utc(export.created_at) <= request.end_date
    ]
    executions = [
        execution
        for execution in await gdpr_repo.list_executions(session, tenant_id)
        if request.start_date <= as_utc(execution.executed_at) <= request.end_date
    ]
    failed = sum(1 for execution in executions if execution.status == "FAILED")
    anonymized = await gdpr_repo.count_anonymized_users(
        session, tenant_id, since=request.start_date, until=request.end_date
    )

    consent_score = consents["compliance_score"]
    retention_score = retention["compliance_score"]
    recommendations = []
    if consent_score < COMPLIANT_THRESHOLD:
        recommendations.append("Renew expired consents and collect missing ones")
    if retention["active_policies"] == 0:
        recommendations.append("Define retention policies for personal data")
    if failed:
        recommendations.append("Investigate failed retention policy executions")
    if retention["violations"]:
        recommendations.append("Execute retention policies on schedule")

    return {
        **report_header("GDPR", request),
        "status": gdpr_status(consent_score, retention_score, failed),
        "data_protection_score": round((consent_score + retention_score) / 2),
        "consent": consents,
        "retention": {
            "active_policies": retention["active_policies"],
            "executions_in_period": len(executions),
            "failed_executions": failed,
            "compliance_score": retention_score,
            "violations": retention["violations"],
        },
        "data_subject_requests": {
            "exports": len(exports),
            "access_requests": sum(1 for export in exports if export.request_type == "ACCESS"),
            "portability_requests": sum(1 for export in exports if export.request_type == "PORTABILITY"),
            "anonymizations": anonymized,
        },
        "recommendations": recommendations,
    }
