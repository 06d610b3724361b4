from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.core.clock import utc_now
from coworkhub.persistence.repos import audit as audit_repo
from coworkhub.services.compliance.entries import load_security_events, security_entry, trailing_window
from coworkhub.services.compliance.frameworks import (
    PCI_REQUIREMENTS,
    generate_hipaa_report,
    generate_pci_dss_report,
    generate_sox_report,
)
from coworkhub.services.compliance.gdpr_report import generate_gdpr_report


GDPR_STATUS_SCORES = {"COMPLIANT": 100, "PENDING_REVIEW": 80}
ALERT_WINDOW_DAYS = 7
ALERT_LIMIT = 10


def sox_score(violations: int) -> int:
    return max(0, 100 - 10 * violations)


def hipaa_score(violations: int) -> int:
    return max(0, 100 - 15 * violations)


def gdpr_score(status: str, data_protection_score: int) -> int:
    return round((GDPR_STATUS_SCORES.get(status, 60) + data_protection_score) / 2)


def _status(score: int) -> str:
    if score >= 90:
        return "COMPLIANT"
    if score >= 70:
        return "PARTIALLY_COMPLIANT"
    return "NON_COMPLIANT"


async def compliance_dashboard(
    session: AsyncSession, *, tenant_id: str, period_days: int = 30, now: datetime | None = None
) -> dict[str, Any]:
    """Roll the four framework reports into one scored overview."""
    now = now or utc_now()
    request = trailing_window(period_days, now=now)
    sox = await generate_sox_report(session, tenant_id=tenant_id, request=request)
    hipaa = await generate_hipaa_report(session, tenant_id=tenant_id, request=request)
    pci = await generate_pci_dss_report(session, tenant_id=tenant_id, request=request)
    gdpr = await generate_gdpr_report(session, tenant_id=tenant_id, request=request)

    scores = {
        "sox": sox_score(len(sox["violations"])),
        "gdpr": gdpr_score(gdpr["status"], gdpr["data_protection_score"]),
        "hipaa": hipaa_score(len(hipaa["violations"])),
        "pci_dss": pci["summary"]["compliance_score"],
        "data_protection": gdpr["data_protection_score"],
    }
    frameworks = {
        "sox": {"score": scores["sox"], "status": _status(scores["sox"]), "violations": len(sox["violations"])},
        "gdpr": {"score": scores["gdpr"], "status": gdpr["status"]},
        "hipaa": {
            "score": scores["hipaa"],
            "status": _status(scores["hipaa"]),
            "violations": len(hipaa["violations"]),
            "risk_level": hipaa["risk_assessment"]["overall_risk"],
        },
        "pci_dss": {
            "score": scores["pci_dss"],
            "status": "COMPLIANT" if scores["pci_dss"] >= 90 else "PARTIALLY_COMPLIANT",
            "compliance_level": pci["compliance_level"],
        },
    }

    security = await load_security_events(session, tenant_id=tenant_id, request=request)
    audit_rows = await audit_repo.list_events(
        session,
        tenant_id=tenant_id,
        occurred_from=request.start_date,
        occurred_to=request.end_date,
        limit=None,
    )
    alert_window = trailing_window(ALERT_WINDOW_DAYS, now=now)
    recent = await load_security_events(
        session, tenant_id=tenant_id, request=alert_window, severities=["HIGH", "CRITICAL"]
    )
    alerts = [security_entry(event) for event in reversed(recent) if not event.resolved][:ALERT_LIMIT]

    return {
        "generated_at": now.isoformat(),
        "period_days": period_days,
        "overall_score": round(sum(scores.values()) / len(scores)),
        "frameworks": frameworks,
        "data_protection_score": scores["data_protection"],
        "trends": {
            "security_events": dict(Counter(event.event_type for event in security)),
            "audit_activity": dict(Counter(row.action for row in audit_rows if row.action)),
        },
        "alerts": alerts,
        "recommendations": {
            "sox": sox["recommendations"],
            "gdpr": gdpr["recommendations"],
            "hipaa": hipaa["risk_assessment"]["recommendations"],
            "pci_dss": [req.remediation for req in PCI_REQUIREMENTS if req.remediation],
        },
        "next_review_date": (now + timedelta(days=period_days)).isoformat(),
    }
