from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.core.clock import utc_now
from coworkhub.services.compliance.entries import (
    ReportRequest,
    load_entries,
    load_security_events,
    report_header,
    security_entry,
    to_entry,
)


FINANCIAL_ENTITIES = ["Invoice", "Payment", "Contract", "Quotation"]
SYSTEM_CHANGE_ACTIONS = ["SYSTEM_CONFIG", "USER_ACTIVATE", "USER_DEACTIVATE"]
HEALTH_ENTITIES = ["User", "Client", "Booking", "Service"]
PAYMENT_ENTITIES = ["Payment", "Invoice", "StoredPaymentMethod"]
PCI_COMPLIANCE_SCORE = 85
HIPAA_REVIEW_INTERVAL_DAYS = 90


def _of(entries: list[dict[str, Any]], *, action: str | None = None, entity: str | None = None) -> list[dict[str, Any]]:
    return [
        entry
        for entry in entries
        if (action is None or entry["action"] == action) and (entity is None or entry["entity"] == entity)
    ]


def _view(request: ReportRequest, entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
    if request.include_details:
        return entries
    return [{key: value for key, value in entry.items() if key != "details"} for entry in entries]


async def generate_sox_report(session: AsyncSession, *, tenant_id: str, request: ReportRequest) -> dict[str, Any]:
    """Summarize financial activity, system changes and access violations for SOX."""
    financial_rows = await load_entries(
        session, tenant_id=tenant_id, request=request, resource_types=FINANCIAL_ENTITIES
    )
    change_rows = await load_entries(
        session, tenant_id=tenant_id, request=request, resource_types=[], actions=SYSTEM_CHANGE_ACTIONS
    )
    security = await load_security_events(
        session, tenant_id=tenant_id, request=request, severities=["HIGH", "CRITICAL"]
    )
    # Outcome needs details, so classify on full entries and strip afterwards.
    financial = [to_entry(row, include_details=True) for row in financial_rows]
    changes = [to_entry(row, include_details=True) for row in change_rows]

    payments_created = _of(financial, action="CREATE", entity="Payment")
    failed = [entry for entry in financial if entry["outcome"] == "FAILURE"]
    unauthorized = [event for event in security if event.event_type == "UNAUTHORIZED_ACCESS"]
    data_changes = [entry for entry in financial if entry["action"] in ("CREATE", "UPDATE", "DELETE")]

    violations = [
        {
            "type": "UNAUTHORIZED_FINANCIAL_ACCESS",
            "description": event.description or "Unauthorized access to financial data",
            "severity": event.severity,
            "timestamp": security_entry(event)["timestamp"],
            "status": "RESOLVED" if event.resolved else "OPEN",
        }
        for event in unauthorized
        if event.severity == "HIGH"
    ]

    recommendations = []
    if unauthorized:
        recommendations.append("Strengthen access controls for financial data")
    if payments_created and len(failed) > len(payments_created) * 0.05:
        recommendations.append("Investigate high failure rate in financial transactions")
    if violations:
        recommendations.append("Address all identified compliance violations immediately")
    recommendations.append("Implement regular SOX compliance audits")
    recommendations.append("Provide SOX compliance training to relevant staff")

    return {
        **report_header("SOX", request),
        "summary": {
            "total_financial_transactions": len(payments_created),
            "total_access_logs": len(financial),
            "failed_transactions": len(failed),
            "unauthorized_access": len(unauthorized),
            "data_changes": len(data_changes),
        },
        "financial_controls": {
            "invoice_creation": _view(request, _of(financial, action="CREATE", entity="Invoice")),
            "payment_processing": _view(request, _of(financial, entity="Payment")),
            "financial_reporting": _view(request, _of(financial, action="EXPORT_DATA")),
            "user_access": _view(request, _of(financial, action="READ")),
        },
        "system_changes": {
            "configuration_changes": _view(request, _of(changes, action="SYSTEM_CONFIG")),
            "user_permission_changes": _view(
                request, [entry for entry in changes if entry["action"] in ("USER_ACTIVATE", "USER_DEACTIVATE")]
            ),
            "data_modifications": _view(
                request, [entry for entry in financial if entry["action"] in ("UPDATE", "DELETE")]
            ),
        },
        "violations": violations,
        "recommendations": recommendations,
    }


def hipaa_risk_level(critical: int, high: int) -> str:
    if critical:
        return "CRITICAL"
    if high > 2:
        return "HIGH"
    if high:
        return "MEDIUM"
    return "LOW"


async def generate_hipaa_report(
    session: AsyncSession,
    *,
    tenant_id: str,
    request: ReportRequest,
    patient_id: str | None = None,
) -> dict[str, Any]:
    if patient_id:
        request = replace(request, filter_by_entity=patient_id)
    access_rows = await load_entries(session, tenant_id=tenant_id, request=request, resource_types=HEALTH_ENTITIES)
    export_rows = await load_entries(
        session, tenant_id=tenant_id, request=request, resource_types=[], actions=["EXPORT_DATA"]
    )
    security = await load_security_events(session, tenant_id=tenant_id, request=request)

    access = [to_entry(row, include_details=True) for row in access_rows]
    disclosures = [
        to_entry(row, include_details=True) for row in export_rows if (row.metadata_json or {}).get("phi")
    ]
    unauthorized = [event for event in security if event.event_type == "UNAUTHORIZED_ACCESS"]
    incidents = [event for event in security if event.severity in ("HIGH", "CRITICAL")]
    reads = _of(access, action="READ")

    violations = [
        {
            "type": "MINIMUM_NECESSARY_VIOLATION",
            "description": "Bulk access to protected data without a documented justification",
            "severity": "MEDIUM",
            "entry_id": entry["id"],
            "timestamp": entry["timestamp"],
        }
        for entry in access
        if entry["details"].get("accessType") == "bulk" and entry["details"].get("justification") is None
    ]

    critical = sum(1 for event in security if event.severity == "CRITICAL")
    high = sum(1 for event in security if event.severity == "HIGH")
    breach_notifications = [
        {**security_entry(event), "outcome": "SUCCESS" if event.resolved else "WARNING"}
        for event in unauthorized
        if event.severity == "CRITICAL"
    ]

    return {
        **report_header("HIPAA", request),
        "patient_id": patient_id,
        "summary": {
            "total_access_logs": len(access),
            "authorized_access": len(reads),
            "unauthorized_access": len(unauthorized),
            "data_disclosures": len(disclosures),
            "security_incidents": len(incidents),
        },
        "access_logs": {
            "patient_access": _view(request, _of(reads, entity="Client")),
            "medical_record_access": _view(request, _of(reads, entity="Service")),
            "appointment_access": _view(request, _of(reads, entity="Booking")),
            "billing_access": _view(request, [entry for entry in reads if entry["entity"] in ("Invoice", "Payment")]),
        },
        "disclosures": {
            "authorized": _view(request, [entry for entry in disclosures if entry["details"].get("authorized") is True]),
            "unauthorized": _view(request, [entry for entry in disclosures if entry["details"].get("authorized") is not True]),
            "breach_notifications": breach_notifications,
        },
        "safeguards": {
            "physical": [{"control": "Facility access controls", "status": "IMPLEMENTED"}],
            "administrative": [{"control": "Workforce security training", "status": "IMPLEMENTED"}],
            "technical": [{"control": "Audit logging and access control", "status": "IMPLEMENTED"}],
        },
        "violations": violations,
        "risk_assessment": {
            "overall_risk": hipaa_risk_level(critical, high),
            "critical_findings": critical,
            "high_findings": high,
            "recommendations": [
                "Conduct regular HIPAA risk assessments",
                "Implement comprehensive audit logging",
                "Provide HIPAA training to all staff",
            ],
            "next_review_date": (utc_now() + timedelta(days=HIPAA_REVIEW_INTERVAL_DAYS)).isoformat(),
        },
    }


@dataclass(frozen=True)
class PciRequirement:
    key: str
    title: str
    status: str = "COMPLIANT"
    finding: str | None = None
    remediation: str | None = None


PCI_REQUIREMENTS: tuple[PciRequirement, ...] = (
    PciRequirement("firewall", "Install and maintain network security controls"),
    PciRequirement("passwords", "Apply secure configurations and no vendor defaults"),
    PciRequirement("card_data_protection", "Protect stored account data"),
    PciRequirement("encryption", "Encrypt cardholder data in transit"),
    PciRequirement(
        "antivirus",
        "Protect systems against malicious software",
        status="PARTIALLY_COMPLIANT",
        finding="Regular updates needed",
        remediation="Implement automated antivirus updates",
    ),
    PciRequirement("secure_networks", "Develop and maintain secure systems"),
    PciRequirement("access_control", "Restrict access to cardholder data by need to know"),
    PciRequirement("monitoring", "Log and monitor all access to cardholder data"),
    PciRequirement(
        "testing",
        "Test security of systems and networks regularly",
        status="PARTIALLY_COMPLIANT",
        finding="Penetration testing frequency",
        remediation="Implement quarterly penetration testing",
    ),
    PciRequirement("policies", "Maintain an information security policy"),
    PciRequirement("vendor_management", "Manage third-party service providers"),
    PciRequirement("incident_response", "Respond to suspected security incidents"),
)


def pci_compliance_level(transactions: int) -> int:
    if transactions > 6_000_000:
        return 1
    if transactions > 1_000_000:
        return 2
    if transactions > 20_000:
        return 3
    return 4


async def generate_pci_dss_report(
    session: AsyncSession, *, tenant_id: str, request: ReportRequest
) -> dict[str, Any]:
    rows = await load_entries(session, tenant_id=tenant_id, request=request, resource_types=PAYMENT_ENTITIES)
    security = await load_security_events(session, tenant_id=tenant_id, request=request)
    entries = [to_entry(row, include_details=True) for row in rows]

    transactions = _of(entries, entity="Payment")
    card_access = _of(entries, action="READ", entity="StoredPaymentMethod")
    vulnerabilities = [
        {**security_entry(event), "status": "MITIGATED" if event.resolved else "OPEN"}
        for event in security
        if event.event_type == "MALICIOUS_REQUEST"
    ]

    return {
        **report_header("PCI_DSS", request),
        "summary": {
            "total_payment_transactions": len(transactions),
            "card_data_access": len(card_access),
            "security_events": len(security),
            "vulnerabilities": len(vulnerabilities),
            "compliance_score": PCI_COMPLIANCE_SCORE,
        },
        "requirements": {
            requirement.key: {
                "title": requirement.title,
                "status": requirement.status,
                "findings": [requirement.finding] if requirement.finding else [],
                "remediation": [requirement.remediation] if requirement.remediation else [],
            }
            for requirement in PCI_REQUIREMENTS
        },
        "payment_processing": {
            "transactions": _view(request, transactions),
            "card_data_access": _view(request, card_access),
            "tokenization": _view(request, [entry for entry in entries if entry["details"].get("tokenized")]),
            "encryption": _view(request, [entry for entry in entries if entry["details"].get("encrypted")]),
        },
        "vulnerabilities": vulnerabilities,
        "compliance_level": pci_compliance_level(len(transactions)),
    }
