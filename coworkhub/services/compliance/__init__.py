from __future__ import annotations

from coworkhub.services.compliance.dashboard import compliance_dashboard
from coworkhub.services.compliance.entries import (
    ReportRequest,
    build_report_request,
    entry_outcome,
    entry_risk,
    to_entry,
    trailing_window,
)
from coworkhub.services.compliance.frameworks import (
    generate_hipaa_report,
    generate_pci_dss_report,
    generate_sox_report,
    hipaa_risk_level,
    pci_compliance_level,
)
from coworkhub.services.compliance.gdpr_report import generate_gdpr_report, gdpr_status


__all__ = [
    "ReportRequest",
    "build_report_request",
    "compliance_dashboard",
    "entry_outcome",
    "entry_risk",
    "gdpr_status",
    "generate_gdpr_report",
    "generate_hipaa_report",
    "generate_pci_dss_report",
    "generate_sox_report",
    "hipaa_risk_level",
    "pci_compliance_level",
    "to_entry",
    "trailing_window",
]
