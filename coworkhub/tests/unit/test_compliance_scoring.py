from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from coworkhub.core.errors import ValidationError
from coworkhub.domain.models import AuditEvent
from coworkhub.services.compliance.dashboard import _status, gdpr_score, hipaa_score, sox_score
from coworkhub.services.compliance.entries import (
    build_report_request,
    entry_outcome,
    entry_risk,
    to_entry,
    trailing_window,
)
from coworkhub.services.compliance.frameworks import hipaa_risk_level, pci_compliance_level
from coworkhub.services.compliance.gdpr_report import gdpr_status


def test_report_request_rejects_inverted_window() -> None:
    start = datetime(2026, 2, 1, tzinfo=timezone.utc)
    with pytest.raises(ValidationError):
        build_report_request(start_date=start, end_date=start - timedelta(days=1))


def test_report_request_normalizes_naive_datetimes_to_utc() -> None:
    request = build_report_request(start_date=datetime(2026, 2, 1), end_date=datetime(2026, 2, 2))
    assert request.start_date.tzinfo is not None
    assert request.end_date - request.start_date == timedelta(days=1)


def test_trailing_window_spans_period() -> None:
    now = datetime(2026, 3, 1, tzinfo=timezone.utc)
    window = trailing_window(30, now=now)
    assert window.end_date == now
    assert window.start_date == now - timedelta(days=30)
    with pytest.raises(ValidationError):
        trailing_window(0, now=now)


def test_entry_outcome_and_risk() -> None:
    assert entry_outcome({"success": False}) == "FAILURE"
    assert entry_outcome({"warning": "slow"}) == "WARNING"
    assert entry_outcome({}) == "SUCCESS"
    assert entry_risk("DELETE", "Booking") == "HIGH"
    assert entry_risk("EXPORT_DATA", "User") == "MEDIUM"
    assert entry_risk("READ", "Payment") == "HIGH"
    assert entry_risk("READ", "Booking") == "LOW"


def test_to_entry_only_includes_details_on_request() -> None:
    event = AuditEvent(
        id=7,
        occurred_at=datetime(2026, 2, 3, 10, 0, tzinfo=timezone.utc),
        tenant_id="t1",
        actor_type="api_key",
        actor_id="user-1",
        event_type="contract.updated",
        action="UPDATE",
        outcome="success",
        resource_type="Contract",
        resource_id="c-1",
        metadata_json={"fields": ["title"]},
    )
    summary = to_entry(event, include_details=False)
    assert summary["id"] == "7"
    assert summary["entity"] == "Contract"
    assert "details" not in summary
    assert to_entry(event, include_details=True)["details"] == {"fields": ["title"]}


def test_dashboard_scores_and_status_thresholds() -> None:
    assert sox_score(0) == 100
    assert sox_score(3) == 70
    assert sox_score(20) == 0
    assert hipaa_score(2) == 70
    assert gdpr_score("COMPLIANT", 80) == 90
    assert gdpr_score("NON_COMPLIANT", 60) == 60
    assert _status(90) == "COMPLIANT"
    assert _status(70) == "PARTIALLY_COMPLIANT"
    assert _status(69) == "NON_COMPLIANT"


def test_framework_levels() -> None:
    assert hipaa_risk_level(1, 0) == "CRITICAL"
    assert hipaa_risk_level(0, 3) == "HIGH"
    assert hipaa_risk_level(0, 1) == "MEDIUM"
    assert hipaa_risk_level(0, 0) == "LOW"
    assert pci_compliance_level(10) == 4
    assert pci_compliance_level(20_001) == 3
    assert pci_compliance_level(1_000_001) == 2
    assert pci_compliance_level(6_000_001) == 1


def test_gdpr_status_needs_clean_executions_for_compliance() -> None:
    assert gdpr_status(90, 85, 0) == "COMPLIANT"
    assert gdpr_status(90, 85, 1) == "PENDING_REVIEW"
    assert gdpr_status(60, 95, 0) == "PENDING_REVIEW"
    assert gdpr_status(40, 95, 0) == "NON_COMPLIANT"
