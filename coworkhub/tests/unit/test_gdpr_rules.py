from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from coworkhub.core.errors import ValidationError
from coworkhub.domain.models import Booking, ConsentRecord, RetentionExecution, RetentionPolicy
from coworkhub.services.gdpr.anonymization import ANONYMIZED_DOMAIN, anonymized_email, scrub_booking
from coworkhub.services.gdpr.consent import consent_state
from coworkhub.services.gdpr.retention import _score, validate_policy


NOW = datetime(2026, 4, 1, tzinfo=timezone.utc)


def _consent(**overrides) -> ConsentRecord:
    values = {
        "id": "consent-1",
        "tenant_id": "t1",
        "user_id": "user-1",
        "consent_type": "MARKETING",
        "purpose": "Newsletter",
        "is_granted": True,
        "version": "1.0",
        "source": "API",
        "legal_basis": "CONSENT",
        "recorded_at": NOW - timedelta(days=10),
        "expires_at": NOW + timedelta(days=355),
        "withdrawn_at": None,
    }
    values.update(overrides)
    return ConsentRecord(**values)


def test_consent_state_precedence() -> None:
    assert consent_state(_consent(), NOW) == "GRANTED"
    assert consent_state(_consent(is_granted=False), NOW) == "DENIED"
    assert consent_state(_consent(expires_at=NOW - timedelta(seconds=1)), NOW) == "EXPIRED"
    # Withdrawal wins over every other state.
    assert consent_state(_consent(withdrawn_at=NOW, expires_at=NOW - timedelta(days=1)), NOW) == "WITHDRAWN"


def test_validate_policy_enforces_minimum_periods() -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_policy(entity_type="AuditLog", retention_period_days=365, action="DELETE", criteria={})
    assert excinfo.value.code == "RETENTION_BELOW_MINIMUM"
    with pytest.raises(ValidationError):
        validate_policy(entity_type="User", retention_period_days=10, action="ANONYMIZE", criteria={})


def test_validate_policy_normalizes_default_criteria() -> None:
    criteria = validate_policy(entity_type="Booking", retention_period_days=90, action="DELETE", criteria={})
    assert criteria == {"field": "end_time", "operation": "older_than", "value": None}


@pytest.mark.parametrize(
    "criteria",
    [
        {"operation": "newer_than"},
        {"operation": "not_accessed_since"},
        {"field": "title"},
    ],
)
def test_validate_policy_rejects_bad_criteria(criteria: dict) -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_policy(entity_type="Booking", retention_period_days=90, action="DELETE", criteria=criteria)
    assert excinfo.value.code == "RETENTION_INVALID_CRITERIA"


def test_validate_policy_rejects_unknown_entity() -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_policy(entity_type="Invoice", retention_period_days=90, action="DELETE", criteria={})
    assert excinfo.value.code == "RETENTION_UNSUPPORTED_ENTITY"


def _policy(policy_id: str) -> RetentionPolicy:
    return RetentionPolicy(id=policy_id, tenant_id="t1", name=f"policy-{policy_id}")


def _execution(policy_id: str, status: str) -> RetentionExecution:
    return RetentionExecution(id=f"exec-{policy_id}", tenant_id="t1", policy_id=policy_id, status=status)


def test_retention_score_penalties() -> None:
    assert _score([], {}) == (0, ["No active retention policies are configured"])
    policies = [_policy("a"), _policy("b"), _policy("c"), _policy("d")]
    latest = {
        "a": _execution("a", "SUCCESS"),
        "b": _execution("b", "FAILED"),
        "c": _execution("c", "PARTIAL"),
    }
    score, violations = _score(policies, latest)
    assert score == 75
    assert len(violations) == 3


def test_anonymized_email_is_stable_and_opaque() -> None:
    email = anonymized_email("user-1")
    assert email == anonymized_email("user-1")
    assert email.endswith(f"@{ANONYMIZED_DOMAIN}")
    assert "user-1" not in email


def test_scrub_booking_clears_personal_fields() -> None:
    booking = Booking(
        id="b-1",
        notes="Call Jane on 555-0100",
        description="Board meeting",
        attendees=["jane@example.com"],
        metadata_json={"archived_at": "2026-01-01"},
    )
    scrub_booking(booking)
    assert booking.notes is None
    assert booking.description is None
    assert booking.attendees == []
    assert booking.metadata_json == {"archived_at": "2026-01-01", "anonymized": True}
