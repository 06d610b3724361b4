from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from coworkhub.core.errors import ValidationError
from coworkhub.domain.models import Contract, RenewalRule
from coworkhub.services.renewals import _proposed_value, add_months, is_contract_eligible, validate_rule


def _rule(**overrides) -> RenewalRule:
    values = {
        "id": "rule-1",
        "tenant_id": "t1",
        "name": "Memberships",
        "contract_types": ["MEMBERSHIP"],
        "trigger": "DAYS_BEFORE_EXPIRY",
        "trigger_days": 30,
        "renewal_type": "MANUAL",
        "renewal_period": 12,
        "conditions": {},
        "price_adjustment": None,
    }
    values.update(overrides)
    return RenewalRule(**values)


def _contract(**overrides) -> Contract:
    values = {
        "id": "c-1",
        "tenant_id": "t1",
        "title": "Desk membership",
        "type": "MEMBERSHIP",
        "status": "ACTIVE",
        "parties": [{"name": "Acme", "email": "ops@acme.test", "role": "CLIENT", "client_id": "client-1"}],
        "start_date": datetime(2025, 1, 1, tzinfo=timezone.utc),
        "end_date": datetime(2026, 1, 1, tzinfo=timezone.utc),
        "value": Decimal("1200.00"),
    }
    values.update(overrides)
    return Contract(**values)


def test_add_months_clamps_to_month_end() -> None:
    assert add_months(datetime(2026, 1, 31, tzinfo=timezone.utc), 1) == datetime(2026, 2, 28, tzinfo=timezone.utc)
    assert add_months(datetime(2024, 1, 31, tzinfo=timezone.utc), 1) == datetime(2024, 2, 29, tzinfo=timezone.utc)
    assert add_months(datetime(2026, 11, 15, tzinfo=timezone.utc), 14) == datetime(2028, 1, 15, tzinfo=timezone.utc)


def test_validate_rule_requires_trigger_days_for_expiry_trigger() -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_rule(
            trigger="DAYS_BEFORE_EXPIRY",
            trigger_days=None,
            renewal_period=12,
            price_adjustment=None,
            contract_types=["MEMBERSHIP"],
        )
    assert excinfo.value.code == "RULE_TRIGGER_DAYS_REQUIRED"


@pytest.mark.parametrize(
    ("kwargs", "code"),
    [
        ({"contract_types": []}, "RULE_CONTRACT_TYPES_REQUIRED"),
        ({"trigger_days": 400}, "RULE_INVALID_TRIGGER_DAYS"),
        ({"renewal_period": 0}, "RULE_INVALID_PERIOD"),
        ({"price_adjustment": {"type": "PERCENTAGE", "value": -60}}, "RULE_INVALID_ADJUSTMENT"),
    ],
)
def test_validate_rule_bounds(kwargs: dict, code: str) -> None:
    params = {
        "trigger": "DAYS_BEFORE_EXPIRY",
        "trigger_days": 30,
        "renewal_period": 12,
        "price_adjustment": None,
        "contract_types": ["MEMBERSHIP"],
    }
    params.update(kwargs)
    with pytest.raises(ValidationError) as excinfo:
        validate_rule(**params)
    assert excinfo.value.code == code


def test_fixed_amount_adjustment_is_not_percentage_bounded() -> None:
    validate_rule(
        trigger="MANUAL",
        trigger_days=None,
        renewal_period=6,
        price_adjustment={"type": "FIXED_AMOUNT", "value": -500},
        contract_types=["LEASE"],
    )


def test_contract_eligibility_checks_type_value_and_exclusions() -> None:
    assert is_contract_eligible(_rule(), _contract())
    assert not is_contract_eligible(_rule(), _contract(type="LEASE"))
    assert not is_contract_eligible(_rule(conditions={"min_contract_value": 5000}), _contract())
    assert not is_contract_eligible(_rule(conditions={"max_contract_value": 1000}), _contract())
    assert not is_contract_eligible(_rule(conditions={"exclude_client_ids": ["client-1"]}), _contract())
    # Value bounds do not apply to contracts without a value.
    assert is_contract_eligible(_rule(conditions={"min_contract_value": 5000}), _contract(value=None))


def test_proposed_value_applies_rule_adjustment() -> None:
    value, adjustment = _proposed_value(
        _rule(price_adjustment={"type": "PERCENTAGE", "value": 5}), Decimal("1200.00")
    )
    assert value == Decimal("1260.00")
    assert adjustment == {"type": "PERCENTAGE", "value": 5.0, "reason": "5% price adjustment"}

    value, adjustment = _proposed_value(
        _rule(price_adjustment={"type": "FIXED_AMOUNT", "value": 150}), Decimal("1200.00")
    )
    assert value == Decimal("1350.00")
    assert adjustment["reason"] == "Fixed adjustment of 150"

    assert _proposed_value(None, Decimal("1200.00")) == (Decimal("1200.00"), None)
    assert _proposed_value(_rule(price_adjustment={"type": "PERCENTAGE", "value": 5}), None) == (None, None)
