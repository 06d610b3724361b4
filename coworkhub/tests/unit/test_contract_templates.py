from __future__ import annotations

from datetime import date

import pytest

from coworkhub.core.errors import ValidationError
from coworkhub.services.contract_templates import (
    check_template,
    format_value,
    normalize_sections,
    normalize_variables,
    placeholders,
    render,
    resolve_values,
    sample_value,
)


def _variable(name: str, var_type: str = "text", **extra) -> dict:
    return normalize_variables([{"name": name, "type": var_type, **extra}])[0]


def test_placeholders_tolerate_inner_whitespace_and_repeats() -> None:
    text = "Hello {{client_name}}, {{ monthly_fee }} due. Bye {{  client_name }}."
    assert placeholders(text) == ["client_name", "monthly_fee"]


def test_variable_names_must_be_identifiers_and_unique() -> None:
    with pytest.raises(ValidationError) as exc:
        normalize_variables([{"name": "2fast"}])
    assert exc.value.code == "TEMPLATE_VARIABLE_NAME_INVALID"
    with pytest.raises(ValidationError) as exc:
        normalize_variables([{"name": "fee"}, {"name": "fee", "type": "number"}])
    assert exc.value.code == "TEMPLATE_VARIABLE_DUPLICATE"
    with pytest.raises(ValidationError) as exc:
        normalize_variables([{"name": "code", "validation": {"pattern": "[a-"}}])
    assert exc.value.code == "TEMPLATE_VARIABLE_PATTERN_INVALID"


def test_sections_are_ordered_and_ids_unique() -> None:
    sections = normalize_sections(
        [
            {"id": "payment", "title": "Payment", "order": 2},
            {"id": "scope", "title": "Scope", "order": 1},
        ]
    )
    assert [section["id"] for section in sections] == ["scope", "payment"]
    with pytest.raises(ValidationError):
        normalize_sections([{"id": "a", "order": 1}, {"id": "a", "order": 2}])


def test_check_template_reports_undefined_as_error_and_unused_as_warning() -> None:
    variables = normalize_variables([{"name": "client_name"}, {"name": "notes"}])
    sections = [{"id": "fees", "content": "Fee: {{ monthly_fee }}"}]
    check = check_template("Agreement with {{client_name}}", variables, sections)
    assert check.is_valid is False
    assert check.errors == ["Undefined variables in content: monthly_fee"]
    assert check.warnings == ["Unused variables: notes"]


def test_format_value_by_type() -> None:
    assert format_value(_variable("fee", "currency"), "1234.5") == "$1,234.50"
    assert format_value(_variable("fee", "currency"), 99, currency="EUR") == "99.00 EUR"
    assert format_value(_variable("seats", "number"), 12.0) == "12"
    assert format_value(_variable("rate", "number"), "2.50") == "2.5"
    assert format_value(_variable("starts", "date"), "2026-03-01T09:00:00") == "2026-03-01"
    assert format_value(_variable("parking", "boolean"), True) == "Yes"
    assert format_value(_variable("parking", "boolean"), "false") == "No"


def test_render_leaves_unknown_placeholders() -> None:
    assert render("{{a}} and {{ b }}", {"a": "x"}) == "x and {{ b }}"


def test_resolve_values_lists_every_missing_required_variable() -> None:
    variables = normalize_variables(
        [
            {"name": "client_name", "required": True},
            {"name": "monthly_fee", "type": "currency", "required": True},
            {"name": "term", "type": "number", "required": True, "default_value": 12},
        ]
    )
    with pytest.raises(ValidationError) as exc:
        resolve_values(variables, {})
    assert exc.value.code == "TEMPLATE_VARIABLES_MISSING"
    assert exc.value.message == "Missing required variables: client_name, monthly_fee"
    assert exc.value.details == {"missing": ["client_name", "monthly_fee"]}

    values = resolve_values(variables, {"client_name": "Acme", "monthly_fee": 450})
    assert values == {"client_name": "Acme", "monthly_fee": "$450.00", "term": "12"}


def test_resolve_values_enforces_variable_rules() -> None:
    variables = normalize_variables(
        [
            {"name": "plan", "type": "list", "validation": {"options": ["Hot desk", "Dedicated"]}},
            {"name": "seats", "type": "number", "validation": {"min": 1, "max": 50}},
            {"name": "vat_id", "validation": {"pattern": "[A-Z]{2}[0-9]+"}},
        ]
    )
    for provided in ({"plan": "Office"}, {"seats": 0}, {"vat_id": "12345"}, {"seats": "many"}):
        with pytest.raises(ValidationError) as exc:
            resolve_values(variables, provided)
        assert exc.value.code == "TEMPLATE_VARIABLE_INVALID"
    assert resolve_values(variables, {"plan": "Dedicated", "seats": 50, "vat_id": "DE123"})["seats"] == "50"


def test_sample_values_follow_variable_type() -> None:
    assert sample_value(_variable("client_name", label="Client")) == "[Sample Client]"
    assert sample_value(_variable("fee", "currency")) == 1000
    assert sample_value(_variable("seats", "number")) == 100
    assert isinstance(sample_value(_variable("starts", "date")), date)
    assert sample_value(_variable("plan", "list", validation={"options": ["Gold"]})) == "Gold"
    assert sample_value(_variable("plan", "list")) == "Option 1"
