from __future__ import annotations

import calendar
from collections import Counter
from datetime import datetime, timedelta
from decimal import Decimal
import logging
import math
from typing import Any
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.core.clock import as_utc, utc_now
from coworkhub.core.config import get_settings
from coworkhub.core.errors import ConflictError, CoworkHubError, NotFoundError, ValidationError
from coworkhub.domain.models import Contract, RenewalProposal, RenewalRule
from coworkhub.persistence.db import commit_or_raise
from coworkhub.persistence.repos import contracts as contracts_repo
from coworkhub.persistence.repos import renewals as renewals_repo
from coworkhub.services import contracts as contracts_service
from coworkhub.services.renewal_notifications import deliver_webhooks, fan_out


logger = logging.getLogger(__name__)

DEFAULT_RENEWAL_PERIOD = 12
SYSTEM_ACTOR = "system"
_RULE_FIELDS = {
    "name",
    "description",
    "is_active",
    "contract_types",
    "trigger",
    "trigger_days",
    "renewal_type",
    "auto_approve",
    "renewal_period",
    "price_adjustment",
    "notification_settings",
    "conditions",
    "metadata",
}
_SORT_COLUMNS = ("created_at", "proposed_start_date", "current_end_date", "proposed_value")


def add_months(value: datetime, months: int) -> datetime:
    """Shift by calendar months, clamping the day to the target month's end."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _format_number(value: Any) -> str:
    return f"{float(value):g}"


def validate_rule(
    *,
    trigger: str,
    trigger_days: int | None,
    renewal_period: int,
    price_adjustment: dict[str, Any] | None,
    contract_types: list[str],
) -> None:
    if not contract_types:
        raise ValidationError("At least one contract type is required", code="RULE_CONTRACT_TYPES_REQUIRED")
    if trigger == "DAYS_BEFORE_EXPIRY" and trigger_days is None:
        raise ValidationError(
            "Trigger days must be specified for DAYS_BEFORE_EXPIRY trigger", code="RULE_TRIGGER_DAYS_REQUIRED"
        )
    if trigger_days is not None and not 1 <= trigger_days <= 365:
        raise ValidationError("Trigger days must be between 1 and 365", code="RULE_INVALID_TRIGGER_DAYS")
    if not 1 <= renewal_period <= 120:
        raise ValidationError("Renewal period must be between 1 and 120 months", code="RULE_INVALID_PERIOD")
    if price_adjustment and price_adjustment.get("type") == "PERCENTAGE":
        if not -50 <= float(price_adjustment.get("value", 0)) <= 100:
            raise ValidationError(
                "Percentage adjustment must be between -50% and 100%", code="RULE_INVALID_ADJUSTMENT"
            )


def _notification_settings(value: dict[str, Any] | None) -> dict[str, Any]:
    value = value or {}
    return {
        "enabled": bool(value.get("enabled", False)),
        "types": list(value.get("types") or []),
        "recipients": list(value.get("recipients") or []),
        "template": value.get("template"),
    }


def _conditions(value: dict[str, Any] | None) -> dict[str, Any]:
    value = value or {}
    return {
        "min_contract_value": value.get("min_contract_value"),
        "max_contract_value": value.get("max_contract_value"),
        "client_types": list(value.get("client_types") or []),
        "exclude_client_ids": list(value.get("exclude_client_ids") or []),
    }


def _adjustment(value: dict[str, Any] | None) -> dict[str, Any] | None:
    if not value:
        return None
    return {"type": value.get("type"), "value": float(value.get("value", 0))}


async def create_rule(
    session: AsyncSession,
    *,
    tenant_id: str,
    created_by: str,
    name: str,
    contract_types: list[str],
    trigger: str,
    renewal_type: str,
    trigger_days: int | None = None,
    description: str | None = None,
    is_active: bool = True,
    auto_approve: bool = False,
    renewal_period: int = DEFAULT_RENEWAL_PERIOD,
    price_adjustment: dict[str, Any] | None = None,
    notification_settings: dict[str, Any] | None = None,
    conditions: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
) -> RenewalRule:
    if not name or not name.strip():
        raise ValidationError("Rule name is required", code="RULE_NAME_REQUIRED")
    validate_rule(
        trigger=trigger,
        trigger_days=trigger_days,
        renewal_period=renewal_period,
        price_adjustment=price_adjustment,
        contract_types=contract_types,
    )
    now = utc_now()
    rule = RenewalRule(
        id=uuid4().hex,
        tenant_id=tenant_id,
        name=name.strip(),
        description=description,
        is_active=is_active,
        contract_types=list(contract_types),
        trigger=trigger,
        trigger_days=trigger_days,
        renewal_type=renewal_type,
        auto_approve=auto_approve,
        renewal_period=renewal_period,
        price_adjustment=_adjustment(price_adjustment),
        notification_settings=_notification_settings(notification_settings),
        conditions=_conditions(conditions),
        metadata_json=dict(metadata or {}),
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )
    session.add(rule)
    await commit_or_raise(session, context="creating renewal rule")
    logger.info("renewal_rule_created tenant_id=%s rule_id=%s", tenant_id, rule.id)
    return rule


async def get_rule(session: AsyncSession, *, tenant_id: str, rule_id: str) -> RenewalRule:
    rule = await renewals_repo.get_rule(session, tenant_id, rule_id)
    if rule is None:
        raise NotFoundError("Renewal rule not found", code="RENEWAL_RULE_NOT_FOUND")
    return rule


async def list_rules(session: AsyncSession, *, tenant_id: str, is_active: bool | None = None) -> list[RenewalRule]:
    return await renewals_repo.list_rules(session, tenant_id, is_active=is_active)


async def update_rule(
    session: AsyncSession, *, tenant_id: str, rule_id: str, changes: dict[str, Any]
) -> RenewalRule:
    changes = {key: value for key, value in changes.items() if key in _RULE_FIELDS}
    if not changes:
        raise ValidationError("No fields to update", code="EMPTY_UPDATE")
    rule = await get_rule(session, tenant_id=tenant_id, rule_id=rule_id)
    if "name" in changes and not (changes["name"] or "").strip():
        raise ValidationError("Rule name is required", code="RULE_NAME_REQUIRED")
    validate_rule(
        trigger=changes.get("trigger", rule.trigger),
        trigger_days=changes["trigger_days"] if "trigger_days" in changes else rule.trigger_days,
        renewal_period=changes.get("renewal_period") or rule.renewal_period,
        price_adjustment=changes["price_adjustment"] if "price_adjustment" in changes else rule.price_adjustment,
        contract_types=changes.get("contract_types") or rule.contract_types,
    )
    for key, value in changes.items():
        if key == "metadata":
            rule.metadata_json = dict(value or {})
        elif key == "notification_settings":
            rule.notification_settings = _notification_settings(value)
        elif key == "conditions":
            rule.conditions = _conditions(value)
        elif key == "price_adjustment":
            rule.price_adjustment = _adjustment(value)
        elif key == "contract_types":
            rule.contract_types = list(value or [])
        elif key == "name":
            rule.name = value.strip()
        else:
            setattr(rule, key, value)
    rule.updated_at = utc_now()
    await commit_or_raise(session, context="updating renewal rule")
    return rule


async def delete_rule(session: AsyncSession, *, tenant_id: str, rule_id: str) -> None:
    rule = await get_rule(session, tenant_id=tenant_id, rule_id=rule_id)
    proposals = await renewals_repo.list_proposals(session, tenant_id, rule_id=rule.id)
    if any(proposal.status == "PENDING" for proposal in proposals):
        raise ValidationError(
            "Cannot delete rule with pending renewal proposals", code="RULE_HAS_PENDING_PROPOSALS"
        )
    # Historical proposals keep the rule name in metadata.
    for proposal in proposals:
        proposal.rule_id = None
    await session.delete(rule)
    await commit_or_raise(session, context="deleting renewal rule")
    logger.info("renewal_rule_deleted tenant_id=%s rule_id=%s", tenant_id, rule_id)


def _client_party(contract: Contract) -> dict[str, Any] | None:
    return next((party for party in contract.parties or [] if party.get("role") == "CLIENT"), None)


def is_contract_eligible(rule: RenewalRule, contract: Contract) -> bool:
    if contract.type not in (rule.contract_types or []):
        return False
    conditions = rule.conditions or {}
    if contract.value is not None:
        value = Decimal(contract.value)
        minimum = conditions.get("min_contract_value")
        maximum = conditions.get("max_contract_value")
        if minimum is not None and value < Decimal(str(minimum)):
            return False
        if maximum is not None and value > Decimal(str(maximum)):
            return False
    client = _client_party(contract)
    client_id = client.get("client_id") if client else None
    if client_id and client_id in (conditions.get("exclude_client_ids") or []):
        return False
    return True


async def _applicable_rule(session: AsyncSession, tenant_id: str, contract: Contract) -> RenewalRule | None:
    for rule in await renewals_repo.list_rules(session, tenant_id, is_active=True):
        if is_contract_eligible(rule, contract):
            return rule
    return None


def _proposed_value(
    rule: RenewalRule | None, current: Decimal | None
) -> tuple[Decimal | None, dict[str, Any] | None]:
    if rule is None or not rule.price_adjustment or current is None:
        return current, None
    kind = rule.price_adjustment.get("type")
    amount = Decimal(str(rule.price_adjustment.get("value", 0)))
    current = Decimal(current)
    if kind == "PERCENTAGE":
        proposed = current * (1 + amount / Decimal("100"))
        reason = f"{_format_number(amount)}% price adjustment"
    elif kind == "FIXED_AMOUNT":
        proposed = current + amount
        reason = f"Fixed adjustment of {_format_number(amount)}"
    else:
        return current, None
    adjustment = {"type": kind, "value": float(amount), "reason": reason}
    return proposed.quantize(Decimal("0.01")), adjustment


async def execute_renewal(
    session: AsyncSession, *, proposal: RenewalProposal, contract: Contract, actor_id: str
) -> Contract:
    """Apply an approved proposal to the contract.

    Changes are staged in ``session``; the caller commits them together with
    the proposal.
    """
    if proposal.renewal_type == "EXTEND_CURRENT":
        previous_end = contract.end_date
        contract.end_date = as_utc(proposal.proposed_end_date)
        if proposal.proposed_value is not None:
            contract.value = proposal.proposed_value
        contract.updated_at = utc_now()
        contracts_service.add_activity(
            session,
            contract,
            activity_type="CONTRACT_RENEWED",
            description="Contract term extended",
            actor_id=actor_id,
            metadata={
                "proposal_id": proposal.id,
                "previous_end_date": as_utc(previous_end).isoformat() if previous_end else None,
                "new_end_date": contract.end_date.isoformat(),
            },
        )
        return contract

    now = utc_now()
    renewed = contracts_service.new_contract(
        tenant_id=contract.tenant_id,
        title=f"{contract.title} (Renewed)",
        contract_type=contract.type,
        parties=[dict(party) for party in contract.parties or []],
        start_date=proposal.proposed_start_date,
        end_date=proposal.proposed_end_date,
        created_by=actor_id,
        description=contract.description,
        value=proposal.proposed_value,
        currency=contract.currency,
        terms=contract.terms,
        metadata={
            **(contract.metadata_json or {}),
            "renewed_from": contract.id,
            "renewal_proposal_id": proposal.id,
        },
        status="ACTIVE",
    )
    renewed.signed_at = contract.signed_at
    renewed.activated_at = now
    session.add(renewed)
    contracts_service.add_activity(
        session,
        renewed,
        activity_type="CONTRACT_CREATED",
        description="Contract created from renewal",
        actor_id=actor_id,
        metadata={"renewed_from": contract.id, "proposal_id": proposal.id},
    )
    contracts_service.mark_terminated(contract, "Renewed")
    contracts_service.add_activity(
        session,
        contract,
        activity_type="CONTRACT_TERMINATED",
        description="Contract renewed with new contract",
        actor_id=actor_id,
        metadata={"renewed_to": renewed.id, "proposal_id": proposal.id},
    )
    return renewed


async def create_proposal(
    session: AsyncSession,
    *,
    tenant_id: str,
    contract_id: str,
    created_by: str,
    rule_id: str | None = None,
    notes: str | None = None,
    terms: list[str] | None = None,
    auto_generated: bool | None = None,
) -> RenewalProposal:
    contract = await contracts_service.get_contract(session, tenant_id=tenant_id, contract_id=contract_id)
    if contract.end_date is None:
        raise ValidationError(
            "Contract must have an end date to create renewal proposal", code="CONTRACT_NO_END_DATE"
        )
    if contract.status != "ACTIVE":
        raise ValidationError("Only active contracts can be renewed", code="CONTRACT_NOT_ACTIVE")
    if await renewals_repo.find_pending_for_contract(session, tenant_id, contract.id) is not None:
        raise ConflictError(
            "Contract already has a pending renewal proposal", code="RENEWAL_PROPOSAL_PENDING"
        )

    if rule_id:
        rule: RenewalRule | None = await get_rule(session, tenant_id=tenant_id, rule_id=rule_id)
    else:
        rule = await _applicable_rule(session, tenant_id, contract)

    period = rule.renewal_period if rule and rule.renewal_period else DEFAULT_RENEWAL_PERIOD
    start = as_utc(contract.end_date)
    proposed_value, adjustment = _proposed_value(rule, contract.value)
    auto_approve = bool(rule and rule.auto_approve)
    now = utc_now()
    proposal = RenewalProposal(
        id=uuid4().hex,
        tenant_id=tenant_id,
        contract_id=contract.id,
        rule_id=rule.id if rule else None,
        current_end_date=start,
        proposed_start_date=start,
        proposed_end_date=add_months(start, period),
        renewal_period=period,
        current_value=contract.value,
        proposed_value=proposed_value,
        price_adjustment=adjustment,
        status="AUTO_RENEWED" if auto_approve else "PENDING",
        renewal_type=rule.renewal_type if rule else "EXTEND_CURRENT",
        terms=list(terms or []),
        notes=notes,
        metadata_json={
            "rule_applied": rule.name if rule else None,
            "auto_generated": rule_id is None if auto_generated is None else auto_generated,
        },
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )
    if auto_approve:
        proposal.approved_by = SYSTEM_ACTOR
        proposal.approved_at = now
        proposal.processed_at = now
    session.add(proposal)
    contract.renewal_status = proposal.status
    contracts_service.add_activity(
        session,
        contract,
        activity_type="RENEWAL_PROPOSED",
        description="Renewal proposal created",
        actor_id=created_by,
        metadata={"proposal_id": proposal.id, "status": proposal.status},
    )
    if auto_approve:
        await execute_renewal(session, proposal=proposal, contract=contract, actor_id=SYSTEM_ACTOR)
        # Termination by NEW_CONTRACT renewal leaves the mirror on the original.
        contract.renewal_status = proposal.status
    notifications = []
    if rule is not None:
        notifications = await fan_out(session, proposal=proposal, rule=rule, event_type="PROPOSAL_CREATED")
    await commit_or_raise(session, context="creating renewal proposal")
    if notifications:
        await deliver_webhooks(session, proposal=proposal, rule=rule, notifications=notifications)
    logger.info(
        "renewal_proposal_created tenant_id=%s proposal_id=%s contract_id=%s status=%s",
        tenant_id,
        proposal.id,
        contract.id,
        proposal.status,
    )
    return proposal


async def get_proposal(session: AsyncSession, *, tenant_id: str, proposal_id: str) -> RenewalProposal:
    proposal = await renewals_repo.get_proposal(session, tenant_id, proposal_id)
    if proposal is None:
        raise NotFoundError("Renewal proposal not found", code="RENEWAL_PROPOSAL_NOT_FOUND")
    return proposal


async def process_proposal(
    session: AsyncSession,
    *,
    tenant_id: str,
    proposal_id: str,
    processed_by: str,
    action: str,
    notes: str | None = None,
    decline_reason: str | None = None,
    modify_terms: bool = False,
    new_value: Decimal | None = None,
    new_end_date: datetime | None = None,
) -> RenewalProposal:
    proposal = await get_proposal(session, tenant_id=tenant_id, proposal_id=proposal_id)
    if proposal.status != "PENDING":
        raise ValidationError("Only pending proposals can be processed", code="RENEWAL_PROPOSAL_NOT_PENDING")
    if action == "DECLINE" and not (decline_reason or "").strip():
        raise ValidationError("A decline reason is required", code="DECLINE_REASON_REQUIRED")
    contract = await contracts_service.get_contract(session, tenant_id=tenant_id, contract_id=proposal.contract_id)
    if action == "APPROVE" and contract.status in contracts_service.CLOSED_STATUSES:
        raise ValidationError("Contract is already terminated or cancelled", code="CONTRACT_CLOSED")

    now = utc_now()
    if notes:
        proposal.notes = notes
    proposal.processed_at = now
    proposal.updated_at = now
    if action == "APPROVE":
        if modify_terms:
            if new_value is not None:
                if new_value < 0:
                    raise ValidationError("Proposed value cannot be negative", code="INVALID_CONTRACT_VALUE")
                proposal.proposed_value = new_value
            if new_end_date is not None:
                new_end_date = as_utc(new_end_date)
                if new_end_date <= as_utc(proposal.proposed_start_date):
                    raise ValidationError(
                        "Proposed end date must be after the proposed start date", code="INVALID_CONTRACT_DATES"
                    )
                proposal.proposed_end_date = new_end_date
        proposal.approved_by = processed_by
        proposal.approved_at = now
        proposal.status = "APPROVED"
        await execute_renewal(session, proposal=proposal, contract=contract, actor_id=processed_by)
        event_type = "PROPOSAL_APPROVED"
    else:
        proposal.declined_by = processed_by
        proposal.declined_at = now
        proposal.decline_reason = decline_reason
        proposal.status = "DECLINED"
        event_type = "PROPOSAL_DECLINED"
    contract.renewal_status = proposal.status

    rule = await renewals_repo.get_rule(session, tenant_id, proposal.rule_id) if proposal.rule_id else None
    notifications = []
    if rule is not None:
        notifications = await fan_out(session, proposal=proposal, rule=rule, event_type=event_type)
    await commit_or_raise(session, context="processing renewal proposal")
    if notifications:
        await deliver_webhooks(session, proposal=proposal, rule=rule, notifications=notifications)
    logger.info(
        "renewal_proposal_processed tenant_id=%s proposal_id=%s status=%s", tenant_id, proposal.id, proposal.status
    )
    return proposal


async def list_proposals(
    session: AsyncSession,
    *,
    tenant_id: str,
    status: str | None = None,
    contract_id: str | None = None,
    rule_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    page: int = 1,
    limit: int = 20,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> tuple[list[RenewalProposal], int]:
    if sort_by not in _SORT_COLUMNS:
        raise ValidationError(f"Cannot sort by {sort_by}", code="INVALID_SORT")
    rows = await renewals_repo.list_proposals(
        session,
        tenant_id,
        status=status,
        contract_id=contract_id,
        rule_id=rule_id,
        created_from=as_utc(start),
        created_to=as_utc(end),
    )

    def sort_key(proposal: RenewalProposal) -> tuple[int, Any]:
        value = getattr(proposal, sort_by)
        if value is None:
            return (1, 0)
        return (0, as_utc(value) if isinstance(value, datetime) else Decimal(value))

    present = [row for row in rows if getattr(row, sort_by) is not None]
    missing = [row for row in rows if getattr(row, sort_by) is None]
    present.sort(key=sort_key, reverse=sort_order == "desc")
    ordered = present + missing
    offset = (max(page, 1) - 1) * limit
    return ordered[offset : offset + limit], len(ordered)


def _days_until(end_date: datetime, now: datetime) -> int:
    return math.ceil((as_utc(end_date) - now).total_seconds() / 86400)


async def check_and_create_renewals(
    session: AsyncSession, *, tenant_id: str, now: datetime | None = None
) -> dict[str, int]:
    """Create proposals for contracts whose expiry falls on a rule's trigger day.

    A contract qualifies when it is eligible for an active DAYS_BEFORE_EXPIRY
    rule, ends ``trigger_days - 1`` to ``trigger_days`` days from now and has
    no proposal for its current end date yet.
    """
    settings = get_settings()
    now = now or utc_now()
    summary = {"created": 0, "processed": 0, "notifications": 0, "errors": 0}
    rules = await renewals_repo.list_rules(session, tenant_id, is_active=True, trigger="DAYS_BEFORE_EXPIRY")

    # Snapshot ids first: a failed proposal rolls back and expires loaded rows.
    candidates: dict[str, tuple[str, datetime]] = {}
    for rule in rules:
        if not rule.trigger_days:
            continue
        window = rule.trigger_days + settings.renewal_sweep_grace_days
        contracts = await contracts_service.expiring_contracts(session, tenant_id=tenant_id, days=window, now=now)
        for contract in contracts:
            if contract.id in candidates or not is_contract_eligible(rule, contract):
                continue
            days = _days_until(contract.end_date, now)
            if rule.trigger_days - 1 <= days <= rule.trigger_days:
                candidates[contract.id] = (rule.id, as_utc(contract.end_date))

    for contract_id, (rule_id, end_date) in candidates.items():
        if await renewals_repo.find_for_end_date(session, tenant_id, contract_id, end_date) is not None:
            continue
        try:
            proposal = await create_proposal(
                session,
                tenant_id=tenant_id,
                contract_id=contract_id,
                created_by=SYSTEM_ACTOR,
                rule_id=rule_id,
                auto_generated=True,
            )
        except (CoworkHubError, SQLAlchemyError) as exc:
            await session.rollback()
            summary["errors"] += 1
            logger.warning(
                "renewal_sweep_contract_failed tenant_id=%s contract_id=%s rule_id=%s",
                tenant_id,
                contract_id,
                rule_id,
                exc_info=exc,
            )
            continue
        summary["created"] += 1
        if proposal.status == "AUTO_RENEWED":
            summary["processed"] += 1
        notifications = await renewals_repo.list_notifications(session, tenant_id, proposal.id)
        summary["notifications"] += len(notifications)
    logger.info(
        "renewal_sweep_completed tenant_id=%s created=%s processed=%s errors=%s",
        tenant_id,
        summary["created"],
        summary["processed"],
        summary["errors"],
    )
    return summary


async def renewal_stats(session: AsyncSession, *, tenant_id: str, now: datetime | None = None) -> dict[str, Any]:
    settings = get_settings()
    now = now or utc_now()
    proposals = await renewals_repo.list_proposals(session, tenant_id)
    total = len(proposals)
    by_status = Counter(proposal.status for proposal in proposals)
    succeeded = by_status.get("AUTO_RENEWED", 0) + by_status.get("APPROVED", 0)

    def percentage(count: int, of: int) -> float:
        return round(count / of * 100, 2) if of else 0.0

    by_type: dict[str, Counter[str]] = {}
    for proposal in proposals:
        by_type.setdefault(proposal.renewal_type, Counter())[proposal.status] += 1

    upcoming = await contracts_repo.list_active_ending_between(
        session,
        tenant_id,
        start=now,
        end=now + timedelta(days=settings.renewal_upcoming_window_days),
    )
    rules = await renewals_repo.list_rules(session, tenant_id, is_active=True)
    upcoming_renewals = []
    for contract in upcoming:
        client = _client_party(contract)
        upcoming_renewals.append(
            {
                "contract_id": contract.id,
                "contract_title": contract.title,
                "client_name": client.get("name") if client else "Unknown",
                "expiry_date": as_utc(contract.end_date).isoformat(),
                "days_until_expiry": _days_until(contract.end_date, now),
                "has_active_rule": any(is_contract_eligible(rule, contract) for rule in rules),
            }
        )

    return {
        "total_proposals": total,
        "pending_approval": by_status.get("PENDING", 0),
        "auto_approved": by_status.get("AUTO_RENEWED", 0),
        "approved": by_status.get("APPROVED", 0),
        "declined": by_status.get("DECLINED", 0),
        "processed": sum(1 for proposal in proposals if proposal.processed_at is not None),
        "success_rate": percentage(succeeded, total),
        "by_status": [
            {"status": status, "count": count, "percentage": percentage(count, total)}
            for status, count in by_status.most_common()
        ],
        "by_renewal_type": [
            {
                "type": kind,
                "count": sum(counts.values()),
                "success_rate": percentage(
                    counts.get("AUTO_RENEWED", 0) + counts.get("APPROVED", 0), sum(counts.values())
                ),
            }
            for kind, counts in sorted(by_type.items())
        ],
        "upcoming_renewals": upcoming_renewals,
    }