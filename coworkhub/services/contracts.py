from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
from decimal import Decimal
import logging
from typing import Any
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.core.clock import as_utc, utc_now
from coworkhub.core.errors import NotFoundError, ValidationError
from coworkhub.domain.models import Contract, ContractActivity
from coworkhub.persistence.db import commit_or_raise
from coworkhub.persistence.repos import contracts as contracts_repo


logger = logging.getLogger(__name__)

CLOSED_STATUSES = ("TERMINATED", "CANCELLED")
_UPDATABLE_FIELDS = {
    "title",
    "description",
    "type",
    "parties",
    "start_date",
    "end_date",
    "value",
    "currency",
    "terms",
    "metadata",
}


def validate_parties(parties: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Check the party roster and return normalized party documents."""
    if len(parties) < 2:
        raise ValidationError("Contract must have at least 2 parties", code="CONTRACT_PARTIES_REQUIRED")
    emails = [str(party.get("email", "")).strip().lower() for party in parties]
    if len(set(emails)) != len(emails):
        raise ValidationError("Party emails must be unique", code="CONTRACT_PARTY_DUPLICATE")
    roles = {party.get("role") for party in parties}
    if "CLIENT" not in roles or "COMPANY" not in roles:
        raise ValidationError(
            "Contract must have at least one CLIENT and one COMPANY party", code="CONTRACT_PARTY_ROLES"
        )
    return [
        {
            "name": party.get("name"),
            "email": party.get("email"),
            "role": party.get("role"),
            "client_id": party.get("client_id"),
            "signed_at": _iso(party.get("signed_at")),
        }
        for party in parties
    ]


def _iso(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    return str(value)


def _validate_dates(start_date: datetime, end_date: datetime | None) -> None:
    if end_date is not None and as_utc(end_date) <= as_utc(start_date):
        raise ValidationError("End date must be after start date", code="INVALID_CONTRACT_DATES")


def add_activity(
    session: AsyncSession,
    contract: Contract,
    *,
    activity_type: str,
    description: str,
    actor_id: str | None,
    metadata: dict[str, Any] | None = None,
) -> None:
    session.add(
        ContractActivity(
            tenant_id=contract.tenant_id,
            contract_id=contract.id,
            activity_type=activity_type,
            description=description,
            actor_id=actor_id,
            metadata_json=dict(metadata or {}),
            created_at=utc_now(),
        )
    )


def new_contract(
    *,
    tenant_id: str,
    title: str,
    contract_type: str,
    parties: list[dict[str, Any]],
    start_date: datetime,
    end_date: datetime | None,
    created_by: str | None,
    description: str | None = None,
    value: Decimal | None = None,
    currency: str = "USD",
    terms: str | None = None,
    metadata: dict[str, Any] | None = None,
    status: str = "DRAFT",
) -> Contract:
    now = utc_now()
    return Contract(
        id=uuid4().hex,
        tenant_id=tenant_id,
        title=title,
        description=description,
        type=contract_type,
        status=status,
        parties=parties,
        start_date=as_utc(start_date),
        end_date=as_utc(end_date),
        value=value,
        currency=currency,
        terms=terms,
        renewal_status="NONE",
        metadata_json=dict(metadata or {}),
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )


async def create_contract(
    session: AsyncSession,
    *,
    tenant_id: str,
    created_by: str,
    title: str,
    contract_type: str,
    parties: list[dict[str, Any]],
    start_date: datetime,
    end_date: datetime | None = None,
    description: str | None = None,
    value: Decimal | None = None,
    currency: str = "USD",
    terms: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> Contract:
    if not title or not title.strip():
        raise ValidationError("Contract title is required", code="CONTRACT_TITLE_REQUIRED")
    _validate_dates(start_date, end_date)
    if value is not None and value < 0:
        raise ValidationError("Contract value cannot be negative", code="INVALID_CONTRACT_VALUE")
    contract = new_contract(
        tenant_id=tenant_id,
        title=title.strip(),
        contract_type=contract_type,
        parties=validate_parties(parties),
        start_date=start_date,
        end_date=end_date,
        created_by=created_by,
        description=description,
        value=value,
        currency=currency,
        terms=terms,
        metadata=metadata,
    )
    session.add(contract)
    add_activity(
        session,
        contract,
        activity_type="CONTRACT_CREATED",
        description=f"{contract.type} contract created",
        actor_id=created_by,
        metadata={"type": contract.type, "value": float(value) if value is not None else None},
    )
    await commit_or_raise(session, context="creating contract")
    logger.info("contract_created tenant_id=%s contract_id=%s", tenant_id, contract.id)
    return contract


async def get_contract(session: AsyncSession, *, tenant_id: str, contract_id: str) -> Contract:
    contract = await contracts_repo.get_contract(session, tenant_id, contract_id)
    if contract is None:
        raise NotFoundError("Contract not found", code="CONTRACT_NOT_FOUND")
    return contract


async def update_contract(
    session: AsyncSession,
    *,
    tenant_id: str,
    contract_id: str,
    actor_id: str,
    changes: dict[str, Any],
) -> Contract:
    changes = {key: value for key, value in changes.items() if key in _UPDATABLE_FIELDS}
    if not changes:
        raise ValidationError("No fields to update", code="EMPTY_UPDATE")
    contract = await get_contract(session, tenant_id=tenant_id, contract_id=contract_id)
    if contract.status in CLOSED_STATUSES:
        raise ValidationError("Cannot update terminated or cancelled contract", code="CONTRACT_CLOSED")
    if "title" in changes and not (changes["title"] or "").strip():
        raise ValidationError("Contract title is required", code="CONTRACT_TITLE_REQUIRED")
    _validate_dates(
        changes.get("start_date") or contract.start_date,
        changes["end_date"] if "end_date" in changes else contract.end_date,
    )
    if changes.get("value") is not None and changes["value"] < 0:
        raise ValidationError("Contract value cannot be negative", code="INVALID_CONTRACT_VALUE")

    for key, value in changes.items():
        if key == "parties":
            contract.parties = validate_parties(value or [])
        elif key == "metadata":
            contract.metadata_json = dict(value or {})
        elif key in ("start_date", "end_date"):
            setattr(contract, key, as_utc(value))
        else:
            setattr(contract, key, value)
    contract.updated_at = utc_now()
    add_activity(
        session,
        contract,
        activity_type="CONTRACT_UPDATED",
        description="Contract updated",
        actor_id=actor_id,
        metadata={"fields": sorted(changes)},
    )
    await commit_or_raise(session, context="updating contract")
    return contract


async def _transition(
    session: AsyncSession,
    contract: Contract,
    *,
    status: str,
    activity_type: str,
    description: str,
    actor_id: str,
    metadata: dict[str, Any] | None = None,
) -> Contract:
    previous = contract.status
    contract.status = status
    contract.updated_at = utc_now()
    add_activity(
        session,
        contract,
        activity_type=activity_type,
        description=description,
        actor_id=actor_id,
        metadata={"from": previous, "to": status, **(metadata or {})},
    )
    await commit_or_raise(session, context=f"moving contract to {status.lower()}")
    logger.info(
        "contract_transition tenant_id=%s contract_id=%s from=%s to=%s",
        contract.tenant_id,
        contract.id,
        previous,
        status,
    )
    return contract


async def send_for_signature(
    session: AsyncSession, *, tenant_id: str, contract_id: str, actor_id: str
) -> Contract:
    contract = await get_contract(session, tenant_id=tenant_id, contract_id=contract_id)
    if contract.status != "DRAFT":
        raise ValidationError("Only draft contracts can be sent for signature", code="CONTRACT_NOT_DRAFT")
    contract.workflow_id = f"workflow_{uuid4().hex}"
    return await _transition(
        session,
        contract,
        status="PENDING_SIGNATURE",
        activity_type="SIGNATURE_REQUESTED",
        description="Contract sent for signature",
        actor_id=actor_id,
        metadata={
            "workflow_id": contract.workflow_id,
            "parties": [{"name": party["name"], "email": party["email"]} for party in contract.parties],
        },
    )


async def sign_contract(
    session: AsyncSession, *, tenant_id: str, contract_id: str, party_email: str, actor_id: str
) -> Contract:
    contract = await get_contract(session, tenant_id=tenant_id, contract_id=contract_id)
    if contract.status != "PENDING_SIGNATURE":
        raise ValidationError("Only contracts pending signature can be signed", code="CONTRACT_NOT_PENDING_SIGNATURE")
    email = party_email.strip().lower()
    parties = [dict(party) for party in contract.parties]
    matched = next((party for party in parties if str(party.get("email", "")).lower() == email), None)
    if matched is None:
        raise NotFoundError("Party not found on contract", code="CONTRACT_PARTY_NOT_FOUND")
    if matched.get("signed_at"):
        raise ValidationError("Party has already signed", code="CONTRACT_PARTY_ALREADY_SIGNED")
    now = utc_now()
    matched["signed_at"] = now.isoformat()
    contract.parties = parties
    if all(party.get("signed_at") for party in parties):
        contract.signed_at = now
    contract.updated_at = now
    add_activity(
        session,
        contract,
        activity_type="CONTRACT_SIGNED",
        description=f"Contract signed by {matched.get('name') or matched.get('email')}",
        actor_id=actor_id,
        metadata={"party_email": matched.get("email")},
    )
    await commit_or_raise(session, context="signing contract")
    return contract


async def activate_contract(session: AsyncSession, *, tenant_id: str, contract_id: str, actor_id: str) -> Contract:
    contract = await get_contract(session, tenant_id=tenant_id, contract_id=contract_id)
    if contract.status != "PENDING_SIGNATURE":
        raise ValidationError(
            "Only contracts pending signature can be activated", code="CONTRACT_NOT_PENDING_SIGNATURE"
        )
    unsigned = [party.get("email") for party in contract.parties if not party.get("signed_at")]
    if unsigned:
        raise ValidationError(
            "All parties must sign before contract can be activated",
            code="CONTRACT_UNSIGNED_PARTIES",
            details={"unsigned": unsigned},
        )
    contract.activated_at = utc_now()
    return await _transition(
        session,
        contract,
        status="ACTIVE",
        activity_type="CONTRACT_ACTIVATED",
        description="Contract activated",
        actor_id=actor_id,
    )


async def suspend_contract(
    session: AsyncSession, *, tenant_id: str, contract_id: str, actor_id: str, reason: str | None = None
) -> Contract:
    contract = await get_contract(session, tenant_id=tenant_id, contract_id=contract_id)
    if contract.status != "ACTIVE":
        raise ValidationError("Only active contracts can be suspended", code="CONTRACT_NOT_ACTIVE")
    contract.suspended_at = utc_now()
    return await _transition(
        session,
        contract,
        status="SUSPENDED",
        activity_type="CONTRACT_SUSPENDED",
        description="Contract suspended",
        actor_id=actor_id,
        metadata={"reason": reason},
    )


async def reactivate_contract(
    session: AsyncSession, *, tenant_id: str, contract_id: str, actor_id: str
) -> Contract:
    contract = await get_contract(session, tenant_id=tenant_id, contract_id=contract_id)
    if contract.status != "SUSPENDED":
        raise ValidationError("Only suspended contracts can be reactivated", code="CONTRACT_NOT_SUSPENDED")
    contract.suspended_at = None
    return await _transition(
        session,
        contract,
        status="ACTIVE",
        activity_type="CONTRACT_REACTIVATED",
        description="Contract reactivated",
        actor_id=actor_id,
    )


def mark_terminated(contract: Contract, reason: str) -> None:
    contract.status = "TERMINATED"
    contract.terminated_at = utc_now()
    contract.termination_reason = reason
    contract.updated_at = contract.terminated_at


async def terminate_contract(
    session: AsyncSession, *, tenant_id: str, contract_id: str, actor_id: str, reason: str
) -> Contract:
    if not reason or not reason.strip():
        raise ValidationError("Termination reason is required", code="TERMINATION_REASON_REQUIRED")
    contract = await get_contract(session, tenant_id=tenant_id, contract_id=contract_id)
    if contract.status in CLOSED_STATUSES:
        raise ValidationError("Contract is already terminated or cancelled", code="CONTRACT_CLOSED")
    contract.terminated_at = utc_now()
    contract.termination_reason = reason
    return await _transition(
        session,
        contract,
        status="TERMINATED",
        activity_type="CONTRACT_TERMINATED",
        description="Contract terminated",
        actor_id=actor_id,
        metadata={"reason": reason},
    )


async def cancel_contract(
    session: AsyncSession, *, tenant_id: str, contract_id: str, actor_id: str, reason: str | None = None
) -> Contract:
    contract = await get_contract(session, tenant_id=tenant_id, contract_id=contract_id)
    if contract.status == "ACTIVE":
        raise ValidationError("Active contracts must be terminated, not cancelled", code="CONTRACT_ACTIVE")
    if contract.status in CLOSED_STATUSES:
        raise ValidationError("Contract is already terminated or cancelled", code="CONTRACT_CLOSED")
    contract.cancelled_at = utc_now()
    return await _transition(
        session,
        contract,
        status="CANCELLED",
        activity_type="CONTRACT_CANCELLED",
        description="Contract cancelled",
        actor_id=actor_id,
        metadata={"reason": reason},
    )


async def list_contracts(
    session: AsyncSession,
    *,
    tenant_id: str,
    status: str | None = None,
    contract_type: str | None = None,
    search: str | None = None,
    skip: int = 0,
    take: int = 50,
) -> tuple[list[Contract], int]:
    rows = await contracts_repo.list_contracts(
        session, tenant_id, status=status, contract_type=contract_type, search=search
    )
    return rows[skip : skip + take], len(rows)


async def contract_activities(
    session: AsyncSession, *, tenant_id: str, contract_id: str
) -> list[ContractActivity]:
    await get_contract(session, tenant_id=tenant_id, contract_id=contract_id)
    return await contracts_repo.list_activities(session, tenant_id, contract_id)


async def expiring_contracts(
    session: AsyncSession, *, tenant_id: str, days: int = 30, now: datetime | None = None
) -> list[Contract]:
    if days < 1:
        raise ValidationError("days must be at least 1", code="INVALID_WINDOW")
    now = now or utc_now()
    return await contracts_repo.list_active_ending_between(
        session, tenant_id, start=now, end=now + timedelta(days=days)
    )


async def contract_stats(session: AsyncSession, *, tenant_id: str) -> dict[str, Any]:
    contracts = await contracts_repo.list_contracts(session, tenant_id)
    total = len(contracts)
    by_status = Counter(contract.status for contract in contracts)
    by_type: dict[str, dict[str, Any]] = {}
    active_value = Decimal("0")
    for contract in contracts:
        entry = by_type.setdefault(contract.type, {"count": 0, "value": Decimal("0")})
        entry["count"] += 1
        if contract.value is not None:
            entry["value"] += Decimal(contract.value)
            if contract.status == "ACTIVE":
                active_value += Decimal(contract.value)
    expiring = await expiring_contracts(session, tenant_id=tenant_id, days=30)

    recent = await contracts_repo.list_recent_activities(session, tenant_id, limit=5)
    return {
        "total_contracts": total,
        "active_contracts": by_status.get("ACTIVE", 0),
        "pending_signature": by_status.get("PENDING_SIGNATURE", 0),
        "expiring_in_30_days": len(expiring),
        "by_status": [
            {
                "status": status,
                "count": count,
                "percentage": round(count / total * 100, 1) if total else 0.0,
            }
            for status, count in by_status.most_common()
        ],
        "by_type": [
            {"type": kind, "count": entry["count"], "value": float(entry["value"])}
            for kind, entry in sorted(by_type.items())
        ],
        "total_active_value": float(active_value),
        "recent_activity": [
            {
                "contract_id": activity.contract_id,
                "type": activity.activity_type,
                "description": activity.description,
                "actor_id": activity.actor_id,
                "created_at": as_utc(activity.created_at).isoformat(),
            }
            for activity in recent
        ],
    }
