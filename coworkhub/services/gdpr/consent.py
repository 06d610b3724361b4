from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Any
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.core.clock import as_utc, utc_now
from coworkhub.core.config import get_settings
from coworkhub.core.errors import NotFoundError, ValidationError
from coworkhub.domain.models import ConsentRecord
from coworkhub.persistence.db import commit_or_raise
from coworkhub.persistence.repos import gdpr as gdpr_repo


logger = logging.getLogger(__name__)


def consent_state(record: ConsentRecord, now: datetime) -> str:
    if record.withdrawn_at is not None:
        return "WITHDRAWN"
    if not record.is_granted:
        return "DENIED"
    expires_at = as_utc(record.expires_at)
    if expires_at is not None and expires_at <= now:
        return "EXPIRED"
    return "GRANTED"


def _latest_per_type(records: list[ConsentRecord]) -> dict[str, ConsentRecord]:
    latest: dict[str, ConsentRecord] = {}
    for record in records:
        # Records arrive newest first.
        latest.setdefault(record.consent_type, record)
    return latest


async def record_consent(
    session: AsyncSession,
    *,
    tenant_id: str,
    user_id: str,
    consent_type: str,
    purpose: str,
    is_granted: bool,
    version: str,
    source: str,
    legal_basis: str,
    expiry_days: int | None = None,
    metadata: dict[str, Any] | None = None,
) -> ConsentRecord:
    if await gdpr_repo.get_user(session, tenant_id, user_id) is None:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")
    if expiry_days is not None and expiry_days < 1:
        raise ValidationError("Consent expiry must be at least 1 day", code="INVALID_CONSENT_EXPIRY")
    now = utc_now()
    expires_at = None
    if is_granted:
        days = expiry_days or get_settings().consent_default_expiry_days
        expires_at = now + timedelta(days=days)
    record = ConsentRecord(
        id=uuid4().hex,
        tenant_id=tenant_id,
        user_id=user_id,
        consent_type=consent_type,
        purpose=purpose,
        is_granted=is_granted,
        version=version,
        source=source,
        legal_basis=legal_basis,
        recorded_at=now,
        expires_at=expires_at,
        metadata_json=metadata or {},
    )
    session.add(record)
    await commit_or_raise(session, context="recording consent")
    logger.info(
        "consent_recorded tenant_id=%s user_id=%s consent_type=%s granted=%s",
        tenant_id,
        user_id,
        consent_type,
        is_granted,
    )
    return record


async def withdraw_consent(
    session: AsyncSession,
    *,
    tenant_id: str,
    user_id: str,
    consent_type: str,
    reason: str | None = None,
) -> ConsentRecord:
    now = utc_now()
    records = await gdpr_repo.list_consents(session, tenant_id, user_id=user_id, consent_type=consent_type)
    latest = records[0] if records else None
    if latest is None or consent_state(latest, now) != "GRANTED":
        raise NotFoundError("No active consent found", code="CONSENT_NOT_FOUND")
    latest.withdrawn_at = now
    latest.withdrawal_reason = reason
    await commit_or_raise(session, context="withdrawing consent")
    logger.info(
        "consent_withdrawn tenant_id=%s user_id=%s consent_type=%s", tenant_id, user_id, consent_type
    )
    return latest


async def consent_status(
    session: AsyncSession, *, tenant_id: str, user_id: str, now: datetime | None = None
) -> dict[str, Any]:
    now = now or utc_now()
    records = await gdpr_repo.list_consents(session, tenant_id, user_id=user_id)
    consents = []
    for consent_type, record in sorted(_latest_per_type(records).items()):
        state = consent_state(record, now)
        consents.append(
            {
                "consent_type": consent_type,
                "status": state,
                "is_valid": state == "GRANTED",
                "purpose": record.purpose,
                "version": record.version,
                "legal_basis": record.legal_basis,
                "recorded_at": as_utc(record.recorded_at).isoformat(),
                "expires_at": as_utc(record.expires_at).isoformat() if record.expires_at else None,
                "withdrawn_at": as_utc(record.withdrawn_at).isoformat() if record.withdrawn_at else None,
            }
        )
    return {"user_id": user_id, "consents": consents}


async def consent_report(
    session: AsyncSession, *, tenant_id: str, now: datetime | None = None
) -> dict[str, Any]:
    now = now or utc_now()
    records = await gdpr_repo.list_consents(session, tenant_id)

    by_user: dict[str, list[ConsentRecord]] = {}
    for record in records:
        by_user.setdefault(record.user_id, []).append(record)

    by_type: dict[str, dict[str, int]] = {}
    users_with_valid = 0
    expired = 0
    withdrawn = 0
    for user_records in by_user.values():
        has_valid = False
        for consent_type, record in _latest_per_type(user_records).items():
            state = consent_state(record, now)
            bucket = by_type.setdefault(consent_type, {"granted": 0, "withdrawn": 0, "expired": 0, "denied": 0})
            bucket[state.lower()] += 1
            if state == "GRANTED":
                has_valid = True
            elif state == "EXPIRED":
                expired += 1
            elif state == "WITHDRAWN":
                withdrawn += 1
        if has_valid:
            users_with_valid += 1

    total_users = len(by_user)
    score = round(users_with_valid / total_users * 100) if total_users else 0
    return {
        "report_date": now.isoformat(),
        "total_users": total_users,
        "users_with_valid_consent": users_with_valid,
        "expired_consents": expired,
        "withdrawn_consents": withdrawn,
        "by_type": by_type,
        "compliance_score": score,
    }
