from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
from typing import Any
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.core.clock import as_utc, utc_now
from coworkhub.core.errors import CoworkHubError, DatabaseError, NotFoundError, ValidationError
from coworkhub.domain.models import RetentionExecution, RetentionPolicy, User
from coworkhub.persistence.db import commit_or_raise
from coworkhub.persistence.repos import gdpr as gdpr_repo
from coworkhub.services.gdpr.anonymization import scrub_booking, scrub_request, scrub_user


logger = logging.getLogger(__name__)

# Statutory floors; shorter periods are rejected at policy creation.
MINIMUM_RETENTION_DAYS: dict[str, int] = {
    "AuditLog": 2555,
    "User": 30,
}
_UPDATABLE_FIELDS = {
    "name",
    "description",
    "retention_period_days",
    "action",
    "legal_basis",
    "criteria",
    "exceptions",
    "is_active",
}


def _default_field(entity_type: str) -> str:
    return gdpr_repo.RETENTION_FIELDS[entity_type]["fields"][0]


def validate_policy(
    *, entity_type: str, retention_period_days: int, action: str, criteria: dict[str, Any]
) -> dict[str, Any]:
    """Validate a policy definition and return normalized criteria."""
    if entity_type not in gdpr_repo.RETENTION_FIELDS:
        raise ValidationError(f"Unsupported entity type: {entity_type}", code="RETENTION_UNSUPPORTED_ENTITY")
    if retention_period_days < 1:
        raise ValidationError("Retention period must be at least 1 day", code="RETENTION_INVALID_PERIOD")
    minimum = MINIMUM_RETENTION_DAYS.get(entity_type)
    if minimum and retention_period_days < minimum:
        raise ValidationError(
            f"Retention period for {entity_type} must be at least {minimum} days for compliance",
            code="RETENTION_BELOW_MINIMUM",
        )
    operation = criteria.get("operation") or "older_than"
    field_name = criteria.get("field") or _default_field(entity_type)
    if operation not in ("older_than", "not_accessed_since"):
        raise ValidationError(f"Unsupported criteria operation: {operation}", code="RETENTION_INVALID_CRITERIA")
    if operation == "not_accessed_since" and entity_type != "User":
        raise ValidationError(
            "not_accessed_since only applies to User records", code="RETENTION_INVALID_CRITERIA"
        )
    if field_name not in gdpr_repo.RETENTION_FIELDS[entity_type]["fields"]:
        raise ValidationError(
            f"Field {field_name} is not a retention date for {entity_type}", code="RETENTION_INVALID_CRITERIA"
        )
    return {"field": field_name, "operation": operation, "value": criteria.get("value")}


async def create_policy(
    session: AsyncSession,
    *,
    tenant_id: str,
    created_by: str,
    name: str,
    entity_type: str,
    retention_period_days: int,
    action: str,
    legal_basis: str,
    description: str | None = None,
    criteria: dict[str, Any] | None = None,
    exceptions: list[str] | None = None,
    is_active: bool = True,
) -> RetentionPolicy:
    if not name or not name.strip():
        raise ValidationError("Policy name is required", code="RETENTION_NAME_REQUIRED")
    if not legal_basis or not legal_basis.strip():
        raise ValidationError("A legal basis is required", code="RETENTION_LEGAL_BASIS_REQUIRED")
    normalized = validate_policy(
        entity_type=entity_type,
        retention_period_days=retention_period_days,
        action=action,
        criteria=criteria or {},
    )
    now = utc_now()
    policy = RetentionPolicy(
        id=uuid4().hex,
        tenant_id=tenant_id,
        name=name.strip(),
        description=description,
        entity_type=entity_type,
        retention_period_days=retention_period_days,
        action=action,
        legal_basis=legal_basis,
        criteria=normalized,
        exceptions=[str(value) for value in exceptions or []],
        is_active=is_active,
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )
    session.add(policy)
    await commit_or_raise(session, context="creating retention policy")
    logger.info("retention_policy_created tenant_id=%s policy_id=%s", tenant_id, policy.id)
    return policy


async def get_policy(session: AsyncSession, *, tenant_id: str, policy_id: str) -> RetentionPolicy:
    policy = await gdpr_repo.get_policy(session, tenant_id, policy_id)
    if policy is None:
        raise NotFoundError("Retention policy not found", code="RETENTION_POLICY_NOT_FOUND")
    return policy


async def list_policies(
    session: AsyncSession, *, tenant_id: str, is_active: bool | None = None
) -> list[RetentionPolicy]:
    return await gdpr_repo.list_policies(session, tenant_id, is_active=is_active)


async def update_policy(
    session: AsyncSession, *, tenant_id: str, policy_id: str, changes: dict[str, Any]
) -> RetentionPolicy:
    changes = {key: value for key, value in changes.items() if key in _UPDATABLE_FIELDS}
    if not changes:
        raise ValidationError("No fields to update", code="EMPTY_UPDATE")
    policy = await get_policy(session, tenant_id=tenant_id, policy_id=policy_id)
    if "name" in changes and not (changes["name"] or "").strip():
        raise ValidationError("Policy name is required", code="RETENTION_NAME_REQUIRED")
    normalized = validate_policy(
        entity_type=policy.entity_type,
        retention_period_days=changes.get("retention_period_days") or policy.retention_period_days,
        action=changes.get("action") or policy.action,
        criteria=changes["criteria"] if changes.get("criteria") is not None else policy.criteria,
    )
    for key, value in changes.items():
        if key == "criteria":
            policy.criteria = normalized
        elif key == "exceptions":
            policy.exceptions = [str(item) for item in value or []]
        else:
            setattr(policy, key, value)
    policy.updated_at = utc_now()
    await commit_or_raise(session, context="updating retention policy")
    return policy


async def delete_policy(session: AsyncSession, *, tenant_id: str, policy_id: str) -> RetentionPolicy:
    # Executions reference the policy; deactivation keeps that history readable.
    policy = await get_policy(session, tenant_id=tenant_id, policy_id=policy_id)
    policy.is_active = False
    policy.updated_at = utc_now()
    await commit_or_raise(session, context="deleting retention policy")
    logger.info("retention_policy_deactivated tenant_id=%s policy_id=%s", tenant_id, policy.id)
    return policy


@dataclass
class _Counts:
    processed: int = 0
    deleted: int = 0
    anonymized: int = 0
    archived: int = 0
    flagged: int = 0
    errors: list[str] = field(default_factory=list)


def _flag(record: Any, key: str, value: Any) -> None:
    if not hasattr(record, "metadata_json"):
        raise ValidationError(f"{type(record).__name__} records cannot carry retention flags")
    record.metadata_json = {**(record.metadata_json or {}), key: value}


async def _delete(session: AsyncSession, entity_type: str, record: Any) -> None:
    if entity_type == "ServiceRequest":
        for row in await gdpr_repo.list_request_history(session, record.tenant_id, record.id):
            await session.delete(row)
    elif entity_type == "User":
        for key in await gdpr_repo.list_user_api_keys(session, record.tenant_id, record.id):
            await session.delete(key)
    await session.delete(record)


async def _anonymize(session: AsyncSession, entity_type: str, record: Any) -> None:
    if entity_type == "User":
        await scrub_user(session, record, reason="RETENTION_POLICY")
    elif entity_type == "Booking":
        scrub_booking(record)
    elif entity_type == "ServiceRequest":
        scrub_request(record)
    elif entity_type == "AuditLog":
        record.ip_address = None
        record.user_agent = None
        record.metadata_json = {"anonymized": True}
    elif entity_type == "SecurityEvent":
        record.ip_address = None
        record.user_id = None
        record.metadata_json = {"anonymized": True}


async def _apply(
    session: AsyncSession, policy: RetentionPolicy, record: Any, counts: _Counts, now: datetime
) -> None:
    if policy.action == "DELETE":
        await _delete(session, policy.entity_type, record)
        counts.deleted += 1
    elif policy.action == "ANONYMIZE":
        await _anonymize(session, policy.entity_type, record)
        counts.anonymized += 1
    elif policy.action == "ARCHIVE":
        if isinstance(record, User):
            record.is_active = False
        else:
            _flag(record, "archived_at", now.isoformat())
        counts.archived += 1
    elif policy.action == "REVIEW":
        if not isinstance(record, User):
            _flag(record, "retention_review", {"policy_id": policy.id, "flagged_at": now.isoformat()})
        counts.flagged += 1
    else:
        raise ValidationError(f"Unsupported retention action: {policy.action}")


async def _execute_policy(
    session: AsyncSession, policy: RetentionPolicy, *, executed_by: str, now: datetime
) -> RetentionExecution:
    counts = _Counts()
    policy_id = policy.id
    tenant_id = policy.tenant_id
    status = "SUCCESS"
    cutoff = now - timedelta(days=policy.retention_period_days)
    criteria = policy.criteria or {}
    records = await gdpr_repo.list_retention_candidates(
        session,
        tenant_id,
        entity_type=policy.entity_type,
        field=criteria.get("field") or _default_field(policy.entity_type),
        operation=criteria.get("operation") or "older_than",
        cutoff=cutoff,
        exceptions=policy.exceptions,
    )
    counts.processed = len(records)
    for record in records:
        record_id = record.id
        try:
            await _apply(session, policy, record, counts, now)
        except CoworkHubError as exc:
            counts.errors.append(f"Failed to process {policy.entity_type} {record_id}: {exc.message}")
            status = "PARTIAL"
    policy.last_executed_at = now
    try:
        await commit_or_raise(session, context="executing retention policy")
    except DatabaseError as exc:
        # The rollback discarded every staged change for this policy.
        counts = _Counts(processed=counts.processed, errors=[*counts.errors, exc.message])
        status = "FAILED"
        logger.warning("retention_policy_failed tenant_id=%s policy_id=%s", tenant_id, policy_id, exc_info=exc)

    execution = RetentionExecution(
        id=uuid4().hex,
        tenant_id=tenant_id,
        policy_id=policy_id,
        executed_at=now,
        executed_by=executed_by,
        records_processed=counts.processed,
        records_deleted=counts.deleted,
        records_anonymized=counts.anonymized,
        records_archived=counts.archived,
        records_flagged=counts.flagged,
        errors=counts.errors,
        status=status,
    )
    session.add(execution)
    await commit_or_raise(session, context="recording retention execution")
    logger.info(
        "retention_policy_executed tenant_id=%s policy_id=%s processed=%s status=%s",
        tenant_id,
        policy_id,
        counts.processed,
        status,
    )
    return execution


async def execute_retention_policies(
    session: AsyncSession, *, tenant_id: str, executed_by: str = "system", now: datetime | None = None
) -> list[RetentionExecution]:
    now = now or utc_now()
    policy_ids = [policy.id for policy in await gdpr_repo.list_policies(session, tenant_id, is_active=True)]
    executions: list[RetentionExecution] = []
    for policy_id in policy_ids:
        # Reload per policy: a failed commit expires everything loaded earlier.
        policy = await gdpr_repo.get_policy(session, tenant_id, policy_id)
        if policy is None:
            continue
        executions.append(await _execute_policy(session, policy, executed_by=executed_by, now=now))
    return executions


def _score(policies: list[RetentionPolicy], latest: dict[str, RetentionExecution]) -> tuple[int, list[str]]:
    if not policies:
        return 0, ["No active retention policies are configured"]
    score = 100
    violations: list[str] = []
    for policy in policies:
        execution = latest.get(policy.id)
        if execution is None:
            score -= 10
            violations.append(f"Policy {policy.name} has never been executed")
        elif execution.status == "FAILED":
            score -= 10
            violations.append(f"Last execution of policy {policy.name} failed")
        elif execution.status == "PARTIAL":
            score -= 5
            violations.append(f"Last execution of policy {policy.name} was partial")
    return max(0, score), violations


async def retention_report(
    session: AsyncSession, *, tenant_id: str, now: datetime | None = None
) -> dict[str, Any]:
    now = now or utc_now()
    policies = await gdpr_repo.list_policies(session, tenant_id, is_active=True)
    executions = await gdpr_repo.list_executions(session, tenant_id)
    latest: dict[str, RetentionExecution] = {}
    for execution in executions:
        latest.setdefault(execution.policy_id, execution)
    score, violations = _score(policies, latest)

    upcoming = []
    for policy in policies:
        criteria = policy.criteria or {}
        pending = await gdpr_repo.list_retention_candidates(
            session,
            tenant_id,
            entity_type=policy.entity_type,
            field=criteria.get("field") or _default_field(policy.entity_type),
            operation=criteria.get("operation") or "older_than",
            cutoff=now - timedelta(days=policy.retention_period_days),
            exceptions=policy.exceptions,
        )
        last_run = as_utc(policy.last_executed_at)
        upcoming.append(
            {
                "policy_id": policy.id,
                "policy_name": policy.name,
                "entity_type": policy.entity_type,
                "action": policy.action,
                "record_count": len(pending),
                "scheduled_date": (last_run + timedelta(days=1) if last_run else now).isoformat(),
            }
        )

    return {
        "report_date": now.isoformat(),
        "active_policies": len(policies),
        "total_records_reviewed": sum(execution.records_processed for execution in executions),
        "records_deleted": sum(execution.records_deleted for execution in executions),
        "records_anonymized": sum(execution.records_anonymized for execution in executions),
        "records_archived": sum(execution.records_archived for execution in executions),
        "records_flagged": sum(execution.records_flagged for execution in executions),
        "compliance_score": score,
        "upcoming_actions": upcoming,
        "violations": violations,
    }
