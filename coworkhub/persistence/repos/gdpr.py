from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.domain.models import (
    ApiKey,
    AuditEvent,
    Booking,
    ConsentRecord,
    DataExportRequest,
    RetentionExecution,
    RetentionPolicy,
    SecurityEvent,
    ServiceRequest,
    ServiceRequestStatusHistory,
    User,
)
from coworkhub.persistence.guards import tenant_predicate


async def get_policy(session: AsyncSession, tenant_id: str, policy_id: str) -> RetentionPolicy | None:
    result = await session.execute(
        select(RetentionPolicy).where(
            RetentionPolicy.id == policy_id, tenant_predicate(RetentionPolicy, tenant_id)
        )
    )
    return result.scalar_one_or_none()


async def list_policies(
    session: AsyncSession, tenant_id: str, *, is_active: bool | None = None
) -> list[RetentionPolicy]:
    stmt = select(RetentionPolicy).where(tenant_predicate(RetentionPolicy, tenant_id))
    if is_active is not None:
        stmt = stmt.where(RetentionPolicy.is_active.is_(is_active))
    stmt = stmt.order_by(RetentionPolicy.name, RetentionPolicy.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_executions(
    session: AsyncSession, tenant_id: str, *, policy_id: str | None = None
) -> list[RetentionExecution]:
    stmt = select(RetentionExecution).where(tenant_predicate(RetentionExecution, tenant_id))
    if policy_id:
        stmt = stmt.where(RetentionExecution.policy_id == policy_id)
    stmt = stmt.order_by(RetentionExecution.executed_at.desc(), RetentionExecution.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_consents(
    session: AsyncSession,
    tenant_id: str,
    *,
    user_id: str | None = None,
    consent_type: str | None = None,
) -> list[ConsentRecord]:
    # Newest first so "latest per type" is the first hit.
    stmt = select(ConsentRecord).where(tenant_predicate(ConsentRecord, tenant_id))
    if user_id:
        stmt = stmt.where(ConsentRecord.user_id == user_id)
    if consent_type:
        stmt = stmt.where(ConsentRecord.consent_type == consent_type)
    stmt = stmt.order_by(ConsentRecord.recorded_at.desc(), ConsentRecord.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_export(session: AsyncSession, tenant_id: str, export_id: str) -> DataExportRequest | None:
    result = await session.execute(
        select(DataExportRequest).where(
            DataExportRequest.id == export_id, tenant_predicate(DataExportRequest, tenant_id)
        )
    )
    return result.scalar_one_or_none()


async def list_exports(session: AsyncSession, tenant_id: str) -> list[DataExportRequest]:
    result = await session.execute(
        select(DataExportRequest)
        .where(tenant_predicate(DataExportRequest, tenant_id))
        .order_by(DataExportRequest.created_at.desc())
    )
    return list(result.scalars().all())


async def get_user(session: AsyncSession, tenant_id: str, user_id: str) -> User | None:
    result = await session.execute(
        select(User).where(User.id == user_id, tenant_predicate(User, tenant_id))
    )
    return result.scalar_one_or_none()


# Date columns a retention policy may key on, per entity type.
RETENTION_FIELDS: dict[str, dict[str, Any]] = {
    "AuditLog": {"model": AuditEvent, "fields": ("occurred_at", "created_at")},
    "SecurityEvent": {"model": SecurityEvent, "fields": ("occurred_at", "created_at")},
    "Booking": {"model": Booking, "fields": ("end_time", "start_time", "created_at")},
    "ServiceRequest": {"model": ServiceRequest, "fields": ("created_at", "updated_at", "completed_at")},
    "User": {"model": User, "fields": ("created_at", "last_login_at")},
}


async def list_retention_candidates(
    session: AsyncSession,
    tenant_id: str,
    *,
    entity_type: str,
    field: str,
    operation: str,
    cutoff: datetime,
    exceptions: list[str] | None = None,
) -> list[Any]:
    target = RETENTION_FIELDS[entity_type]
    model = target["model"]
    stmt = select(model).where(tenant_predicate(model, tenant_id))
    if operation == "not_accessed_since" and entity_type == "User":
        stmt = stmt.where(
            or_(
                User.last_login_at < cutoff,
                and_(User.last_login_at.is_(None), User.created_at < cutoff),
            )
        )
    else:
        column = getattr(model, field)
        stmt = stmt.where(column.is_not(None), column < cutoff)
    if entity_type == "User":
        # Already-scrubbed users have nothing left to retain.
        stmt = stmt.where(User.anonymized_at.is_(None))
    stmt = stmt.order_by(model.id)
    result = await session.execute(stmt)
    excluded = {str(value) for value in exceptions or []}
    return [row for row in result.scalars().all() if str(row.id) not in excluded]


async def list_user_api_keys(session: AsyncSession, tenant_id: str, user_id: str) -> list[ApiKey]:
    result = await session.execute(
        select(ApiKey).where(ApiKey.user_id == user_id, tenant_predicate(ApiKey, tenant_id))
    )
    return list(result.scalars().all())


async def list_user_audit_events(session: AsyncSession, tenant_id: str, user_id: str) -> list[AuditEvent]:
    result = await session.execute(
        select(AuditEvent)
        .where(AuditEvent.actor_id == user_id, tenant_predicate(AuditEvent, tenant_id))
        .order_by(AuditEvent.occurred_at, AuditEvent.id)
    )
    return list(result.scalars().all())


async def list_request_history(
    session: AsyncSession, tenant_id: str, request_id: str
) -> list[ServiceRequestStatusHistory]:
    result = await session.execute(
        select(ServiceRequestStatusHistory).where(
            ServiceRequestStatusHistory.service_request_id == request_id,
            tenant_predicate(ServiceRequestStatusHistory, tenant_id),
        )
    )
    return list(result.scalars().all())


async def count_anonymized_users(
    session: AsyncSession, tenant_id: str, *, since: datetime, until: datetime
) -> int:
    result = await session.execute(
        select(User.id).where(
            tenant_predicate(User, tenant_id),
            User.anonymized_at.is_not(None),
            User.anonymized_at >= since,
            User.anonymized_at <= until,
        )
    )
    return len(result.scalars().all())
