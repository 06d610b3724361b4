from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.domain.models import AuditEvent, SecurityEvent
from coworkhub.persistence.guards import tenant_predicate


async def list_events(
    session: AsyncSession,
    *,
    tenant_id: str,
    event_type: str | None = None,
    action: str | None = None,
    outcome: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    actor_id: str | None = None,
    occurred_from: datetime | None = None,
    occurred_to: datetime | None = None,
    offset: int = 0,
    limit: int | None = 50,
) -> list[AuditEvent]:
    stmt = select(AuditEvent).where(tenant_predicate(AuditEvent, tenant_id))
    if event_type:
        stmt = stmt.where(AuditEvent.event_type == event_type)
    if action:
        stmt = stmt.where(AuditEvent.action == action)
    if outcome:
        stmt = stmt.where(AuditEvent.outcome == outcome)
    if resource_type:
        stmt = stmt.where(AuditEvent.resource_type == resource_type)
    if resource_id:
        stmt = stmt.where(AuditEvent.resource_id == resource_id)
    if actor_id:
        stmt = stmt.where(AuditEvent.actor_id == actor_id)
    if occurred_from:
        stmt = stmt.where(AuditEvent.occurred_at >= occurred_from)
    if occurred_to:
        stmt = stmt.where(AuditEvent.occurred_at <= occurred_to)

    stmt = stmt.order_by(AuditEvent.occurred_at.desc(), AuditEvent.id.desc()).offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_actions_for_resources(
    session: AsyncSession,
    *,
    tenant_id: str,
    resource_types: list[str],
    actions: list[str] | None = None,
    occurred_from: datetime,
    occurred_to: datetime,
    actor_id: str | None = None,
    resource_id: str | None = None,
) -> list[AuditEvent]:
    """Audit rows that carry an action, in chronological order, for reporting."""
    stmt = select(AuditEvent).where(
        tenant_predicate(AuditEvent, tenant_id),
        AuditEvent.action.is_not(None),
        AuditEvent.occurred_at >= occurred_from,
        AuditEvent.occurred_at <= occurred_to,
    )
    if resource_types:
        stmt = stmt.where(AuditEvent.resource_type.in_(resource_types))
    if actions:
        stmt = stmt.where(AuditEvent.action.in_(actions))
    if actor_id:
        stmt = stmt.where(AuditEvent.actor_id == actor_id)
    if resource_id:
        stmt = stmt.where(AuditEvent.resource_id == resource_id)
    stmt = stmt.order_by(AuditEvent.occurred_at, AuditEvent.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_security_events(
    session: AsyncSession,
    *,
    tenant_id: str,
    occurred_from: datetime,
    occurred_to: datetime,
    event_types: list[str] | None = None,
    severities: list[str] | None = None,
) -> list[SecurityEvent]:
    stmt = select(SecurityEvent).where(
        tenant_predicate(SecurityEvent, tenant_id),
        SecurityEvent.occurred_at >= occurred_from,
        SecurityEvent.occurred_at <= occurred_to,
    )
    if event_types:
        stmt = stmt.where(SecurityEvent.event_type.in_(event_types))
    if severities:
        stmt = stmt.where(SecurityEvent.severity.in_(severities))
    stmt = stmt.order_by(SecurityEvent.occurred_at, SecurityEvent.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_security_event(session: AsyncSession, tenant_id: str, event_id: str) -> SecurityEvent | None:
    result = await session.execute(
        select(SecurityEvent).where(SecurityEvent.id == event_id, tenant_predicate(SecurityEvent, tenant_id))
    )
    return result.scalar_one_or_none()
