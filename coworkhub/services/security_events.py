from __future__ import annotations

from datetime import datetime
import logging
from typing import Any
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.core.clock import as_utc, utc_now
from coworkhub.core.errors import NotFoundError, ValidationError
from coworkhub.domain.models import SecurityEvent
from coworkhub.persistence.db import commit_or_raise
from coworkhub.persistence.repos import audit as audit_repo
from coworkhub.services.audit import sanitize_metadata


logger = logging.getLogger(__name__)


def _build_event(
    *,
    tenant_id: str,
    event_type: str,
    severity: str,
    description: str | None,
    user_id: str | None,
    ip_address: str | None,
    metadata: dict[str, Any] | None,
    occurred_at: datetime | None,
) -> SecurityEvent:
    now = utc_now()
    return SecurityEvent(
        id=uuid4().hex,
        tenant_id=tenant_id,
        event_type=event_type,
        severity=severity,
        description=description,
        user_id=user_id,
        ip_address=ip_address,
        metadata_json=sanitize_metadata(metadata or {}),
        resolved=False,
        occurred_at=as_utc(occurred_at) or now,
        created_at=now,
    )


async def record_security_event(
    session: AsyncSession,
    *,
    tenant_id: str,
    event_type: str,
    severity: str,
    description: str | None = None,
    user_id: str | None = None,
    ip_address: str | None = None,
    metadata: dict[str, Any] | None = None,
    occurred_at: datetime | None = None,
) -> SecurityEvent:
    event = _build_event(
        tenant_id=tenant_id,
        event_type=event_type,
        severity=severity,
        description=description,
        user_id=user_id,
        ip_address=ip_address,
        metadata=metadata,
        occurred_at=occurred_at,
    )
    session.add(event)
    await commit_or_raise(session, context="recording security event")
    logger.info(
        "security_event_recorded tenant_id=%s event_id=%s event_type=%s severity=%s",
        tenant_id,
        event.id,
        event_type,
        severity,
    )
    return event


async def record_access_denied(
    session: AsyncSession,
    *,
    tenant_id: str,
    user_id: str | None,
    ip_address: str | None,
    required_role: str,
    actual_role: str,
    path: str | None,
) -> None:
    # RBAC denials feed compliance reports but must never change the 403 itself.
    event = _build_event(
        tenant_id=tenant_id,
        event_type="UNAUTHORIZED_ACCESS",
        severity="MEDIUM",
        description=f"Role {actual_role} attempted an action requiring {required_role}",
        user_id=user_id,
        ip_address=ip_address,
        metadata={"required_role": required_role, "role": actual_role, "path": path},
        occurred_at=None,
    )
    try:
        session.add(event)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.warning("security_event_write_failed tenant_id=%s", tenant_id, exc_info=exc)


async def resolve_security_event(
    session: AsyncSession,
    *,
    tenant_id: str,
    event_id: str,
    resolved_by: str,
    notes: str | None = None,
) -> SecurityEvent:
    event = await audit_repo.get_security_event(session, tenant_id, event_id)
    if event is None:
        raise NotFoundError("Security event not found", code="SECURITY_EVENT_NOT_FOUND")
    if event.resolved:
        raise ValidationError("Security event is already resolved", code="SECURITY_EVENT_RESOLVED")
    event.resolved = True
    event.resolved_at = utc_now()
    event.metadata_json = {
        **(event.metadata_json or {}),
        "resolved_by": resolved_by,
        "resolution_notes": notes,
    }
    await commit_or_raise(session, context="resolving security event")
    logger.info("security_event_resolved tenant_id=%s event_id=%s", tenant_id, event.id)
    return event
