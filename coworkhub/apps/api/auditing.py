from __future__ import annotations

from typing import Any

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.apps.api.deps import Principal
from coworkhub.services.audit import get_request_context, record_event


async def audit_action(
    *,
    db: AsyncSession,
    principal: Principal,
    request: Request,
    event_type: str,
    action: str,
    resource_type: str,
    resource_id: str | None = None,
    outcome: str = "success",
    metadata: dict[str, Any] | None = None,
    error_code: str | None = None,
) -> None:
    """Record a route-level audit row for a tenant operation.

    Runs after the service has committed, in its own best-effort commit.
    """
    request_ctx = get_request_context(request)
    await record_event(
        session=db,
        tenant_id=principal.tenant_id,
        actor_type=principal.auth_method,
        actor_id=principal.subject_id,
        actor_role=principal.role,
        event_type=event_type,
        action=action,
        outcome=outcome,
        resource_type=resource_type,
        resource_id=resource_id,
        request_id=request_ctx["request_id"],
        ip_address=request_ctx["ip_address"],
        user_agent=request_ctx["user_agent"],
        metadata=metadata or {},
        error_code=error_code,
        commit=True,
        best_effort=True,
    )
