from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
import logging
from typing import Any
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.core.clock import as_utc, utc_now
from coworkhub.core.config import get_settings
from coworkhub.core.errors import GoneError, NotFoundError, ValidationError
from coworkhub.domain.models import DataExportRequest, User
from coworkhub.persistence.db import commit_or_raise
from coworkhub.persistence.repos import bookings as bookings_repo
from coworkhub.persistence.repos import gdpr as gdpr_repo
from coworkhub.persistence.repos import service_requests as requests_repo
from coworkhub.services.audit import record_event


logger = logging.getLogger(__name__)

EXPORT_REQUEST_TYPES = ("ACCESS", "PORTABILITY")
EXPORT_FORMATS = ("JSON",)


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def _row(obj: Any, fields: tuple[str, ...]) -> dict[str, Any]:
    return {name: _jsonable(getattr(obj, name)) for name in fields}


_PROFILE_FIELDS = ("id", "email", "display_name", "role", "is_active", "last_login_at", "created_at")
_BOOKING_FIELDS = (
    "id",
    "space_id",
    "title",
    "description",
    "start_time",
    "end_time",
    "status",
    "cost",
    "attendees",
    "notes",
    "created_at",
)
_REQUEST_FIELDS = (
    "id",
    "service_id",
    "quantity",
    "total_amount",
    "priority",
    "status",
    "notes",
    "customizations",
    "created_at",
    "completed_at",
)
_CONSENT_FIELDS = (
    "id",
    "consent_type",
    "purpose",
    "is_granted",
    "version",
    "source",
    "legal_basis",
    "recorded_at",
    "expires_at",
    "withdrawn_at",
)
_AUDIT_FIELDS = ("id", "occurred_at", "event_type", "action", "outcome", "resource_type", "resource_id")


async def _collect(session: AsyncSession, user: User, *, include_related: bool) -> dict[str, Any]:
    payload: dict[str, Any] = {"profile": _row(user, _PROFILE_FIELDS)}
    if not include_related:
        return payload
    tenant_id = user.tenant_id
    bookings = await bookings_repo.list_bookings(session, tenant_id, user_id=user.id)
    requests = await requests_repo.list_requests(session, tenant_id, user_id=user.id)
    consents = await gdpr_repo.list_consents(session, tenant_id, user_id=user.id)
    events = await gdpr_repo.list_user_audit_events(session, tenant_id, user.id)
    payload["bookings"] = [_row(row, _BOOKING_FIELDS) for row in bookings]
    payload["service_requests"] = [_row(row, _REQUEST_FIELDS) for row in requests]
    payload["consents"] = [_row(row, _CONSENT_FIELDS) for row in consents]
    payload["audit_events"] = [_row(row, _AUDIT_FIELDS) for row in events]
    return payload


async def create_export_request(
    session: AsyncSession,
    *,
    tenant_id: str,
    user_id: str,
    requested_by: str,
    request_type: str = "ACCESS",
    format: str = "JSON",
    include_related_data: bool = True,
    request_context: dict[str, str | None] | None = None,
) -> DataExportRequest:
    """Build a data-subject export synchronously and store its payload.

    The EXPORT_DATA audit row is written in the same transaction as the export.
    """
    if request_type not in EXPORT_REQUEST_TYPES:
        raise ValidationError(f"Unsupported export request type: {request_type}", code="INVALID_EXPORT_TYPE")
    if format not in EXPORT_FORMATS:
        raise ValidationError(f"Unsupported export format: {format}", code="INVALID_EXPORT_FORMAT")
    user = await gdpr_repo.get_user(session, tenant_id, user_id)
    if user is None:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")

    now = utc_now()
    payload = await _collect(session, user, include_related=include_related_data)
    payload["exported_at"] = now.isoformat()
    export = DataExportRequest(
        id=uuid4().hex,
        tenant_id=tenant_id,
        user_id=user_id,
        request_type=request_type,
        format=format,
        status="COMPLETED",
        requested_by=requested_by,
        include_related_data=include_related_data,
        payload_json=payload,
        created_at=now,
        completed_at=now,
        expires_at=now + timedelta(days=get_settings().data_export_ttl_days),
    )
    session.add(export)
    context = request_context or {}
    await record_event(
        session=session,
        tenant_id=tenant_id,
        actor_type="api_key",
        actor_id=requested_by,
        actor_role=None,
        event_type="gdpr.export.created",
        action="EXPORT_DATA",
        outcome="success",
        resource_type="DataExportRequest",
        resource_id=export.id,
        request_id=context.get("request_id"),
        ip_address=context.get("ip_address"),
        user_agent=context.get("user_agent"),
        metadata={"subject_user_id": user_id, "request_type": request_type},
        commit=False,
    )
    await commit_or_raise(session, context="creating data export")
    logger.info("data_export_created tenant_id=%s export_id=%s user_id=%s", tenant_id, export.id, user_id)
    return export


async def get_export_request(session: AsyncSession, *, tenant_id: str, export_id: str) -> DataExportRequest:
    export = await gdpr_repo.get_export(session, tenant_id, export_id)
    if export is None:
        raise NotFoundError("Export request not found", code="EXPORT_NOT_FOUND")
    return export


async def download_export(
    session: AsyncSession, *, tenant_id: str, export_id: str, now: datetime | None = None
) -> dict[str, Any]:
    export = await get_export_request(session, tenant_id=tenant_id, export_id=export_id)
    if export.status != "COMPLETED" or export.payload_json is None:
        raise ValidationError("Export is not ready for download", code="EXPORT_NOT_READY")
    expires_at = as_utc(export.expires_at)
    if expires_at is not None and expires_at <= (now or utc_now()):
        raise GoneError("Export has expired", code="EXPORT_EXPIRED")
    return export.payload_json
