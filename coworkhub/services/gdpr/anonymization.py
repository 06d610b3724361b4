from __future__ import annotations

import hashlib
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.core.clock import utc_now
from coworkhub.core.errors import NotFoundError, ValidationError
from coworkhub.domain.models import Booking, ServiceRequest, User
from coworkhub.persistence.db import commit_or_raise
from coworkhub.persistence.repos import bookings as bookings_repo
from coworkhub.persistence.repos import gdpr as gdpr_repo
from coworkhub.persistence.repos import service_requests as requests_repo


logger = logging.getLogger(__name__)

ANONYMIZED_DOMAIN = "anonymized.invalid"
ANONYMIZED_NAME = "Anonymized User"


def anonymized_email(user_id: str) -> str:
    digest = hashlib.sha256(user_id.encode("utf-8")).hexdigest()[:16]
    return f"anonymized-{digest}@{ANONYMIZED_DOMAIN}"


def scrub_booking(booking: Booking) -> None:
    booking.notes = None
    booking.description = None
    booking.attendees = []
    booking.metadata_json = {**(booking.metadata_json or {}), "anonymized": True}


def scrub_request(request: ServiceRequest) -> None:
    request.notes = None
    request.progress_notes = None
    request.customizations = {}
    request.attachments = []
    request.metadata_json = {**(request.metadata_json or {}), "anonymized": True}


async def scrub_user(session: AsyncSession, user: User, *, reason: str) -> dict[str, Any]:
    """Stage erasure of one user's personal data without committing.

    Returns counts of the rows touched so callers can report them.
    """
    now = utc_now()
    user.email = anonymized_email(user.id)
    user.display_name = ANONYMIZED_NAME
    user.is_active = False
    user.anonymized_at = now

    revoked = 0
    for key in await gdpr_repo.list_user_api_keys(session, user.tenant_id, user.id):
        if key.revoked_at is None:
            key.revoked_at = now
            revoked += 1

    bookings = await bookings_repo.list_bookings(session, user.tenant_id, user_id=user.id)
    for booking in bookings:
        scrub_booking(booking)
    requests = await requests_repo.list_requests(session, user.tenant_id, user_id=user.id)
    for request in requests:
        scrub_request(request)

    logger.info(
        "user_anonymized tenant_id=%s user_id=%s reason=%s", user.tenant_id, user.id, reason
    )
    return {
        "user_id": user.id,
        "anonymized_at": now.isoformat(),
        "reason": reason,
        "api_keys_revoked": revoked,
        "bookings_scrubbed": len(bookings),
        "service_requests_scrubbed": len(requests),
    }


async def anonymize_user(
    session: AsyncSession, *, tenant_id: str, user_id: str, reason: str
) -> dict[str, Any]:
    if not reason or not reason.strip():
        raise ValidationError("An anonymization reason is required", code="ANONYMIZATION_REASON_REQUIRED")
    user = await gdpr_repo.get_user(session, tenant_id, user_id)
    if user is None:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")
    if user.anonymized_at is not None:
        raise ValidationError("User is already anonymized", code="USER_ALREADY_ANONYMIZED")
    summary = await scrub_user(session, user, reason=reason)
    await commit_or_raise(session, context="anonymizing user")
    return summary
