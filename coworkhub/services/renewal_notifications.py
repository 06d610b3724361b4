from __future__ import annotations

from dataclasses import dataclass
import hashlib
import hmac
import json
import logging
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.core.clock import as_utc, utc_now
from coworkhub.core.config import get_settings
from coworkhub.domain.models import RenewalNotification, RenewalProposal, RenewalRule
from coworkhub.persistence.db import commit_or_raise


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookDeliveryResult:
    # Summarize webhook delivery attempts for notification rows.
    sent: bool
    status_code: int | None
    message: str


def build_renewal_signature(secret: str, payload: bytes) -> str:
    # Compute HMAC SHA256 signatures for renewal webhook payloads.
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


async def send_renewal_webhook(*, event_type: str, payload: dict[str, Any]) -> WebhookDeliveryResult:
    # Send signed renewal payloads with a short timeout and safe failure mode.
    settings = get_settings()
    if not settings.renewal_webhook_url or not settings.renewal_webhook_secret:
        return WebhookDeliveryResult(sent=False, status_code=None, message="Renewal webhook is not configured")

    body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    headers = {
        "Content-Type": "application/json",
        "X-Renewal-Signature": build_renewal_signature(settings.renewal_webhook_secret, body),
        "X-Renewal-Event": event_type,
    }
    timeout = settings.renewal_webhook_timeout_ms / 1000.0
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(settings.renewal_webhook_url, content=body, headers=headers)
    except httpx.HTTPError as exc:
        logger.warning("renewal_webhook_send_failed event_type=%s", event_type, exc_info=exc)
        return WebhookDeliveryResult(sent=False, status_code=None, message=str(exc) or type(exc).__name__)

    if response.status_code >= 400:
        logger.warning(
            "renewal_webhook_rejected event_type=%s status_code=%s", event_type, response.status_code
        )
        return WebhookDeliveryResult(
            sent=False,
            status_code=response.status_code,
            message=f"Webhook responded with status {response.status_code}",
        )
    return WebhookDeliveryResult(sent=True, status_code=response.status_code, message="Webhook delivered")


def _payload(proposal: RenewalProposal, event_type: str, recipient: str, template: str | None) -> dict[str, Any]:
    return {
        "event": event_type,
        "tenant_id": proposal.tenant_id,
        "proposal_id": proposal.id,
        "contract_id": proposal.contract_id,
        "status": proposal.status,
        "renewal_type": proposal.renewal_type,
        "proposed_start_date": as_utc(proposal.proposed_start_date).isoformat(),
        "proposed_end_date": as_utc(proposal.proposed_end_date).isoformat(),
        "proposed_value": float(proposal.proposed_value) if proposal.proposed_value is not None else None,
        "recipient": recipient,
        "template": template,
    }


async def fan_out(
    session: AsyncSession,
    *,
    proposal: RenewalProposal,
    rule: RenewalRule,
    event_type: str,
) -> list[RenewalNotification]:
    """Record one notification per channel and recipient.

    Rows are added to the caller's session and committed with the proposal.
    WEBHOOK rows start ``pending`` and are delivered by ``deliver_webhooks``
    once that commit has happened; other channels stay ``queued``.
    """
    settings_doc = rule.notification_settings or {}
    if not settings_doc.get("enabled"):
        return []
    channels = list(settings_doc.get("types") or [])
    recipients = list(settings_doc.get("recipients") or [])

    notifications: list[RenewalNotification] = []
    for channel in channels:
        for recipient in recipients:
            notification = RenewalNotification(
                tenant_id=proposal.tenant_id,
                proposal_id=proposal.id,
                event_type=event_type,
                channel=channel,
                recipient=recipient,
                status="pending" if channel == "WEBHOOK" else "queued",
                created_at=utc_now(),
            )
            session.add(notification)
            notifications.append(notification)
    logger.info(
        "renewal_notifications_recorded tenant_id=%s proposal_id=%s event_type=%s count=%s",
        proposal.tenant_id,
        proposal.id,
        event_type,
        len(notifications),
    )
    return notifications


async def deliver_webhooks(
    session: AsyncSession,
    *,
    proposal: RenewalProposal,
    rule: RenewalRule,
    notifications: list[RenewalNotification],
) -> int:
    # Runs after the proposal commit so no transaction is held across HTTP calls.
    pending = [row for row in notifications if row.channel == "WEBHOOK" and row.status == "pending"]
    if not pending:
        return 0
    template = (rule.notification_settings or {}).get("template")
    delivered = 0
    for notification in pending:
        result = await send_renewal_webhook(
            event_type=notification.event_type,
            payload=_payload(proposal, notification.event_type, notification.recipient, template),
        )
        notification.status = "sent" if result.sent else "failed"
        notification.error_message = None if result.sent else result.message
        delivered += int(result.sent)
    await commit_or_raise(session, context="recording renewal webhook delivery")
    logger.info(
        "renewal_webhooks_delivered tenant_id=%s proposal_id=%s sent=%s failed=%s",
        proposal.tenant_id,
        proposal.id,
        delivered,
        len(pending) - delivered,
    )
    return delivered
