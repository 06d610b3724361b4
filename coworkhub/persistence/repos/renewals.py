from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.domain.models import RenewalNotification, RenewalProposal, RenewalRule
from coworkhub.persistence.guards import tenant_predicate


async def get_rule(session: AsyncSession, tenant_id: str, rule_id: str) -> RenewalRule | None:
    result = await session.execute(
        select(RenewalRule).where(RenewalRule.id == rule_id, tenant_predicate(RenewalRule, tenant_id))
    )
    return result.scalar_one_or_none()


async def list_rules(
    session: AsyncSession,
    tenant_id: str,
    *,
    is_active: bool | None = None,
    trigger: str | None = None,
) -> list[RenewalRule]:
    stmt = select(RenewalRule).where(tenant_predicate(RenewalRule, tenant_id))
    if is_active is not None:
        stmt = stmt.where(RenewalRule.is_active.is_(is_active))
    if trigger:
        stmt = stmt.where(RenewalRule.trigger == trigger)
    stmt = stmt.order_by(RenewalRule.name, RenewalRule.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_proposal(session: AsyncSession, tenant_id: str, proposal_id: str) -> RenewalProposal | None:
    result = await session.execute(
        select(RenewalProposal).where(
            RenewalProposal.id == proposal_id, tenant_predicate(RenewalProposal, tenant_id)
        )
    )
    return result.scalar_one_or_none()


async def list_proposals(
    session: AsyncSession,
    tenant_id: str,
    *,
    status: str | None = None,
    contract_id: str | None = None,
    rule_id: str | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
) -> list[RenewalProposal]:
    stmt = select(RenewalProposal).where(tenant_predicate(RenewalProposal, tenant_id))
    if status:
        stmt = stmt.where(RenewalProposal.status == status)
    if contract_id:
        stmt = stmt.where(RenewalProposal.contract_id == contract_id)
    if rule_id:
        stmt = stmt.where(RenewalProposal.rule_id == rule_id)
    if created_from:
        stmt = stmt.where(RenewalProposal.created_at >= created_from)
    if created_to:
        stmt = stmt.where(RenewalProposal.created_at <= created_to)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def find_pending_for_contract(
    session: AsyncSession, tenant_id: str, contract_id: str
) -> RenewalProposal | None:
    result = await session.execute(
        select(RenewalProposal)
        .where(
            tenant_predicate(RenewalProposal, tenant_id),
            RenewalProposal.contract_id == contract_id,
            RenewalProposal.status == "PENDING",
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def find_for_end_date(
    session: AsyncSession, tenant_id: str, contract_id: str, end_date: datetime
) -> RenewalProposal | None:
    result = await session.execute(
        select(RenewalProposal)
        .where(
            tenant_predicate(RenewalProposal, tenant_id),
            RenewalProposal.contract_id == contract_id,
            RenewalProposal.current_end_date == end_date,
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_notifications(
    session: AsyncSession, tenant_id: str, proposal_id: str
) -> list[RenewalNotification]:
    result = await session.execute(
        select(RenewalNotification)
        .where(
            RenewalNotification.proposal_id == proposal_id,
            tenant_predicate(RenewalNotification, tenant_id),
        )
        .order_by(RenewalNotification.id)
    )
    return list(result.scalars().all())
