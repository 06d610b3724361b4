from __future__ import annotations

from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.domain.models import Contract, ContractActivity
from coworkhub.persistence.guards import tenant_predicate


async def get_contract(session: AsyncSession, tenant_id: str, contract_id: str) -> Contract | None:
    result = await session.execute(
        select(Contract).where(Contract.id == contract_id, tenant_predicate(Contract, tenant_id))
    )
    return result.scalar_one_or_none()


async def list_contracts(
    session: AsyncSession,
    tenant_id: str,
    *,
    status: str | None = None,
    contract_type: str | None = None,
    search: str | None = None,
    offset: int = 0,
    limit: int | None = None,
) -> list[Contract]:
    stmt = select(Contract).where(tenant_predicate(Contract, tenant_id))
    if status:
        stmt = stmt.where(Contract.status == status)
    if contract_type:
        stmt = stmt.where(Contract.type == contract_type)
    if search:
        pattern = f"%{search.lower()}%"
        stmt = stmt.where(
            or_(
                Contract.title.ilike(pattern),
                Contract.description.ilike(pattern),
            )
        )
    stmt = stmt.order_by(Contract.created_at.desc(), Contract.id).offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_active_ending_between(
    session: AsyncSession,
    tenant_id: str,
    *,
    start: datetime,
    end: datetime,
) -> list[Contract]:
    result = await session.execute(
        select(Contract)
        .where(
            tenant_predicate(Contract, tenant_id),
            Contract.status == "ACTIVE",
            Contract.end_date.is_not(None),
            Contract.end_date >= start,
            Contract.end_date <= end,
        )
        .order_by(Contract.end_date, Contract.id)
    )
    return list(result.scalars().all())


async def list_activities(session: AsyncSession, tenant_id: str, contract_id: str) -> list[ContractActivity]:
    result = await session.execute(
        select(ContractActivity)
        .where(
            ContractActivity.contract_id == contract_id,
            tenant_predicate(ContractActivity, tenant_id),
        )
        .order_by(ContractActivity.created_at, ContractActivity.id)
    )
    return list(result.scalars().all())


async def list_recent_activities(session: AsyncSession, tenant_id: str, *, limit: int = 5) -> list[ContractActivity]:
    result = await session.execute(
        select(ContractActivity)
        .where(tenant_predicate(ContractActivity, tenant_id))
        .order_by(ContractActivity.created_at.desc(), ContractActivity.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
