from __future__ import annotations

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.domain.models import ContractTemplate
from coworkhub.persistence.guards import tenant_predicate


_SORT_COLUMNS = {
    "name": ContractTemplate.name,
    "category": ContractTemplate.category,
    "created_at": ContractTemplate.created_at,
    "updated_at": ContractTemplate.updated_at,
}


async def get_template(session: AsyncSession, tenant_id: str, template_id: str) -> ContractTemplate | None:
    result = await session.execute(
        select(ContractTemplate).where(
            ContractTemplate.id == template_id, tenant_predicate(ContractTemplate, tenant_id)
        )
    )
    return result.scalar_one_or_none()


async def get_template_by_name(session: AsyncSession, tenant_id: str, name: str) -> ContractTemplate | None:
    result = await session.execute(
        select(ContractTemplate).where(
            ContractTemplate.name == name, tenant_predicate(ContractTemplate, tenant_id)
        )
    )
    return result.scalar_one_or_none()


async def list_templates(
    session: AsyncSession,
    tenant_id: str,
    *,
    category: str | None = None,
    is_active: bool | None = None,
    search: str | None = None,
    sort_by: str = "name",
    descending: bool = False,
) -> list[ContractTemplate]:
    stmt = select(ContractTemplate).where(tenant_predicate(ContractTemplate, tenant_id))
    if category:
        stmt = stmt.where(ContractTemplate.category == category)
    if is_active is not None:
        stmt = stmt.where(ContractTemplate.is_active.is_(is_active))
    if search:
        pattern = f"%{search.lower()}%"
        stmt = stmt.where(
            or_(
                ContractTemplate.name.ilike(pattern),
                ContractTemplate.description.ilike(pattern),
            )
        )
    column = _SORT_COLUMNS.get(sort_by, ContractTemplate.name)
    stmt = stmt.order_by(column.desc() if descending else column.asc(), ContractTemplate.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def category_counts(session: AsyncSession, tenant_id: str) -> list[tuple[str, int]]:
    rows = (
        await session.execute(
            select(ContractTemplate.category, func.count(ContractTemplate.id))
            .where(tenant_predicate(ContractTemplate, tenant_id))
            .group_by(ContractTemplate.category)
            .order_by(ContractTemplate.category)
        )
    ).all()
    return [(category, int(count)) for category, count in rows]
