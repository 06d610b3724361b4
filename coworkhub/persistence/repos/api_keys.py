from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.domain.models import ApiKey, User
from coworkhub.persistence.guards import tenant_predicate


async def list_keys_with_users(session: AsyncSession, tenant_id: str) -> list[tuple[ApiKey, User]]:
    result = await session.execute(
        select(ApiKey, User)
        .join(User, ApiKey.user_id == User.id)
        .where(tenant_predicate(ApiKey, tenant_id))
        .order_by(ApiKey.created_at.desc(), ApiKey.id)
    )
    return [(api_key, user) for api_key, user in result.all()]


async def get_key_with_user(
    session: AsyncSession, tenant_id: str, key_id: str
) -> tuple[ApiKey, User] | None:
    result = await session.execute(
        select(ApiKey, User)
        .join(User, ApiKey.user_id == User.id)
        .where(ApiKey.id == key_id, tenant_predicate(ApiKey, tenant_id))
    )
    row = result.first()
    if row is None:
        return None
    return row[0], row[1]
