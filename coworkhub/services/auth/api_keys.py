from __future__ import annotations

import hashlib
import secrets
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from coworkhub.core.clock import utc_now
from coworkhub.core.errors import NotFoundError, ValidationError
from coworkhub.domain.models import ApiKey, User
from coworkhub.persistence.db import commit_or_raise
from coworkhub.persistence.repos import api_keys as api_keys_repo


ROLE_ORDER: dict[str, int] = {
    "reader": 1,
    "editor": 2,
    "admin": 3,
}

API_KEY_PREFIX = "chk"


def normalize_role(role: str) -> str:
    # Keep a stable, lowercased role vocabulary for RBAC checks.
    normalized = role.strip().lower()
    if normalized not in ROLE_ORDER:
        raise ValueError(f"Unsupported role: {role}")
    return normalized


def role_allows(*, role: str, minimum_role: str) -> bool:
    return ROLE_ORDER.get(role, 0) >= ROLE_ORDER.get(minimum_role, 0)


def is_admin(role: str) -> bool:
    return role_allows(role=role, minimum_role="admin")


def hash_api_key(raw_key: str) -> str:
    # SHA-256 keeps stored keys deterministic for lookup and non-reversible.
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_api_key(*, key_id: str | None = None) -> tuple[str, str, str, str]:
    """Mint a new bearer key.

    Returns ``(key_id, raw_key, key_prefix, key_hash)``. The raw key embeds the
    key id (``chk_<id>_<secret>``) so operators can trace a leaked secret back
    to its row; only the hash is persisted.
    """
    resolved_id = key_id or uuid4().hex
    secret = secrets.token_urlsafe(32)
    raw_key = f"{API_KEY_PREFIX}_{resolved_id}_{secret}"
    key_prefix = raw_key[:12]
    return resolved_id, raw_key, key_prefix, hash_api_key(raw_key)


async def provision_api_key(
    session: AsyncSession,
    *,
    tenant_id: str,
    role: str,
    name: str | None = None,
    user_id: str | None = None,
    email: str | None = None,
    display_name: str | None = None,
) -> tuple[User, ApiKey, str]:
    """Create (or reuse) a tenant user and mint a key for it.

    Returns ``(user, api_key, raw_key)``; the raw key is never stored.
    """
    role = normalize_role(role)
    user = await session.get(User, user_id) if user_id else None
    if user is None:
        user = User(
            id=user_id or uuid4().hex,
            tenant_id=tenant_id,
            email=email,
            display_name=display_name,
            role=role,
            is_active=True,
            created_at=utc_now(),
        )
        session.add(user)
    else:
        if user.tenant_id != tenant_id:
            raise ValidationError("User belongs to another tenant", code="USER_TENANT_MISMATCH")
        user.role = role
        if email:
            user.email = email
    # Flush the user first so the key's foreign key resolves.
    await session.flush()

    key_id, raw_key, key_prefix, key_hash = generate_api_key()
    api_key = ApiKey(
        id=key_id,
        user_id=user.id,
        tenant_id=tenant_id,
        key_prefix=key_prefix,
        key_hash=key_hash,
        name=name,
        created_at=utc_now(),
    )
    session.add(api_key)
    await commit_or_raise(session, context="creating API key")
    return user, api_key, raw_key


async def list_api_keys(session: AsyncSession, *, tenant_id: str) -> list[tuple[ApiKey, User]]:
    return await api_keys_repo.list_keys_with_users(session, tenant_id)


async def revoke_api_key(session: AsyncSession, *, tenant_id: str, key_id: str) -> tuple[ApiKey, User]:
    # Revoking twice keeps the first timestamp.
    row = await api_keys_repo.get_key_with_user(session, tenant_id, key_id)
    if row is None:
        raise NotFoundError("API key not found", code="API_KEY_NOT_FOUND")
    api_key, user = row
    if api_key.revoked_at is None:
        api_key.revoked_at = utc_now()
        await commit_or_raise(session, context="revoking API key")
    return api_key, user
