from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from coworkhub.core.clock import utc_now
from coworkhub.domain.models import ApiKey, User
from coworkhub.persistence.db import SessionLocal
from coworkhub.services.auth.api_keys import generate_api_key, normalize_role


async def create_test_api_key(
    *,
    tenant_id: str,
    role: str,
    name: str = "test-key",
    email: str | None = None,
    user_active: bool = True,
    key_revoked: bool = False,
    key_expires_at: datetime | None = None,
) -> tuple[str, dict[str, str], str, str]:
    # Provision a user + API key pair for integration tests.
    user_id = uuid4().hex
    key_id, raw_key, key_prefix, key_hash = generate_api_key()

    async with SessionLocal() as session:
        user = User(
            id=user_id,
            tenant_id=tenant_id,
            email=email,
            role=normalize_role(role),
            is_active=user_active,
            created_at=utc_now(),
        )
        session.add(user)
        # Flush the user insert before the API key to satisfy FK constraints.
        await session.flush()
        session.add(
            ApiKey(
                id=key_id,
                user_id=user.id,
                tenant_id=tenant_id,
                key_prefix=key_prefix,
                key_hash=key_hash,
                name=name,
                expires_at=key_expires_at,
                revoked_at=utc_now() if key_revoked else None,
                created_at=utc_now(),
            )
        )
        await session.commit()

    headers = {"Authorization": f"Bearer {raw_key}"}
    return raw_key, headers, user_id, key_id


def new_tenant(label: str) -> str:
    return f"t-{label}-{uuid4().hex[:12]}"
