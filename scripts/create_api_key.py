from __future__ import annotations

import argparse
import asyncio
import sys

from coworkhub.core.errors import CoworkHubError
from coworkhub.persistence.db import SessionLocal
from coworkhub.services.audit import record_event
from coworkhub.services.auth.api_keys import provision_api_key


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create an API key for a coworking tenant")
    parser.add_argument("--tenant", required=True, help="Tenant identifier")
    parser.add_argument("--role", required=True, help="Role: reader|editor|admin")
    parser.add_argument("--name", required=True, help="Key label for auditing")
    parser.add_argument("--user-id", default=None, help="Existing user id to attach")
    parser.add_argument("--email", default=None, help="Optional user email")
    parser.add_argument("--display-name", default=None, help="Optional member display name")
    return parser


async def _create_key(args: argparse.Namespace) -> int:
    async with SessionLocal() as session:
        user, api_key, raw_key = await provision_api_key(
            session,
            tenant_id=args.tenant,
            role=args.role,
            name=args.name,
            user_id=args.user_id,
            email=args.email,
            display_name=args.display_name,
        )
        await record_event(
            session=session,
            tenant_id=user.tenant_id,
            actor_type="system",
            actor_id="create_api_key",
            actor_role=user.role,
            event_type="auth.api_key.created",
            action="CREATE",
            outcome="success",
            resource_type="ApiKey",
            resource_id=api_key.id,
            metadata={"user_id": user.id, "key_prefix": api_key.key_prefix, "key_name": args.name},
            commit=True,
            best_effort=False,
        )

    print("API key created:")
    print(f"  key_id: {api_key.id}")
    print(f"  user_id: {user.id}")
    print(f"  key_prefix: {api_key.key_prefix}")
    print("  api_key: ")
    print(f"    {raw_key}")
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_create_key(args))
    except (CoworkHubError, ValueError) as exc:
        print(f"create_api_key failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
