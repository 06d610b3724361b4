from __future__ import annotations

import argparse
import asyncio

from coworkhub.core.logging import configure_logging
from coworkhub.persistence.db import SessionLocal
from coworkhub.services.renewals import check_and_create_renewals


async def sweep(tenant_id: str) -> None:
    async with SessionLocal() as session:
        summary = await check_and_create_renewals(session, tenant_id=tenant_id)
    print(" ".join(f"{key}={value}" for key, value in summary.items()))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create renewal proposals for contracts nearing expiry")
    parser.add_argument("--tenant-id", required=True, help="Tenant whose contracts are swept")
    configure_logging()
    asyncio.run(sweep(parser.parse_args().tenant_id))
