from __future__ import annotations

import argparse
import asyncio

from coworkhub.core.logging import configure_logging
from coworkhub.persistence.db import SessionLocal
from coworkhub.services.gdpr.retention import execute_retention_policies


async def run(tenant_id: str) -> None:
    async with SessionLocal() as session:
        executions = await execute_retention_policies(session, tenant_id=tenant_id, executed_by="run_retention")
        for execution in executions:
            print(
                f"policy_id={execution.policy_id} status={execution.status} "
                f"processed={execution.records_processed} errors={len(execution.errors or [])}"
            )


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Execute active GDPR retention policies for a tenant")
    parser.add_argument("--tenant-id", required=True, help="Tenant whose policies are executed")
    configure_logging()
    asyncio.run(run(parser.parse_args().tenant_id))
