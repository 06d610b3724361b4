from __future__ import annotations

from dataclasses import dataclass

from coworkhub.core.config import get_settings


@dataclass(frozen=True)
class TenantPredicateError(RuntimeError):
    # Raised when a tenant-scoped query is built without a tenant id.
    message: str

    def __str__(self) -> str:
        return self.message


def require_tenant_id(tenant_id: str | None) -> None:
    settings = get_settings()
    if not settings.authz_require_tenant_predicate:
        return
    if not tenant_id:
        raise TenantPredicateError("Tenant predicate required but tenant_id is missing")


def tenant_predicate(model, tenant_id: str) -> object:
    # Every repository filter goes through here so no query escapes tenant scoping.
    require_tenant_id(tenant_id)
    return model.tenant_id == tenant_id
