"""Helpers shared by API routers."""
from __future__ import annotations

from nemt.core.auth import TenantContext
from nemt.services.store import store


def idempotency_lookup(context: TenantContext, operation: str, key: str | None):
    if not key:
        return None
    return store.get_idempotent(context.tenant_id, f"{operation}:{key.strip()}")


def idempotency_store(context: TenantContext, operation: str, key: str | None, response: dict):
    if not key:
        return
    store.set_idempotent(context.tenant_id, f"{operation}:{key.strip()}", response)
