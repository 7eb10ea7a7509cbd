"""Tenant identity and the per-request context threaded through every core call."""
from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncConnection

DEFAULT_SCHEMA_PREFIX = "tenant_"


@dataclass(frozen=True, slots=True)
class Tenant:
    """A row of the public ``tenants`` table."""
    id: UUID
    name: str
    slug: str
    schema_name: str
    is_active: bool = True


@dataclass(frozen=True, slots=True)
class TenantContext:
    """
    Immutable tenant context for the current request.

    Holds the resolved tenant and the pooled connection borrowed for the
    request. It must not outlive the ``TenantDataCore.tenant()`` block that
    produced it.
    """
    tenant: Tenant
    connection: AsyncConnection

    @property
    def tenant_id(self) -> UUID:
        return self.tenant.id

    @property
    def schema_name(self) -> str:
        return self.tenant.schema_name


def schema_name_for(tenant_id: UUID, prefix: str = DEFAULT_SCHEMA_PREFIX) -> str:
    """
    Derive the schema name for a tenant.

    Schema naming convention: <prefix><uuid hex>. Only the tenant id feeds the
    name, never request input.
    """
    return f"{prefix}{tenant_id.hex}"
