from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Union
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncConnection
from sqlalchemy.schema import CreateSchema

from juris.db.models.tenant import TenantRecord

from .context import DEFAULT_SCHEMA_PREFIX, Tenant, schema_name_for
from .errors import TenantInactive, TenantNotFound
from .executor import sqlstate_of, translate_error
from .provisioner import BENIGN_DDL_SQLSTATES
from .sql import validate_identifier

logger = logging.getLogger(__name__)

_tenants = TenantRecord.__table__


def _to_tenant(row: Mapping[str, Any]) -> Tenant:
    return Tenant(
        id=row["id"],
        name=row["name"],
        slug=row["slug"],
        # Re-validated on every read: only allow-listed names reach SQL text.
        schema_name=validate_identifier(row["schema_name"]),
        is_active=bool(row["is_active"]),
    )


class TenantResolver:
    """
    Looks tenants up in the public ``tenants`` table.

    Resolution only fixes which schema later calls must use; it does not
    switch the connection's search_path.
    """

    def __init__(self, schema_prefix: str = DEFAULT_SCHEMA_PREFIX) -> None:
        self.schema_prefix = schema_prefix

    # PUBLIC_INTERFACE
    async def resolve(self, conn: AsyncConnection, tenant_id: Union[str, UUID]) -> Tenant:
        """
        Return the active tenant with ``tenant_id``.

        Raises:
            TenantNotFound: unknown id (including ids that are not UUIDs)
            TenantInactive: the tenant has been deactivated
        """
        try:
            key = tenant_id if isinstance(tenant_id, UUID) else UUID(str(tenant_id))
        except ValueError:
            raise TenantNotFound(f"Tenant {tenant_id!r} not found") from None

        try:
            result = await conn.execute(select(_tenants).where(_tenants.c.id == key))
            row = result.mappings().first()
            await conn.commit()
        except DBAPIError as exc:
            await conn.rollback()
            raise translate_error(exc) from exc

        if row is None:
            raise TenantNotFound(f"Tenant {key} not found")
        tenant = _to_tenant(row)
        if not tenant.is_active:
            raise TenantInactive(f"Tenant {key} is inactive")
        return tenant

    # PUBLIC_INTERFACE
    async def register(
        self,
        conn: AsyncConnection,
        *,
        name: str,
        slug: str,
        tenant_id: Optional[UUID] = None,
    ) -> Tenant:
        """
        Create the tenants row (idempotent on slug) and the tenant's schema.

        The schema name is derived from the tenant id only.
        """
        tenant_id = tenant_id or uuid4()
        schema_name = validate_identifier(schema_name_for(tenant_id, self.schema_prefix))
        try:
            await conn.execute(
                pg_insert(_tenants)
                .values(id=tenant_id, name=name, slug=slug, schema_name=schema_name, is_active=True)
                .on_conflict_do_nothing(index_elements=[_tenants.c.slug])
            )
            result = await conn.execute(select(_tenants).where(_tenants.c.slug == slug))
            tenant = _to_tenant(result.mappings().one())
            await conn.commit()
        except DBAPIError as exc:
            await conn.rollback()
            raise translate_error(exc) from exc

        try:
            await conn.execute(CreateSchema(tenant.schema_name, if_not_exists=True))
            await conn.commit()
        except DBAPIError as exc:
            await conn.rollback()
            if sqlstate_of(exc) not in BENIGN_DDL_SQLSTATES:
                raise translate_error(exc) from exc

        logger.info("Registered tenant %s (%s) with schema %s", tenant.slug, tenant.id, tenant.schema_name)
        return tenant

    # PUBLIC_INTERFACE
    async def set_active(self, conn: AsyncConnection, tenant_id: UUID, active: bool) -> bool:
        """Activate or deactivate a tenant; True when the tenant exists."""
        try:
            result = await conn.execute(
                update(_tenants)
                .where(_tenants.c.id == tenant_id)
                .values(is_active=active, updated_at=func.now())
                .returning(_tenants.c.id)
            )
            changed = result.first() is not None
            await conn.commit()
        except DBAPIError as exc:
            await conn.rollback()
            raise translate_error(exc) from exc
        return changed
