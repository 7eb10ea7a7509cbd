"""
The tenant data access core.

One ``TenantDataCore`` is created at process start with the pool
configuration, handed by reference to every repository, and disposed on
shutdown. Request code enters ``core.tenant(tenant_id)`` once and threads the
yielded ``TenantContext`` through every call.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, List, Mapping, Optional, Tuple, Type, Union
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy.exc import DBAPIError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from juris.core.logging import tenant_id_var
from juris.db.config import Settings, get_settings
from juris.db.session import create_engine_from_settings, public_connection

from .context import Tenant, TenantContext
from .crud import BulkResult, CrudHelpers, Page
from .errors import ConstraintViolation, DatabaseConnectionError, TenantDataError
from .executor import SchemaQueryExecutor, translate_error
from .provisioner import SchemaProvisioner
from .resolver import TenantResolver
from .tables import TableRegistry, TableSchema

logger = logging.getLogger(__name__)


class TenantDataCore:
    """Facade over tenant resolution, schema provisioning, queries and CRUD."""

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        registry: Optional[TableRegistry] = None,
        resolver: Optional[TenantResolver] = None,
        query_timeout: Optional[float] = None,
    ) -> None:
        self.engine = engine
        self.registry = registry if registry is not None else TableRegistry()
        self.resolver = resolver or TenantResolver()
        self.executor = SchemaQueryExecutor(default_timeout=query_timeout)
        self.provisioner = SchemaProvisioner(self.executor)
        self.crud = CrudHelpers(self.executor, self.provisioner, self.registry)

    # PUBLIC_INTERFACE
    @classmethod
    def from_settings(
        cls, settings: Optional[Settings] = None, registry: Optional[TableRegistry] = None
    ) -> "TenantDataCore":
        """Create the core and its connection pool from database settings."""
        settings = settings or get_settings()
        return cls(
            create_engine_from_settings(settings),
            registry=registry,
            resolver=TenantResolver(settings.TENANT_SCHEMA_PREFIX),
            query_timeout=settings.QUERY_TIMEOUT_SECONDS,
        )

    async def dispose(self) -> None:
        """Close every pooled connection; call once on shutdown."""
        await self.engine.dispose()

    def register_table(self, schema: TableSchema) -> TableSchema:
        return self.registry.register(schema)

    async def _acquire(self) -> AsyncConnection:
        try:
            return await self.engine.connect()
        except PoolTimeoutError as exc:
            raise DatabaseConnectionError("Timed out waiting for a pooled connection") from exc
        except DBAPIError as exc:
            raise translate_error(exc) from exc
        except OSError as exc:
            raise DatabaseConnectionError(f"Cannot reach the database: {exc}") from exc

    # PUBLIC_INTERFACE
    @asynccontextmanager
    async def tenant(self, tenant_id: Union[str, UUID]) -> AsyncIterator[TenantContext]:
        """
        Resolve a tenant and borrow one pooled connection for it.

        Usage:
            async with core.tenant(tenant_id) as ctx:
                await core.insert(ctx, "estimates", {...})

        The connection goes back to the pool on every exit path; anything
        left uncommitted is rolled back.
        """
        conn = await self._acquire()
        try:
            tenant = await self.resolver.resolve(conn, tenant_id)
            token = tenant_id_var.set(str(tenant.id))
            logger.debug("Opened tenant context for schema %s", tenant.schema_name)
            try:
                yield TenantContext(tenant=tenant, connection=conn)
            finally:
                tenant_id_var.reset(token)
        finally:
            await conn.close()

    # PUBLIC_INTERFACE
    async def register_tenant(
        self, *, name: str, slug: str, tenant_id: Optional[UUID] = None
    ) -> Tenant:
        """Create a tenant (row + schema); idempotent on slug."""
        async with public_connection(self.engine) as conn:
            return await self.resolver.register(conn, name=name, slug=slug, tenant_id=tenant_id)

    async def set_tenant_active(self, tenant_id: UUID, active: bool) -> bool:
        async with public_connection(self.engine) as conn:
            return await self.resolver.set_active(conn, tenant_id, active)

    # PUBLIC_INTERFACE
    async def ensure_table(self, ctx: TenantContext, table: Union[str, TableSchema]) -> None:
        """Provision ``table`` (a registered name or a TableSchema) in the tenant schema."""
        schema = self.registry.get(table) if isinstance(table, str) else table
        await self.provisioner.ensure(ctx, schema)

    # PUBLIC_INTERFACE
    async def query(
        self,
        ctx: TenantContext,
        template: str,
        params: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ) -> List[Any]:
        """Run a ``${schema}`` SQL template; see ``SchemaQueryExecutor.query``."""
        return await self.executor.query(ctx, template, params, **kwargs)

    def transaction(self, ctx: TenantContext):
        """Scoped transaction: ``async with core.transaction(ctx): ...``."""
        return self.executor.transaction(ctx)

    # PUBLIC_INTERFACE
    async def insert(
        self,
        ctx: TenantContext,
        table: str,
        record: Mapping[str, Any],
        *,
        model: Optional[Type[BaseModel]] = None,
    ) -> Any:
        return await self.crud.insert(ctx, table, record, model=model)

    # PUBLIC_INTERFACE
    async def update(
        self,
        ctx: TenantContext,
        table: str,
        record_id: Any,
        owner_filters: Optional[Mapping[str, Any]],
        patch: Mapping[str, Any],
        *,
        model: Optional[Type[BaseModel]] = None,
    ) -> Optional[Any]:
        return await self.crud.update(ctx, table, record_id, owner_filters, patch, model=model)

    # PUBLIC_INTERFACE
    async def soft_delete(
        self,
        ctx: TenantContext,
        table: str,
        record_id: Any,
        owner_filters: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        return await self.crud.soft_delete(ctx, table, record_id, owner_filters)

    async def get(
        self,
        ctx: TenantContext,
        table: str,
        record_id: Any,
        owner_filters: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ) -> Optional[Any]:
        return await self.crud.get(ctx, table, record_id, owner_filters, **kwargs)

    async def list_page(self, ctx: TenantContext, table: str, **kwargs: Any) -> Page:
        return await self.crud.list_page(ctx, table, **kwargs)

    async def insert_many(
        self,
        ctx: TenantContext,
        table: str,
        records: Iterable[Mapping[str, Any]],
        *,
        continue_on: Tuple[Type[TenantDataError], ...] = (ConstraintViolation,),
        key_field: Optional[str] = None,
    ) -> BulkResult:
        return await self.crud.insert_many(
            ctx, table, records, continue_on=continue_on, key_field=key_field
        )
