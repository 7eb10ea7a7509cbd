"""
Lazy, idempotent provisioning of tenant tables.

Concurrent first-touch by several requests converges instead of locking:
every DDL statement is guarded by IF NOT EXISTS, and the "already exists"
errors Postgres can still raise when two creators race are absorbed.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Set, Tuple

from .context import TenantContext
from .errors import DatabaseConnectionError, ProvisionError, QueryTimeout, TenantDataError
from .executor import SchemaQueryExecutor
from .sql import SCHEMA_PLACEHOLDER, quote_columns, quote_identifier, table_ref
from .tables import IndexDef, TableSchema

logger = logging.getLogger(__name__)

# duplicate_schema, duplicate_table, duplicate_column, duplicate_object, and
# unique_violation on pg_type/pg_class when two CREATEs race.
BENIGN_DDL_SQLSTATES = frozenset({"42P06", "42P07", "42701", "42710", "23505"})

_CacheKey = Tuple[str, str, str]


def create_schema_sql() -> str:
    return f"CREATE SCHEMA IF NOT EXISTS {SCHEMA_PLACEHOLDER}"


def create_table_sql(schema: TableSchema) -> str:
    lines = [c.ddl() for c in schema.all_columns]
    lines += [f"UNIQUE ({quote_columns(cols)})" for cols in schema.unique_together]
    body = ",\n    ".join(lines)
    return f"CREATE TABLE IF NOT EXISTS {table_ref(schema.name)} (\n    {body}\n)"


def add_columns_sql(schema: TableSchema) -> Optional[str]:
    """
    Single additive ALTER covering every non-key column; never drops or retypes.

    A required column without a default is added as nullable, since existing
    rows have no value for it.
    """
    clauses = [
        f"ADD COLUMN IF NOT EXISTS {c.ddl(enforce_not_null=c.server_default is not None)}"
        for c in schema.all_columns
        if not c.primary_key
    ]
    if not clauses:
        return None
    return f"ALTER TABLE {table_ref(schema.name)} " + ", ".join(clauses)


def create_index_sql(schema: TableSchema, index: IndexDef) -> str:
    unique = "UNIQUE " if index.unique else ""
    name = quote_identifier(index.resolved_name(schema.name))
    return (
        f"CREATE {unique}INDEX IF NOT EXISTS {name} "
        f"ON {table_ref(schema.name)} ({quote_columns(index.columns)})"
    )


def provisioning_plan(schema: TableSchema) -> List[Tuple[str, str]]:
    """Ordered (step label, SQL template) pairs for ``schema``."""
    steps = [("schema", create_schema_sql()), ("table", create_table_sql(schema))]
    alter = add_columns_sql(schema)
    if alter:
        steps.append(("columns", alter))
    for index in schema.indexes:
        steps.append((f"index {index.resolved_name(schema.name)}", create_index_sql(schema, index)))
    return steps


class SchemaProvisioner:
    """
    Ensures a table, its columns and its indexes exist in a tenant schema.

    Successful runs are remembered per (schema, table, definition) for the
    lifetime of the process, so repeat calls do not round-trip.
    """

    def __init__(self, executor: SchemaQueryExecutor) -> None:
        self.executor = executor
        self._ensured: Set[_CacheKey] = set()
        self._locks: Dict[_CacheKey, asyncio.Lock] = {}

    def is_ensured(self, schema_name: str, schema: TableSchema) -> bool:
        return (schema_name, schema.name, schema.fingerprint) in self._ensured

    def invalidate(self, schema_name: Optional[str] = None) -> None:
        """Forget ensured tables, for one tenant schema or for all of them."""
        if schema_name is None:
            self._ensured.clear()
            self._locks.clear()
        else:
            self._ensured = {k for k in self._ensured if k[0] != schema_name}
            self._locks = {k: v for k, v in self._locks.items() if k[0] != schema_name}

    # PUBLIC_INTERFACE
    async def ensure(self, ctx: TenantContext, schema: TableSchema) -> None:
        """
        Idempotently create the table described by ``schema`` in the tenant schema.

        Inside a caller's transaction the DDL only becomes durable when that
        transaction commits, so the table is remembered as ensured from then
        on. A rollback leaves it to be provisioned again.

        Raises:
            ProvisionError: a DDL step failed for a reason other than a
                concurrent-creation race.
        """
        key = (ctx.schema_name, schema.name, schema.fingerprint)
        if key in self._ensured:
            return

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            if key in self._ensured:
                return
            for label, template in provisioning_plan(schema):
                await self._run_step(ctx, schema, label, template)
            self.executor.after_commit(ctx, lambda: self._mark_ensured(key))
        logger.info("Provisioned table %s.%s", ctx.schema_name, schema.name)

    def _mark_ensured(self, key: _CacheKey) -> None:
        self._ensured.add(key)
        self._locks.pop(key, None)

    async def _run_step(self, ctx: TenantContext, schema: TableSchema, label: str, template: str) -> None:
        try:
            # Own (sub)transaction so a lost race does not poison an outer one.
            async with self.executor.transaction(ctx):
                await self.executor.query(ctx, template)
        except (DatabaseConnectionError, QueryTimeout):
            raise
        except TenantDataError as exc:
            if exc.sqlstate in BENIGN_DDL_SQLSTATES:
                logger.debug(
                    "Concurrent provisioning of %s.%s (%s) already done: %s",
                    ctx.schema_name,
                    schema.name,
                    label,
                    exc.sqlstate,
                )
                return
            raise ProvisionError(
                f"Provisioning {ctx.schema_name}.{schema.name} failed at {label}: {exc.message}",
                sqlstate=exc.sqlstate,
            ) from exc
