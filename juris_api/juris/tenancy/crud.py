"""
Generic CRUD helpers over registered tenant tables.

Statements are assembled only from registered ``TableSchema`` names (quoted)
and bind markers; caller values are always bound parameters. ``None`` in a
record or patch means "not supplied".
"""
from __future__ import annotations

import logging
import math
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Type
from uuid import UUID, uuid4

from pydantic import BaseModel, Field
from sqlalchemy import Text
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.types import TypeEngine

from .context import TenantContext
from .errors import ConstraintViolation, TenantDataError, UnknownColumn
from .executor import SchemaQueryExecutor
from .provisioner import SchemaProvisioner
from .sql import quote_columns, quote_identifier, table_ref
from .tables import (
    ACTIVE_COLUMN,
    CREATED_AT_COLUMN,
    ID_COLUMN,
    UPDATED_AT_COLUMN,
    TableRegistry,
    TableSchema,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 1000

Statement = Tuple[str, Dict[str, Any], Dict[str, TypeEngine]]


class Page(BaseModel):
    """One page of a listing plus pagination metadata."""
    items: List[Any] = Field(default_factory=list)
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class ItemFailure(BaseModel):
    """Why one item of a bulk operation was skipped."""
    index: int = Field(..., description="Position of the item in the input")
    key: Optional[str] = Field(default=None, description="Caller-chosen identifier of the item")
    error_type: str
    message: str


class BulkResult(BaseModel):
    """Outcome of a bulk insert with per-item isolation."""
    succeeded: int = 0
    failures: List[ItemFailure] = Field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)


def coerce_id(value: Any) -> Optional[UUID]:
    """Parse a record id; ids that cannot be UUIDs simply match nothing."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


def _require(schema: TableSchema, flag: str) -> None:
    if not getattr(schema, flag):
        raise UnknownColumn(f"Table {schema.name!r} does not declare {flag} columns")


def _match_clause(
    schema: TableSchema,
    record_id: UUID,
    owner_filters: Optional[Mapping[str, Any]],
    include_inactive: bool = False,
) -> Statement:
    """WHERE clause matching one record by id, ownership and (by default) active flag."""
    _require(schema, "identity")
    clauses = [f"{quote_identifier(ID_COLUMN)} = :k_id"]
    params: Dict[str, Any] = {"k_id": record_id}
    types = {"k_id": schema.column(ID_COLUMN).type}
    for name, value in (owner_filters or {}).items():
        col = schema.column(name)
        if value is None:
            raise ValueError(f"Owner filter {name!r} must have a value")
        bind = f"o_{name}"
        clauses.append(f"{quote_identifier(name)} = :{bind}")
        params[bind] = value
        types[bind] = col.type
    if schema.soft_delete and not include_inactive:
        clauses.append(f"{quote_identifier(ACTIVE_COLUMN)} = TRUE")
    return " AND ".join(clauses), params, types


# PUBLIC_INTERFACE
def build_insert(schema: TableSchema, record: Mapping[str, Any]) -> Statement:
    """INSERT ... RETURNING * for ``record``; generates id and audit timestamps."""
    values = {k: v for k, v in record.items() if v is not None}
    for name in values:
        schema.column(name)
        if name in (CREATED_AT_COLUMN, UPDATED_AT_COLUMN):
            raise UnknownColumn(f"Column {name!r} of {schema.name!r} is set automatically")

    if schema.identity and ID_COLUMN not in values:
        values[ID_COLUMN] = uuid4()

    columns = list(values)
    markers = [f":{name}" for name in columns]
    if schema.audit:
        columns += [CREATED_AT_COLUMN, UPDATED_AT_COLUMN]
        markers += ["now()", "now()"]
    if not columns:
        raise ValueError(f"Nothing to insert into {schema.name!r}")

    sql = (
        f"INSERT INTO {table_ref(schema.name)} ({quote_columns(columns)}) "
        f"VALUES ({', '.join(markers)}) RETURNING *"
    )
    return sql, values, schema.bind_types(values)


# PUBLIC_INTERFACE
def build_update(
    schema: TableSchema,
    record_id: UUID,
    owner_filters: Optional[Mapping[str, Any]],
    patch: Mapping[str, Any],
) -> Statement:
    """
    UPDATE that only touches the fields present in ``patch``.

    Each assignment is ``col = COALESCE(:v_col, col)`` so a missing value can
    never overwrite stored data with NULL.
    """
    where, params, types = _match_clause(schema, record_id, owner_filters)
    managed = set(schema.managed_column_names)
    sets: List[str] = []
    for name, value in patch.items():
        col = schema.column(name)
        if name in managed or name in (owner_filters or {}):
            raise UnknownColumn(f"Column {name!r} of {schema.name!r} cannot be patched")
        if value is None:
            continue
        bind = f"v_{name}"
        quoted = quote_identifier(name)
        sets.append(f"{quoted} = COALESCE(:{bind}, {quoted})")
        params[bind] = value
        types[bind] = col.type
    if schema.audit:
        sets.append(f"{quote_identifier(UPDATED_AT_COLUMN)} = now()")
    if not sets:
        # nothing to change; still return the row when it matches
        return f"SELECT * FROM {table_ref(schema.name)} WHERE {where}", params, types

    sql = f"UPDATE {table_ref(schema.name)} SET {', '.join(sets)} WHERE {where} RETURNING *"
    return sql, params, types


# PUBLIC_INTERFACE
def build_soft_delete(
    schema: TableSchema,
    record_id: UUID,
    owner_filters: Optional[Mapping[str, Any]],
) -> Statement:
    _require(schema, "soft_delete")
    where, params, types = _match_clause(schema, record_id, owner_filters)
    sets = [f"{quote_identifier(ACTIVE_COLUMN)} = FALSE"]
    if schema.audit:
        sets.append(f"{quote_identifier(UPDATED_AT_COLUMN)} = now()")
    sql = (
        f"UPDATE {table_ref(schema.name)} SET {', '.join(sets)} "
        f"WHERE {where} RETURNING {quote_identifier(ID_COLUMN)}"
    )
    return sql, params, types


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _order_clause(schema: TableSchema, order_by: Optional[Sequence[str]]) -> str:
    if not order_by:
        default = CREATED_AT_COLUMN if schema.audit else schema.column_names[0]
        order_by = [f"-{default}"]
    parts = []
    for spec in order_by:
        name, direction = (spec[1:], "DESC") if spec.startswith("-") else (spec, "ASC")
        schema.column(name)
        parts.append(f"{quote_identifier(name)} {direction}")
    return ", ".join(parts)


# PUBLIC_INTERFACE
def build_select(
    schema: TableSchema,
    *,
    filters: Optional[Mapping[str, Any]] = None,
    ranges: Optional[Mapping[str, Tuple[Any, Any]]] = None,
    search: Optional[str] = None,
    contains_any: Optional[Mapping[str, Sequence[str]]] = None,
    include_inactive: bool = False,
) -> Statement:
    """
    WHERE clause (without the keyword) for listing records.

    ``filters`` are equality matches, ``ranges`` map a column to inclusive
    (min, max) bounds, and ``search`` is a case-insensitive substring match
    over the table's searchable columns. ``contains_any`` matches JSONB array
    columns holding at least one of the given strings.
    """
    clauses: List[str] = []
    params: Dict[str, Any] = {}
    types: Dict[str, TypeEngine] = {}

    if schema.soft_delete and not include_inactive:
        clauses.append(f"{quote_identifier(ACTIVE_COLUMN)} = TRUE")

    for name, value in (filters or {}).items():
        if value is None:
            continue
        col = schema.column(name)
        bind = f"f_{name}"
        clauses.append(f"{quote_identifier(name)} = :{bind}")
        params[bind] = value
        types[bind] = col.type

    for name, (low, high) in (ranges or {}).items():
        col = schema.column(name)
        if low is not None:
            clauses.append(f"{quote_identifier(name)} >= :r_{name}_min")
            params[f"r_{name}_min"] = low
            types[f"r_{name}_min"] = col.type
        if high is not None:
            clauses.append(f"{quote_identifier(name)} <= :r_{name}_max")
            params[f"r_{name}_max"] = high
            types[f"r_{name}_max"] = col.type

    for name, values in (contains_any or {}).items():
        if not values:
            continue
        schema.column(name)
        bind = f"c_{name}"
        clauses.append(f"{quote_identifier(name)} ?| :{bind}")
        params[bind] = list(values)
        types[bind] = ARRAY(Text())

    if search and schema.searchable_columns:
        ors = [f"{quote_identifier(c)} ILIKE :search ESCAPE '\\'" for c in schema.searchable_columns]
        clauses.append(f"({' OR '.join(ors)})")
        params["search"] = f"%{_escape_like(search)}%"

    return " AND ".join(clauses) or "TRUE", params, types


class CrudHelpers:
    """Insert / update / soft-delete / read helpers for registered tables."""

    def __init__(
        self,
        executor: SchemaQueryExecutor,
        provisioner: SchemaProvisioner,
        registry: TableRegistry,
    ) -> None:
        self.executor = executor
        self.provisioner = provisioner
        self.registry = registry

    async def _prepare(self, ctx: TenantContext, table: str) -> TableSchema:
        schema = self.registry.get(table)
        await self.provisioner.ensure(ctx, schema)
        return schema

    # PUBLIC_INTERFACE
    async def insert(
        self,
        ctx: TenantContext,
        table: str,
        record: Mapping[str, Any],
        *,
        model: Optional[Type[BaseModel]] = None,
    ) -> Any:
        """Insert ``record`` and return the full stored row."""
        schema = await self._prepare(ctx, table)
        sql, params, types = build_insert(schema, record)
        return await self.executor.query_one(ctx, sql, params, model=model, bind_types=types)

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
        """
        Apply ``patch`` to one active record owned per ``owner_filters``.

        Returns:
            the updated row, or None when no row matched (missing id and
            owner mismatch look the same).
        """
        schema = await self._prepare(ctx, table)
        key = coerce_id(record_id)
        if key is None:
            return None
        sql, params, types = build_update(schema, key, owner_filters, patch)
        return await self.executor.query_one(ctx, sql, params, model=model, bind_types=types)

    # PUBLIC_INTERFACE
    async def soft_delete(
        self,
        ctx: TenantContext,
        table: str,
        record_id: Any,
        owner_filters: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """Mark one active record inactive; True when a row was affected."""
        schema = await self._prepare(ctx, table)
        key = coerce_id(record_id)
        if key is None:
            return False
        sql, params, types = build_soft_delete(schema, key, owner_filters)
        rows = await self.executor.query(ctx, sql, params, bind_types=types)
        return len(rows) > 0

    # PUBLIC_INTERFACE
    async def get(
        self,
        ctx: TenantContext,
        table: str,
        record_id: Any,
        owner_filters: Optional[Mapping[str, Any]] = None,
        *,
        include_inactive: bool = False,
        model: Optional[Type[BaseModel]] = None,
    ) -> Optional[Any]:
        schema = await self._prepare(ctx, table)
        key = coerce_id(record_id)
        if key is None:
            return None
        where, params, types = _match_clause(schema, key, owner_filters, include_inactive)
        sql = f"SELECT * FROM {table_ref(schema.name)} WHERE {where}"
        return await self.executor.query_one(ctx, sql, params, model=model, bind_types=types)

    # PUBLIC_INTERFACE
    async def list_page(
        self,
        ctx: TenantContext,
        table: str,
        *,
        filters: Optional[Mapping[str, Any]] = None,
        ranges: Optional[Mapping[str, Tuple[Any, Any]]] = None,
        search: Optional[str] = None,
        contains_any: Optional[Mapping[str, Sequence[str]]] = None,
        order_by: Optional[Sequence[str]] = None,
        page: int = 1,
        limit: int = 50,
        include_inactive: bool = False,
        model: Optional[Type[BaseModel]] = None,
    ) -> Page:
        """Filtered, ordered, paginated listing plus the total match count."""
        schema = await self._prepare(ctx, table)
        page = max(int(page), 1)
        limit = min(max(int(limit), 1), MAX_PAGE_SIZE)

        where, params, types = build_select(
            schema,
            filters=filters,
            ranges=ranges,
            search=search,
            contains_any=contains_any,
            include_inactive=include_inactive,
        )
        ref = table_ref(schema.name)
        count_row = await self.executor.query_one(
            ctx, f"SELECT COUNT(*) AS total FROM {ref} WHERE {where}", params, bind_types=types
        )
        total = int(count_row["total"]) if count_row else 0

        rows = await self.executor.query(
            ctx,
            f"SELECT * FROM {ref} WHERE {where} ORDER BY {_order_clause(schema, order_by)} "
            f"LIMIT :_limit OFFSET :_offset",
            {**params, "_limit": limit, "_offset": (page - 1) * limit},
            model=model,
            bind_types=types,
        )
        total_pages = math.ceil(total / limit) if total else 0
        return Page(
            items=rows,
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )

    # PUBLIC_INTERFACE
    async def insert_many(
        self,
        ctx: TenantContext,
        table: str,
        records: Iterable[Mapping[str, Any]],
        *,
        continue_on: Tuple[Type[TenantDataError], ...] = (ConstraintViolation,),
        key_field: Optional[str] = None,
    ) -> BulkResult:
        """
        Insert records one by one, isolating failures per item.

        Errors of the ``continue_on`` types are recorded in the result and the
        batch continues; any other error aborts the batch. The table is
        provisioned once up front so a rolled-back item cannot take its DDL
        with it.
        """
        await self._prepare(ctx, table)
        result = BulkResult()
        for index, record in enumerate(records):
            try:
                async with self.executor.transaction(ctx):
                    await self.insert(ctx, table, record)
            except continue_on as exc:
                key = record.get(key_field) if key_field else None
                result.failures.append(
                    ItemFailure(
                        index=index,
                        key=None if key is None else str(key),
                        error_type=type(exc).__name__,
                        message=str(exc),
                    )
                )
                continue
            result.succeeded += 1

        logger.info(
            "Bulk insert into %s.%s: %d succeeded, %d failed",
            ctx.schema_name,
            table,
            result.succeeded,
            result.failed,
        )
        return result
