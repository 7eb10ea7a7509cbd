"""
Declarative table definitions for tenant schemas.

Each domain repository describes its table once with a ``TableSchema``; the
provisioner derives DDL from it and the CRUD helpers derive column lists and
bind types from it. Nothing else is allowed to name a tenant table.
"""
from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from functools import cached_property
from typing import Dict, Iterable, Iterator, Optional, Tuple

from sqlalchemy import Boolean, DateTime
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.types import TypeEngine

from .errors import UnknownColumn, UnknownTable
from .sql import compile_type, quote_identifier, validate_identifier

ID_COLUMN = "id"
CREATED_AT_COLUMN = "created_at"
UPDATED_AT_COLUMN = "updated_at"
ACTIVE_COLUMN = "is_active"

_MAX_IDENTIFIER = 63


@dataclass(frozen=True)
class ColumnDef:
    """
    A single column.

    ``server_default`` is a SQL expression written by the developer
    (e.g. ``"'nova'"`` or ``"now()"``); it is never built from request data.
    """
    name: str
    type: TypeEngine
    nullable: bool = True
    server_default: Optional[str] = None
    primary_key: bool = False
    searchable: bool = False

    def __post_init__(self) -> None:
        validate_identifier(self.name)

    def ddl(self, *, enforce_not_null: bool = True) -> str:
        parts = [quote_identifier(self.name), compile_type(self.type)]
        if self.primary_key:
            parts.append("PRIMARY KEY")
        elif not self.nullable and enforce_not_null:
            parts.append("NOT NULL")
        if self.server_default is not None:
            parts.append(f"DEFAULT {self.server_default}")
        return " ".join(parts)


@dataclass(frozen=True)
class IndexDef:
    """A (possibly unique) index over one or more columns."""
    columns: Tuple[str, ...]
    name: Optional[str] = None
    unique: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", tuple(self.columns))
        if not self.columns:
            raise ValueError("IndexDef requires at least one column")
        for col in self.columns:
            validate_identifier(col)
        if self.name is not None:
            validate_identifier(self.name)

    def resolved_name(self, table: str) -> str:
        if self.name:
            return self.name
        name = f"idx_{table}_{'_'.join(self.columns)}"
        if len(name) > _MAX_IDENTIFIER:
            digest = hashlib.sha1(name.encode("utf-8")).hexdigest()[:8]
            name = f"{name[:_MAX_IDENTIFIER - 9]}_{digest}"
        return name


@dataclass(frozen=True)
class TableSchema:
    """
    Declarative definition of a tenant table.

    With the defaults, the table also gets managed columns:
      - ``id`` UUID primary key (identity)
      - ``created_at`` / ``updated_at`` timestamps (audit)
      - ``is_active`` flag used for soft deletes
    """
    name: str
    columns: Tuple[ColumnDef, ...]
    indexes: Tuple[IndexDef, ...] = ()
    unique_together: Tuple[Tuple[str, ...], ...] = ()
    identity: bool = True
    audit: bool = True
    soft_delete: bool = True
    description: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        validate_identifier(self.name)
        object.__setattr__(self, "columns", tuple(self.columns))
        object.__setattr__(self, "indexes", tuple(self.indexes))
        object.__setattr__(
            self, "unique_together", tuple(tuple(u) for u in self.unique_together)
        )

        managed = set(self.managed_column_names)
        seen: set[str] = set()
        for col in self.columns:
            if col.name in managed:
                raise ValueError(
                    f"Column {col.name!r} of table {self.name!r} is managed automatically"
                )
            if col.name in seen:
                raise ValueError(f"Duplicate column {col.name!r} in table {self.name!r}")
            seen.add(col.name)

        for cols in [i.columns for i in self.indexes] + list(self.unique_together):
            for col in cols:
                if not self.has_column(col):
                    raise UnknownColumn(f"Table {self.name!r} has no column {col!r}")

    @property
    def managed_column_names(self) -> Tuple[str, ...]:
        names = []
        if self.identity:
            names.append(ID_COLUMN)
        if self.audit:
            names += [CREATED_AT_COLUMN, UPDATED_AT_COLUMN]
        if self.soft_delete:
            names.append(ACTIVE_COLUMN)
        return tuple(names)

    @cached_property
    def all_columns(self) -> Tuple[ColumnDef, ...]:
        cols = []
        if self.identity:
            cols.append(ColumnDef(ID_COLUMN, UUID(as_uuid=True), nullable=False, primary_key=True))
        cols.extend(self.columns)
        if self.audit:
            cols.append(ColumnDef(CREATED_AT_COLUMN, DateTime(timezone=True), nullable=False, server_default="now()"))
            cols.append(ColumnDef(UPDATED_AT_COLUMN, DateTime(timezone=True), nullable=False, server_default="now()"))
        if self.soft_delete:
            cols.append(ColumnDef(ACTIVE_COLUMN, Boolean(), nullable=False, server_default="true"))
        return tuple(cols)

    @cached_property
    def _by_name(self) -> Dict[str, ColumnDef]:
        return {c.name: c for c in self.all_columns}

    def has_column(self, name: str) -> bool:
        return name in self._by_name

    def column(self, name: str) -> ColumnDef:
        try:
            return self._by_name[name]
        except KeyError:
            raise UnknownColumn(f"Table {self.name!r} has no column {name!r}") from None

    @property
    def column_names(self) -> Tuple[str, ...]:
        return tuple(c.name for c in self.all_columns)

    @property
    def searchable_columns(self) -> Tuple[str, ...]:
        return tuple(c.name for c in self.columns if c.searchable)

    def bind_types(self, names: Iterable[str]) -> Dict[str, TypeEngine]:
        return {n: self.column(n).type for n in names}

    @cached_property
    def fingerprint(self) -> str:
        """Stable digest of everything the provisioner derives DDL from."""
        parts = [self.name]
        parts += [c.ddl() for c in self.all_columns]
        parts += [f"u:{','.join(u)}" for u in self.unique_together]
        parts += [f"i:{i.resolved_name(self.name)}:{i.unique}:{','.join(i.columns)}" for i in self.indexes]
        return hashlib.sha1("|".join(parts).encode("utf-8")).hexdigest()


class TableRegistry:
    """Registered table definitions, keyed by table name."""

    def __init__(self, schemas: Iterable[TableSchema] = ()) -> None:
        self._tables: Dict[str, TableSchema] = {}
        for schema in schemas:
            self.register(schema)

    def register(self, schema: TableSchema) -> TableSchema:
        self._tables[schema.name] = schema
        return schema

    def get(self, name: str) -> TableSchema:
        try:
            return self._tables[name]
        except KeyError:
            raise UnknownTable(f"No schema registered for table {name!r}") from None

    def __contains__(self, name: object) -> bool:
        return name in self._tables

    def __iter__(self) -> Iterator[TableSchema]:
        return iter(self._tables.values())

    def __len__(self) -> int:
        return len(self._tables)
