"""
Identifier safety and schema placeholder rendering.

Only names that pass ``validate_identifier`` ever reach SQL text, and they are
always quoted with the PostgreSQL dialect's identifier preparer. Values are
never interpolated; they travel as bound parameters.
"""
from __future__ import annotations

import re
from typing import Iterable

from sqlalchemy.dialects import postgresql

from .errors import InvalidIdentifier, QueryTemplateError

SCHEMA_PLACEHOLDER = "${schema}"

_IDENTIFIER_RE = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")
_DIALECT = postgresql.dialect()
_PREPARER = _DIALECT.identifier_preparer


# PUBLIC_INTERFACE
def validate_identifier(name: str) -> str:
    """
    Check that a name is safe to use as a Postgres identifier.

    Accepts lowercase ASCII letters, digits and underscores, max 63 chars,
    not starting with a digit or the reserved ``pg_`` prefix.
    """
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name) or name.startswith("pg_"):
        raise InvalidIdentifier(f"Invalid identifier: {name!r}")
    return name


# PUBLIC_INTERFACE
def quote_identifier(name: str) -> str:
    """Validate and double-quote an identifier."""
    return _PREPARER.quote_identifier(validate_identifier(name))


def quote_columns(names: Iterable[str]) -> str:
    """Comma-separated list of quoted column names."""
    return ", ".join(quote_identifier(n) for n in names)


# PUBLIC_INTERFACE
def render(template: str, schema_name: str) -> str:
    """
    Substitute the schema placeholder with the quoted tenant schema.

    Every occurrence is replaced in a single pass; the rest of the template
    is left untouched. A template without the placeholder would not be
    schema-qualified, so it is rejected.
    """
    if SCHEMA_PLACEHOLDER not in template:
        raise QueryTemplateError(
            f"SQL template must reference the tenant schema via {SCHEMA_PLACEHOLDER}"
        )
    return template.replace(SCHEMA_PLACEHOLDER, quote_identifier(schema_name))


def table_ref(table: str) -> str:
    """Template fragment for a table in the tenant schema, e.g. ``${schema}."estimates"``."""
    return f"{SCHEMA_PLACEHOLDER}.{quote_identifier(table)}"


def compile_type(type_) -> str:
    """Render a SQLAlchemy type as PostgreSQL DDL."""
    return type_.compile(dialect=_DIALECT)
