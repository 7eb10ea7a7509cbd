from __future__ import annotations

from typing import Optional


class TenantDataError(Exception):
    """Base class for every failure raised by the tenant data access core."""

    def __init__(self, message: str, *, sqlstate: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.sqlstate = sqlstate


class TenantNotFound(TenantDataError):
    """No tenant is registered under the requested id."""


class TenantInactive(TenantDataError):
    """The tenant exists but has been deactivated."""


class UnknownTable(TenantDataError):
    """A table was targeted without a registered TableSchema."""


class UnknownColumn(TenantDataError):
    """A record, patch or owner filter referenced a column the table does not declare."""


class InvalidIdentifier(TenantDataError, ValueError):
    """A schema/table/column/index name failed the identifier allow-list."""


class QueryTemplateError(TenantDataError, ValueError):
    """A SQL template is missing the schema placeholder."""


class ProvisionError(TenantDataError):
    """DDL failed for a reason other than a concurrent "already exists" race."""


class DecodeError(TenantDataError):
    """A result row did not match the shape of the requested model."""


class ConstraintViolation(TenantDataError):
    """Uniqueness, foreign-key, not-null or check failure reported by Postgres."""

    def __init__(
        self,
        message: str,
        *,
        sqlstate: Optional[str] = None,
        constraint: Optional[str] = None,
    ) -> None:
        super().__init__(message, sqlstate=sqlstate)
        self.constraint = constraint


class DatabaseConnectionError(TenantDataError):
    """Pool exhaustion or network failure talking to Postgres."""


class QueryTimeout(TenantDataError):
    """The statement did not complete before the caller's deadline."""
