"""
Tenant data access core.

Every domain repository reaches Postgres through this package: resolve the
tenant, ensure the table exists in the tenant's schema, then query or use the
CRUD helpers. See ``TenantDataCore`` for the entry points.
"""

from .context import Tenant, TenantContext, schema_name_for
from .core import TenantDataCore
from .crud import BulkResult, ItemFailure, Page
from .errors import (
    ConstraintViolation,
    DatabaseConnectionError,
    DecodeError,
    InvalidIdentifier,
    ProvisionError,
    QueryTemplateError,
    QueryTimeout,
    TenantDataError,
    TenantInactive,
    TenantNotFound,
    UnknownColumn,
    UnknownTable,
)
from .sql import SCHEMA_PLACEHOLDER, quote_identifier, table_ref
from .tables import ColumnDef, IndexDef, TableRegistry, TableSchema

__all__ = [
    "SCHEMA_PLACEHOLDER",
    "BulkResult",
    "ColumnDef",
    "ConstraintViolation",
    "DatabaseConnectionError",
    "DecodeError",
    "IndexDef",
    "InvalidIdentifier",
    "ItemFailure",
    "Page",
    "ProvisionError",
    "QueryTemplateError",
    "QueryTimeout",
    "TableRegistry",
    "TableSchema",
    "Tenant",
    "TenantContext",
    "TenantDataCore",
    "TenantDataError",
    "TenantInactive",
    "TenantNotFound",
    "UnknownColumn",
    "UnknownTable",
    "quote_identifier",
    "schema_name_for",
    "table_ref",
]
