"""
ORM models for the shared ``public`` schema.

Importing this package ensures model classes are registered with the Base
metadata for Alembic and runtime usage.
"""

from .tenant import TenantRecord  # noqa: F401
