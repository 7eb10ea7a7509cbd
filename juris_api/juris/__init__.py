"""Juris API: multi-tenant legal/billing backend built on a schema-per-tenant Postgres core."""

__version__ = "0.1.0"
