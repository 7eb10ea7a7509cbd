from __future__ import annotations

import re
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Database and tenant data access settings.

    Reads from environment variables (or .env via pydantic-settings):
      - POSTGRES_URL, or POSTGRES_USER / POSTGRES_PASSWORD / POSTGRES_DB /
        POSTGRES_HOST / POSTGRES_PORT
      - pool sizing and the default statement deadline
    """

    # Database
    POSTGRES_URL: Optional[str] = Field(
        default=None, description="If provided, full PostgreSQL connection URL."
    )
    POSTGRES_USER: Optional[str] = Field(default=None, description="DB username")
    POSTGRES_PASSWORD: Optional[str] = Field(default=None, description="DB password")
    POSTGRES_DB: Optional[str] = Field(default=None, description="Database name")
    POSTGRES_PORT: Optional[int] = Field(
        default=5432, description="Database port (default 5432)"
    )
    POSTGRES_HOST: Optional[str] = Field(
        default="localhost", description="Database host (default localhost)"
    )

    # SQLAlchemy engine / pool options
    SQL_ECHO: bool = Field(
        default=False, description="Echo SQL statements for debugging (default False)"
    )
    POOL_SIZE: int = Field(default=10, ge=1, description="Persistent pooled connections")
    MAX_OVERFLOW: int = Field(default=10, ge=0, description="Extra connections beyond POOL_SIZE")
    POOL_TIMEOUT_SECONDS: float = Field(
        default=30.0, gt=0, description="Seconds to wait for a pooled connection"
    )

    # Tenant data access
    QUERY_TIMEOUT_SECONDS: Optional[float] = Field(
        default=30.0, description="Default per-statement deadline; unset for no deadline"
    )
    TENANT_SCHEMA_PREFIX: str = Field(
        default="tenant_", pattern=r"^[a-z_][a-z0-9_]{0,30}$",
        description="Prefix of per-tenant schema names",
    )

    # General environment
    ENVIRONMENT: Optional[str] = Field(
        default=None, description="Environment label (dev/test/prod)"
    )

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @property
    def database_url(self) -> str:
        """
        Compute the base (sync-neutral) database URL. Will prefer POSTGRES_URL
        if present, otherwise construct from individual POSTGRES_* variables.
        """
        if self.POSTGRES_URL:
            return self.POSTGRES_URL

        if not all([self.POSTGRES_USER, self.POSTGRES_PASSWORD, self.POSTGRES_DB]):
            raise ValueError(
                "Database configuration missing. Ensure POSTGRES_URL or "
                "POSTGRES_USER, POSTGRES_PASSWORD, and POSTGRES_DB are set in the environment."
            )
        host = self.POSTGRES_HOST or "localhost"
        port = self.POSTGRES_PORT or 5432
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{host}:{port}/{self.POSTGRES_DB}"

    @property
    def async_database_url(self) -> str:
        """Convert the base URL to an asyncpg-enabled SQLAlchemy URL."""
        url = self.database_url
        if url.startswith("postgresql+asyncpg://"):
            return url
        return re.sub(r"^postgres(ql)?(\+\w+)?://", "postgresql+asyncpg://", url)

    @property
    def sync_database_url(self) -> str:
        """Driver-less URL used by Alembic in offline mode."""
        return re.sub(r"^postgres(ql)?\+\w+://", "postgresql://", self.database_url)


# PUBLIC_INTERFACE
@lru_cache
def get_settings() -> Settings:
    """Return the process-wide database settings."""
    return Settings()
