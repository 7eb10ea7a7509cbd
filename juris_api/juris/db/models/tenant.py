from __future__ import annotations

from sqlalchemy import Boolean, Text
from sqlalchemy.orm import Mapped, mapped_column

from juris.db.base import Base, TimestampMixin, UUIDPkMixin


class TenantRecord(UUIDPkMixin, TimestampMixin, Base):
    """Customer organisation; its data lives in the schema named by ``schema_name``."""
    __tablename__ = "tenants"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    schema_name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
