from __future__ import annotations

from typing import Optional

from sqlalchemy import Boolean, Date, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from juris.schemas.estimates import (
    Estimate,
    EstimateCreate,
    EstimateFilters,
    EstimateStats,
    EstimateUpdate,
)
from juris.tenancy import ColumnDef, IndexDef, Page, TableSchema, TenantContext, table_ref

from .base import BaseRepository

ESTIMATES = TableSchema(
    name="estimates",
    description="Billing estimates shared by everyone in the tenant",
    columns=(
        ColumnDef("number", String(), nullable=False, searchable=True),
        ColumnDef("title", String(), nullable=False, searchable=True),
        ColumnDef("description", Text(), searchable=True),
        ColumnDef("client_id", String()),
        ColumnDef("client_email", String()),
        ColumnDef("client_phone", String()),
        ColumnDef("amount", Numeric(15, 2), nullable=False),
        ColumnDef("currency", String(3), nullable=False, server_default="'BRL'"),
        ColumnDef("status", String(), nullable=False, server_default="'draft'"),
        ColumnDef("date", Date(), nullable=False),
        ColumnDef("valid_until", Date()),
        ColumnDef("items", JSONB(), nullable=False, server_default="'[]'::jsonb"),
        ColumnDef("tags", JSONB(), nullable=False, server_default="'[]'::jsonb"),
        ColumnDef("notes", Text()),
        ColumnDef("created_by", String()),
        ColumnDef("converted_to_invoice", Boolean(), nullable=False, server_default="false"),
        ColumnDef("invoice_id", String()),
    ),
    indexes=(
        IndexDef(("status",)),
        IndexDef(("client_id",)),
        IndexDef(("date",)),
        IndexDef(("is_active",), name="idx_estimates_active"),
    ),
)

_STATS_SQL = f"""
    SELECT
        COUNT(*) AS total,
        COALESCE(SUM(amount), 0) AS total_amount,
        COALESCE(SUM(amount) FILTER (WHERE created_at >= date_trunc('month', now())), 0)
            AS this_month_amount,
        COUNT(*) FILTER (WHERE status = 'draft') AS draft,
        COUNT(*) FILTER (WHERE status = 'pending') AS pending,
        COUNT(*) FILTER (WHERE status = 'sent') AS sent,
        COUNT(*) FILTER (WHERE status = 'approved') AS approved,
        COUNT(*) FILTER (WHERE status = 'rejected') AS rejected
    FROM {table_ref(ESTIMATES.name)}
    WHERE is_active = TRUE
"""


class EstimateRepository(BaseRepository):
    """Repository for estimates (visible to the whole tenant)."""

    TABLE = ESTIMATES

    async def list_estimates(self, ctx: TenantContext, filters: Optional[EstimateFilters] = None) -> Page:
        filters = filters or EstimateFilters()
        return await self.core.list_page(
            ctx,
            self.table,
            filters={"status": filters.status, "client_id": filters.client_id},
            ranges={"date": (filters.date_from, filters.date_to)},
            search=filters.search,
            contains_any={"tags": filters.tags or []},
            page=filters.page,
            limit=filters.limit,
            model=Estimate,
        )

    async def get_estimate(self, ctx: TenantContext, estimate_id: str) -> Optional[Estimate]:
        return await self.core.get(ctx, self.table, estimate_id, model=Estimate)

    # PUBLIC_INTERFACE
    async def create_estimate(self, ctx: TenantContext, payload: EstimateCreate, created_by: str) -> Estimate:
        """Insert an estimate; line items and tags are stored as JSONB."""
        record = {**payload.model_dump(), "created_by": created_by}
        return await self.core.insert(ctx, self.table, record, model=Estimate)

    # PUBLIC_INTERFACE
    async def update_estimate(
        self, ctx: TenantContext, estimate_id: str, payload: EstimateUpdate
    ) -> Optional[Estimate]:
        return await self.core.update(
            ctx, self.table, estimate_id, None, payload.model_dump(exclude_none=True), model=Estimate
        )

    async def delete_estimate(self, ctx: TenantContext, estimate_id: str) -> bool:
        return await self.core.soft_delete(ctx, self.table, estimate_id)

    async def get_stats(self, ctx: TenantContext) -> EstimateStats:
        rows = await self.query(ctx, _STATS_SQL, model=EstimateStats)
        return rows[0] if rows else EstimateStats()
