from __future__ import annotations

from typing import Optional

from sqlalchemy import Date, DateTime, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from juris.schemas.publications import (
    Publication,
    PublicationCreate,
    PublicationFilters,
    PublicationStats,
    PublicationUpdate,
)
from juris.tenancy import ColumnDef, IndexDef, Page, TableSchema, TenantContext, table_ref

from .base import BaseRepository

PUBLICATIONS = TableSchema(
    name="publications",
    description="Official gazette publications, owned per user",
    columns=(
        ColumnDef("user_id", String(), nullable=False),
        ColumnDef("oab_number", String(), nullable=False),
        ColumnDef("process_number", String(), searchable=True),
        ColumnDef("publication_date", Date(), nullable=False),
        ColumnDef("content", Text(), nullable=False, searchable=True),
        ColumnDef("source", String(), nullable=False),
        ColumnDef("external_id", String()),
        ColumnDef("status", String(), server_default="'nova'"),
        ColumnDef("urgencia", String(), server_default="'media'"),
        ColumnDef("responsavel", String()),
        ColumnDef("vara_comarca", String()),
        ColumnDef("nome_pesquisado", String()),
        ColumnDef("diario", String()),
        ColumnDef("observacoes", Text()),
        ColumnDef("atribuida_para_id", String()),
        ColumnDef("atribuida_para_nome", String()),
        ColumnDef("data_atribuicao", DateTime(timezone=True)),
        ColumnDef("tarefas_vinculadas", JSONB(), server_default="'[]'::jsonb"),
        ColumnDef("metadata", JSONB(), server_default="'{}'::jsonb"),
    ),
    unique_together=(("user_id", "external_id"),),
    indexes=(
        IndexDef(("user_id",)),
        IndexDef(("oab_number",)),
        IndexDef(("status",)),
        IndexDef(("publication_date",), name="idx_publications_date"),
        IndexDef(("responsavel",)),
        IndexDef(("urgencia",)),
        IndexDef(("is_active",), name="idx_publications_active"),
    ),
)

_STATS_SQL = f"""
    SELECT
        COUNT(*) AS total,
        COUNT(*) FILTER (WHERE status = 'nova') AS nova,
        COUNT(*) FILTER (WHERE status = 'pendente') AS pendente,
        COUNT(*) FILTER (WHERE status = 'atribuida') AS atribuida,
        COUNT(*) FILTER (WHERE status = 'finalizada') AS finalizada,
        COUNT(*) FILTER (WHERE status = 'descartada') AS descartada,
        COUNT(*) FILTER (WHERE created_at >= date_trunc('month', now())) AS this_month
    FROM {table_ref(PUBLICATIONS.name)}
    WHERE user_id = :user_id AND is_active = TRUE
"""


class PublicationRepository(BaseRepository):
    """
    Repository for publications.

    Every read and write is scoped to the calling user: another user's
    publication behaves exactly like a missing one.
    """

    TABLE = PUBLICATIONS

    # PUBLIC_INTERFACE
    async def list_publications(
        self, ctx: TenantContext, user_id: str, filters: Optional[PublicationFilters] = None
    ) -> Page:
        """Page through the user's active publications, newest first."""
        filters = filters or PublicationFilters()
        return await self.core.list_page(
            ctx,
            self.table,
            filters={"user_id": user_id, "status": filters.status, "source": filters.source},
            ranges={"publication_date": (filters.date_from, filters.date_to)},
            search=filters.search,
            order_by=["-publication_date", "-created_at"],
            page=filters.page,
            limit=filters.limit,
            model=Publication,
        )

    async def get_publication(
        self, ctx: TenantContext, user_id: str, publication_id: str
    ) -> Optional[Publication]:
        return await self.core.get(
            ctx, self.table, publication_id, {"user_id": user_id}, model=Publication
        )

    # PUBLIC_INTERFACE
    async def create_publication(
        self, ctx: TenantContext, user_id: str, payload: PublicationCreate
    ) -> Publication:
        """Store a publication for ``user_id``; status defaults to 'nova'."""
        record = {**payload.model_dump(), "user_id": user_id}
        return await self.core.insert(ctx, self.table, record, model=Publication)

    # PUBLIC_INTERFACE
    async def update_publication(
        self, ctx: TenantContext, user_id: str, publication_id: str, payload: PublicationUpdate
    ) -> Optional[Publication]:
        """Apply the fields set in ``payload``; None when not found or not owned."""
        return await self.core.update(
            ctx,
            self.table,
            publication_id,
            {"user_id": user_id},
            payload.model_dump(exclude_none=True),
            model=Publication,
        )

    async def delete_publication(self, ctx: TenantContext, user_id: str, publication_id: str) -> bool:
        return await self.core.soft_delete(ctx, self.table, publication_id, {"user_id": user_id})

    async def get_stats(self, ctx: TenantContext, user_id: str) -> PublicationStats:
        rows = await self.query(ctx, _STATS_SQL, {"user_id": user_id}, model=PublicationStats)
        return rows[0] if rows else PublicationStats()
