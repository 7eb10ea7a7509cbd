from __future__ import annotations

from typing import Any, ClassVar, List, Mapping, Optional

from juris.tenancy import TableSchema, TenantContext, TenantDataCore


class BaseRepository:
    """
    Base class for repositories over one tenant table.

    Subclasses set ``TABLE``; constructing the repository registers it with
    the core so the generic CRUD helpers can find it by name.
    """

    TABLE: ClassVar[TableSchema]

    def __init__(self, core: TenantDataCore) -> None:
        self.core = core
        if self.TABLE.name not in core.registry:
            core.register_table(self.TABLE)

    @property
    def table(self) -> str:
        return self.TABLE.name

    async def ensure(self, ctx: TenantContext) -> None:
        """Provision the table before a hand-written query touches it."""
        await self.core.ensure_table(ctx, self.TABLE)

    async def query(
        self, ctx: TenantContext, template: str, params: Optional[Mapping[str, Any]] = None, **kwargs: Any
    ) -> List[Any]:
        """Ensure the table, then run a ``${schema}`` template."""
        await self.ensure(ctx)
        return await self.core.query(ctx, template, params, **kwargs)
