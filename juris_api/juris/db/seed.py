"""
Seeding for a fresh environment.

Seeds:
- Default tenant (Acme Advocacia / ``acme``) and its schema
- The domain tables inside that schema

Usage:
  python -m juris.db.run_migrations upgrade head
  python -m juris.db.seed
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from juris.core.settings import AppSettings, get_app_settings
from juris.repositories.estimates import EstimateRepository
from juris.repositories.publications import PublicationRepository
from juris.tenancy import Tenant, TenantDataCore

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
async def seed_all(core: TenantDataCore, settings: Optional[AppSettings] = None) -> Tenant:
    """
    Register the default tenant and provision its tables.

    Safe to run repeatedly: registration is idempotent on slug and
    provisioning only issues IF NOT EXISTS DDL.
    """
    settings = settings or get_app_settings()
    tenant = await core.register_tenant(
        name=settings.DEFAULT_TENANT_NAME, slug=settings.DEFAULT_TENANT_SLUG
    )
    repos = [PublicationRepository(core), EstimateRepository(core)]
    async with core.tenant(tenant.id) as ctx:
        for repo in repos:
            await repo.ensure(ctx)
    logger.info("Seeded tenant %s (%s) in schema %s", tenant.slug, tenant.id, tenant.schema_name)
    return tenant


async def _seed_standalone() -> None:
    core = TenantDataCore.from_settings()
    try:
        await seed_all(core)
    finally:
        await core.dispose()


# PUBLIC_INTERFACE
def main() -> None:
    """Entrypoint to run the asynchronous seeding."""
    asyncio.run(_seed_standalone())


if __name__ == "__main__":
    main()
