"""
Repository layer for tenant data.

Each repository declares the ``TableSchema`` of its table and goes through the
TenantDataCore for every statement, so queries always run inside the
caller's tenant schema (see juris.core.deps.get_tenant_context).
"""
