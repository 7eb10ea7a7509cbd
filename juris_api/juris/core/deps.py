from __future__ import annotations

from typing import AsyncGenerator
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from juris.core.security import decode_token
from juris.tenancy import TenantContext, TenantDataCore

# Tokens are issued by the upstream identity service
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


# PUBLIC_INTERFACE
async def get_tenant_id(x_tenant_id: str | None = Header(default=None, alias="X-Tenant-ID")) -> UUID:
    """
    Extract and validate the tenant id from the X-Tenant-ID header.

    Raises:
        HTTPException: 400 Bad Request if header missing or invalid UUID.
    Returns:
        UUID: tenant identifier
    """
    if not x_tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header is required.",
        )
    try:
        return UUID(x_tenant_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header must be a valid UUID string.",
        )


# PUBLIC_INTERFACE
def get_core(request: Request) -> TenantDataCore:
    """Return the process-wide TenantDataCore created in the app lifespan."""
    core = getattr(request.app.state, "core", None)
    if core is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Data access core is not initialised",
        )
    return core


# PUBLIC_INTERFACE
async def get_tenant_context(
    tenant_id: UUID = Depends(get_tenant_id),
    core: TenantDataCore = Depends(get_core),
) -> AsyncGenerator[TenantContext, None]:
    """
    Yield the TenantContext for the request's tenant.

    The pooled connection it carries is released when the request finishes,
    whether it succeeded, failed or was cancelled. Unknown or inactive
    tenants raise TenantNotFound / TenantInactive (rendered as 401).
    """
    async with core.tenant(tenant_id) as ctx:
        yield ctx


# PUBLIC_INTERFACE
async def get_current_user_id(
    tenant_id: UUID = Depends(get_tenant_id),
    token: str = Depends(oauth2_scheme),
) -> str:
    """
    Return the caller's user id from the bearer token.

    The token's tenant claim must match the X-Tenant-ID header.
    """
    try:
        payload = decode_token(token)
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    tok_tenant = payload.get("tenant_id")
    if not tok_tenant or str(tok_tenant) != str(tenant_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Tenant mismatch")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return str(user_id)
