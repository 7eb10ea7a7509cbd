from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Type
from uuid import uuid4

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from juris.core.deps import get_current_user_id, get_tenant_context
from juris.core.logging import configure_logging, correlation_id_var, tenant_id_var
from juris.core.settings import get_app_settings
from juris.db.config import get_settings
from juris.db.run_migrations import main as run_alembic
from juris.db.seed import seed_all
from juris.repositories.estimates import EstimateRepository
from juris.repositories.publications import PublicationRepository
from juris.schemas.common import CallerEcho, ErrorInfo, ErrorResponse, MessageResponse, TenantEcho
from juris.tenancy import (
    ConstraintViolation,
    DatabaseConnectionError,
    QueryTimeout,
    TenantContext,
    TenantDataCore,
    TenantDataError,
    TenantInactive,
    TenantNotFound,
)

settings = get_app_settings()

configure_logging(settings.LOG_LEVEL, sql_echo=get_settings().SQL_ECHO)
logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "Health", "description": "Liveness and tenant readiness probes."},
    {"name": "Session", "description": "Caller identity as seen by the data layer."},
]

# Taxonomy -> HTTP status; anything not listed is a server-side fault (500)
ERROR_STATUS: Dict[Type[TenantDataError], int] = {
    TenantNotFound: status.HTTP_401_UNAUTHORIZED,
    TenantInactive: status.HTTP_401_UNAUTHORIZED,
    ConstraintViolation: status.HTTP_400_BAD_REQUEST,
    DatabaseConnectionError: status.HTTP_503_SERVICE_UNAVAILABLE,
    QueryTimeout: status.HTTP_504_GATEWAY_TIMEOUT,
}


def status_for(exc: TenantDataError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Create the process-wide data access core, run migrations and optional
    seeding, and dispose the pool on shutdown.
    """
    core = getattr(app.state, "core", None)
    owns_core = core is None
    if owns_core:
        core = TenantDataCore.from_settings()
        app.state.core = core
    # Register domain tables up front so the CRUD helpers can resolve them by name
    PublicationRepository(core)
    EstimateRepository(core)

    if settings.RUN_MIGRATIONS_ON_STARTUP:
        try:
            logger.info("Running Alembic migrations: upgrade head")
            # env.py drives its own event loop
            await asyncio.to_thread(run_alembic, ["upgrade", "head"])
            logger.info("Migrations completed.")
        except Exception as exc:
            logger.exception("Migration step failed: %s", exc)

    if settings.AUTO_SEED:
        try:
            logger.info("Running database seeding...")
            await seed_all(core, settings)
            logger.info("Seeding completed.")
        except TenantDataError as exc:
            logger.exception("Seeding step failed: %s", exc)

    try:
        yield
    finally:
        if owns_core:
            await core.dispose()
            app.state.core = None


app = FastAPI(
    title=settings.APP_NAME,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    openapi_tags=openapi_tags,
    lifespan=lifespan,
)

# CORS - avoid wildcard with credentials
cors_allow_credentials = settings.CORS_ALLOW_CREDENTIALS
if settings.CORS_ORIGINS == ["*"] and cors_allow_credentials:
    logger.warning("CORS_ALLOW_CREDENTIALS=True with '*' origins is not permitted; disabling credentials.")
    cors_allow_credentials = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=cors_allow_credentials,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """
    Stamp correlation_id and tenant_id onto the request and the logging context.
    Adds 'X-Correlation-ID' to every response.
    """
    corr = request.headers.get("X-Correlation-ID") or request.headers.get("X-Request-ID") or str(uuid4())
    tenant = request.headers.get("X-Tenant-ID")
    token_corr = correlation_id_var.set(corr)
    token_tenant = tenant_id_var.set(tenant)
    request.state.correlation_id = corr
    request.state.tenant_id = tenant

    logger.info("Incoming request %s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
    finally:
        correlation_id_var.reset(token_corr)
        tenant_id_var.reset(token_tenant)

    response.headers["X-Correlation-ID"] = corr
    return response


def _build_error_response(
    request: Request,
    status_code: int,
    error_type: str,
    message: str,
    details: Any | None = None,
) -> JSONResponse:
    """Build a standardized ErrorResponse JSONResponse."""
    err = ErrorResponse(
        status=status_code,
        error=ErrorInfo(type=error_type, message=message, details=details),
        correlation_id=getattr(request.state, "correlation_id", None),
        tenant_id=getattr(request.state, "tenant_id", None),
        path=request.url.path,
        method=request.method,
        timestamp=datetime.now(tz=timezone.utc),
    )
    return JSONResponse(status_code=status_code, content=err.model_dump(mode="json"))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Render HTTPException in the standard error envelope."""
    detail = exc.detail if isinstance(exc.detail, str) else "HTTP Error"
    return _build_error_response(
        request=request,
        status_code=exc.status_code,
        error_type="http_error",
        message=str(detail),
        details=None if isinstance(exc.detail, str) else exc.detail,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return _build_error_response(
        request=request,
        status_code=422,
        error_type="validation_error",
        message="Request validation failed",
        details=exc.errors(),
    )


@app.exception_handler(TenantDataError)
async def tenant_data_exception_handler(request: Request, exc: TenantDataError):
    """
    Map data-layer failures to HTTP statuses.

    Server-side faults are logged with their traceback and answered with a
    generic message; client-correctable ones echo the error message.
    """
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("Data layer failure: %s", exc, exc_info=exc)
    message = exc.message if status_code != 500 else "An unexpected error occurred"
    details = {"sqlstate": exc.sqlstate} if isinstance(exc, ConstraintViolation) and exc.sqlstate else None
    return _build_error_response(
        request=request,
        status_code=status_code,
        error_type=type(exc).__name__,
        message=message,
        details=details,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Catch-all handler to avoid leaking stack traces."""
    logger.exception("Unhandled error processing request")
    return _build_error_response(
        request=request,
        status_code=500,
        error_type="internal_error",
        message="An unexpected error occurred",
        details=None,
    )


api_v1 = APIRouter(prefix="/api/v1")


# PUBLIC_INTERFACE
@api_v1.get(
    "/health",
    response_model=MessageResponse,
    summary="Health Check",
    tags=["Health"],
)
def health_check() -> MessageResponse:
    """
    Basic liveness health check endpoint.

    Returns:
        MessageResponse: Simple confirmation that the service is running.
    """
    return MessageResponse(message="Healthy")


# PUBLIC_INTERFACE
@api_v1.get(
    "/health/tenant",
    response_model=TenantEcho,
    summary="Tenant Health Echo",
    description="Resolves the X-Tenant-ID tenant and echoes the schema its data lives in.",
    tags=["Health"],
)
async def tenant_health_echo(ctx: TenantContext = Depends(get_tenant_context)) -> TenantEcho:
    """
    Verify that the tenant exists, is active, and a connection can be borrowed for it.

    Parameters:
        X-Tenant-ID (header): UUID of the tenant.
    """
    return TenantEcho(tenant_id=ctx.tenant_id, schema_name=ctx.schema_name)


# PUBLIC_INTERFACE
@api_v1.get(
    "/me",
    response_model=CallerEcho,
    summary="Current Caller",
    description="Echoes the authenticated user and the tenant context for the request.",
    tags=["Session"],
)
async def whoami(
    ctx: TenantContext = Depends(get_tenant_context),
    user_id: str = Depends(get_current_user_id),
) -> CallerEcho:
    return CallerEcho(tenant_id=ctx.tenant_id, schema_name=ctx.schema_name, user_id=user_id)


app.include_router(api_v1)
