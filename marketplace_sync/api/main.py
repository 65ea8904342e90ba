"""
FastAPI main application entry point.

Tenant scoping comes from the ``X-Tenant-ID`` header set by the gateway in front
of this service; authentication itself happens there.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Iterator, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from marketplace_sync.core.config import settings
from marketplace_sync.core.logging import get_logger, setup_logging
from marketplace_sync.sync.errors import (
    AccountAlreadyLinkedError,
    AuthError,
    IntegrationInactiveError,
    IntegrationNotFoundError,
)
from marketplace_sync.sync.factory import Runtime, SyncServices
from marketplace_sync.sync.integrations import IntegrationStatus
from marketplace_sync.sync.models import IntegrationSettings, SyncResult

# Setup logging on import
setup_logging()

logger = get_logger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Creates the shared runtime (database, HTTP client, idempotency cache) on startup
    and releases it on shutdown.
    """
    logger.info(
        "Starting Marketplace Sync API",
        extra={"version": VERSION, "environment": settings.app_env},
    )

    runtime = Runtime()
    app.state.runtime = runtime

    yield

    logger.info("Shutting down Marketplace Sync API")
    await runtime.close()


app = FastAPI(
    title="Marketplace Order Sync API",
    description="Turns marketplace orders into invoices, exactly once per order",
    version=VERSION,
    docs_url="/docs" if settings.enable_api_docs else None,
    redoc_url="/redoc" if settings.enable_api_docs else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class ConnectRequest(BaseModel):
    code: str
    state: str
    user_id: str
    company_id: Optional[str] = None


class SyncRequest(BaseModel):
    company_id: Optional[str] = None


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def get_session(runtime: Runtime = Depends(get_runtime)) -> Iterator[Session]:
    session = runtime.session()
    try:
        yield session
    finally:
        session.close()


def get_services(
    runtime: Runtime = Depends(get_runtime),
    session: Session = Depends(get_session),
) -> SyncServices:
    return runtime.services(session)


def get_tenant_id(x_tenant_id: str = Header(...)) -> str:
    return x_tenant_id


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {
        "status": "healthy",
        "version": VERSION,
        "environment": settings.app_env,
    }


@app.get("/")
async def root() -> dict[str, str]:
    return {
        "message": "Marketplace Order Sync API",
        "version": VERSION,
        "docs": "/docs" if settings.enable_api_docs else "disabled",
    }


@app.get("/api/integrations/authorize-url")
async def authorize_url(
    tenant_id: str = Depends(get_tenant_id),
    services: SyncServices = Depends(get_services),
) -> dict[str, str]:
    """URL to send the user to for granting marketplace access."""
    return {"authUrl": services.oauth.authorization_url(tenant_id)}


@app.post("/api/integrations/callback")
async def oauth_callback(
    body: ConnectRequest,
    services: SyncServices = Depends(get_services),
) -> dict[str, Any]:
    """
    Finish the OAuth flow. The tenant is taken from the ``state`` round-tripped by the marketplace.
    """
    state = services.oauth.decode_state(body.state)
    tenant_id = state.get("tenantId")
    if not tenant_id:
        raise ValueError("OAuth state carries no tenant")

    integration = await services.oauth.connect(
        tenant_id, body.user_id, body.code, company_id=body.company_id
    )
    return IntegrationStatus.from_integration(integration).model_dump(by_alias=True, mode="json")


@app.get("/api/integrations")
async def list_integrations(
    tenant_id: str = Depends(get_tenant_id),
    services: SyncServices = Depends(get_services),
) -> list[dict[str, Any]]:
    return [
        status.model_dump(by_alias=True, mode="json")
        for status in services.management.list_by_tenant(tenant_id)
    ]


@app.get("/api/integrations/{integration_id}/status")
async def integration_status(
    integration_id: str,
    tenant_id: str = Depends(get_tenant_id),
    services: SyncServices = Depends(get_services),
) -> dict[str, Any]:
    status = services.management.get_status(tenant_id, integration_id)
    return status.model_dump(by_alias=True, mode="json")


@app.post("/api/integrations/{integration_id}/sync")
async def trigger_sync(
    integration_id: str,
    body: SyncRequest,
    tenant_id: str = Depends(get_tenant_id),
    services: SyncServices = Depends(get_services),
) -> dict[str, Any]:
    """Run a sync now, with the retry ladder. Waits for the outcome."""
    result: SyncResult = await services.retry.sync_with_retry(
        integration_id, body.company_id, tenant_id
    )
    return result.model_dump(by_alias=True)


@app.get("/api/integrations/{integration_id}/settings")
async def get_settings(
    integration_id: str,
    tenant_id: str = Depends(get_tenant_id),
    services: SyncServices = Depends(get_services),
) -> dict[str, Any]:
    return services.management.get_settings_with_defaults(tenant_id, integration_id).model_dump(
        by_alias=True, mode="json"
    )


@app.put("/api/integrations/{integration_id}/settings")
async def update_settings(
    integration_id: str,
    changes: dict[str, Any],
    tenant_id: str = Depends(get_tenant_id),
    services: SyncServices = Depends(get_services),
) -> dict[str, Any]:
    updated: IntegrationSettings = services.management.update_settings(
        tenant_id, integration_id, changes
    )
    return updated.model_dump(by_alias=True, mode="json")


@app.post("/api/integrations/{integration_id}/deactivate")
async def deactivate(
    integration_id: str,
    tenant_id: str = Depends(get_tenant_id),
    services: SyncServices = Depends(get_services),
) -> dict[str, Any]:
    return services.management.deactivate(tenant_id, integration_id).model_dump(
        by_alias=True, mode="json"
    )


@app.post("/api/integrations/{integration_id}/reactivate")
async def reactivate(
    integration_id: str,
    tenant_id: str = Depends(get_tenant_id),
    services: SyncServices = Depends(get_services),
) -> dict[str, Any]:
    return services.management.reactivate(tenant_id, integration_id).model_dump(
        by_alias=True, mode="json"
    )


def _error(status_code: int, error: str, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "message": str(exc)})


@app.exception_handler(IntegrationNotFoundError)
async def not_found_handler(request: Request, exc: IntegrationNotFoundError) -> JSONResponse:
    return _error(404, "Not found", exc)


@app.exception_handler(IntegrationInactiveError)
async def inactive_handler(request: Request, exc: IntegrationInactiveError) -> JSONResponse:
    return _error(409, "Integration inactive", exc)


@app.exception_handler(AccountAlreadyLinkedError)
async def already_linked_handler(request: Request, exc: AccountAlreadyLinkedError) -> JSONResponse:
    return _error(409, "Account already linked", exc)


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    return _error(401, "Authorization failed", exc)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return _error(422, "Invalid settings", exc)


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return _error(400, "Bad request", exc)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled errors.
    """
    logger.error(
        "Unhandled exception",
        extra={
            "path": str(request.url),
            "method": request.method,
            "error": str(exc),
        },
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "marketplace_sync.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
        log_level=settings.log_level.lower(),
    )
