"""Application entrypoint for the registration server."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api.routes import router as api_router
from .config import AppConfig, get_settings
from .errors import KubecraftError
from .events.publisher import build_audit_publisher
from .provisioning.authorization import AuthorizationListMaintainer
from .provisioning.tenants import TenantProvisioner
from .services.locks import build_list_lock
from .substrate.client import SubstrateClient

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: AppConfig = app.state.settings
    LOGGER.info("Starting registration server", extra={"service": settings.service_name})
    yield
    LOGGER.info("Shutting down registration server")
    substrate: Optional[SubstrateClient] = getattr(app.state, "substrate", None)
    if substrate is not None:
        substrate.close()


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": "error", "message": message})


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(KubecraftError)
    async def _kubecraft_error(request: Request, exc: KubecraftError) -> JSONResponse:
        if exc.status_code >= 500:
            LOGGER.error("Request failed", extra={"path": request.url.path, "error": exc.message, "code": exc.code})
        return _error_response(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def _request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        if any(error.get("type") == "json_invalid" for error in errors):
            return _error_response(400, "Invalid JSON format")
        details = "; ".join(
            f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}" for error in errors
        )
        return _error_response(400, f"Invalid request: {details}")

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error_response(exc.status_code, str(exc.detail))


def create_app(
    settings: Optional[AppConfig] = None,
    provisioner: Optional[TenantProvisioner] = None,
    tenant_substrate_factory=None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = settings or get_settings()
    logging.basicConfig(level=settings.logging.level, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    audit_publisher = build_audit_publisher(settings.rabbitmq)
    substrate: Optional[SubstrateClient] = None
    if provisioner is None:
        substrate = SubstrateClient.for_service(settings)
        authorization_list = AuthorizationListMaintainer(substrate, settings, lock=build_list_lock(settings.redis))
        provisioner = TenantProvisioner(substrate, settings, authorization_list, audit_publisher)
    if tenant_substrate_factory is None:
        def tenant_substrate_factory(tenant: str, token: str) -> SubstrateClient:
            return SubstrateClient.for_tenant(settings, tenant, token)

    app = FastAPI(
        title="Kubecraft Registration Server",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.include_router(api_router, prefix=settings.api_prefix)
    register_exception_handlers(app)

    app.state.settings = settings
    app.state.substrate = substrate
    app.state.provisioner = provisioner
    app.state.audit_publisher = audit_publisher
    app.state.tenant_substrate_factory = tenant_substrate_factory

    return app


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    uvicorn.run("kubecraft.main:create_app", factory=True, host="0.0.0.0", port=8080, reload=False)
