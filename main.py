"""
main.py
-------
FastAPI application factory and entry point.

Application lifecycle:
  1. App is created by create_application(); settings can be injected.
  2. lifespan context manager starts the ServiceContainer (store tables,
     tenant registry hydration, notification dispatcher) and stops it on
     shutdown.
  3. The tenant gate middleware and routers are registered.
  4. Exception handlers render domain errors as
     {"detail", "code", "errors"} and normalise unexpected ones.

Run with:
    uvicorn main:app --reload              # development
    uvicorn main:app                       # production (single worker: one tenant cache per process)
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from app.api.routes import (
    admin_email,
    admin_tenants,
    alumni,
    education_tenant,
    tenant_requests,
    tenants,
)
from app.core.config import Settings, get_settings
from app.core.exceptions import AuthorizationError, ControlPlaneError, error_body
from app.core.logging import configure_logging, get_logger
from app.services.container import ServiceContainer
from app.services.tenant_resolver import TenantResolverMiddleware

logger = get_logger(__name__)


def create_application(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        """
        Startup:
          - Configure structured logging
          - Build and start the service container

        Shutdown:
          - Drain queued notifications, dispose the DB engine
        """
        configure_logging(settings.DEBUG)
        logger.info(
            "Starting up",
            app=settings.APP_NAME,
            env=settings.APP_ENV,
            debug=settings.DEBUG,
        )
        services = ServiceContainer(settings)
        await services.start()
        app.state.services = services
        yield
        logger.info("Shutting down")
        await services.stop()

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Multi-tenant control plane: tenant registry and routing, "
            "onboarding lifecycle, alumni invitations and notification delivery."
        ),
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Middleware ───────────────────────────────────────────────────────────
    # Added last runs first: CORS wraps the tenant gate
    app.add_middleware(TenantResolverMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Routers ───────────────────────────────────────────────────────────────
    app.include_router(tenants.router)
    app.include_router(admin_tenants.router)
    app.include_router(tenant_requests.router)
    app.include_router(education_tenant.router)
    app.include_router(alumni.router)
    app.include_router(admin_email.router)

    app.mount(
        "/uploads",
        StaticFiles(directory=settings.UPLOAD_DIR, check_dir=False),
        name="uploads",
    )

    # ── Exception Handlers ────────────────────────────────────────────────────

    @app.exception_handler(ControlPlaneError)
    async def control_plane_exception_handler(
        request: Request, exc: ControlPlaneError
    ) -> JSONResponse:
        if isinstance(exc, AuthorizationError):
            logger.warning(
                "Authorization failure",
                path=request.url.path,
                method=request.method,
                error=exc.message,
            )
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
        return JSONResponse(status_code=exc.status_code, content=error_body(exc), headers=headers)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error", "code": "internal_error", "errors": []},
        )

    # ── Health Check ──────────────────────────────────────────────────────────

    @app.get("/health", tags=["Health"], summary="Service health check")
    async def health() -> dict:
        return {"status": "ok", "app": settings.APP_NAME, "env": settings.APP_ENV}

    return app


app = create_application()
