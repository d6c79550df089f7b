"""
main.py
-------
FastAPI application factory and entry point.

Application lifecycle:
  1. App is created by create_application().
  2. lifespan context manager runs on startup / shutdown.
  3. Routers are registered with their URL prefixes.
  4. Exception handlers turn ScopeErrors into typed JSON errors and
     normalise unexpected ones.

Run with:
    uvicorn main:app --reload              # development
    uvicorn main:app --workers 4           # production (no --reload)
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tokenscope.api.routes import batches, progress, scope, tenants, tokens
from tokenscope.core.config import settings
from tokenscope.core.exceptions import ScopeError
from tokenscope.core.logging import configure_logging, get_logger, start_request_scope
from tokenscope.db.session import engine
from tokenscope.dependencies import status_for

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Startup / shutdown lifecycle hook.

    Startup:
      - Configure structured logging

    Shutdown:
      - Dispose the async engine (graceful connection pool drain)
    """
    configure_logging()
    logger.info(
        "Starting up",
        app=settings.APP_NAME,
        env=settings.APP_ENV,
        debug=settings.DEBUG,
        site_admins=len(settings.SITE_ADMIN_IDS),
    )
    yield
    logger.info("Shutting down, disposing DB engine")
    await engine.dispose()


def create_application() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Tenant-scoped bearer token registry: issuance, revocation and "
            "allow-set resolution over a category hierarchy."
        ),
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── CORS ─────────────────────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Request log scope ────────────────────────────────────────────────────

    @app.middleware("http")
    async def request_log_scope(request: Request, call_next):
        start_request_scope(method=request.method, path=request.url.path)
        return await call_next(request)

    # ── Routers ───────────────────────────────────────────────────────────────
    app.include_router(tenants.router)
    app.include_router(tokens.router)
    app.include_router(scope.router)
    app.include_router(batches.router)
    app.include_router(progress.router)

    # ── Global Exception Handlers ─────────────────────────────────────────────

    @app.exception_handler(ScopeError)
    async def scope_error_handler(request: Request, exc: ScopeError) -> JSONResponse:
        logger.info(
            "Request rejected",
            path=request.url.path,
            code=exc.code,
        )
        return JSONResponse(
            status_code=status_for(exc),
            content={"detail": {"code": exc.code, "message": exc.message}},
        )

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
            content={"detail": "Internal server error"},
        )

    # ── Health Check ──────────────────────────────────────────────────────────

    @app.get("/health", tags=["Health"], summary="Service health check")
    async def health() -> dict:
        return {"status": "ok", "app": settings.APP_NAME, "env": settings.APP_ENV}

    return app


app = create_application()
