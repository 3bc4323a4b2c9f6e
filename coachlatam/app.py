"""FastAPI application factory — entry point for the billing and coaching API."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from coachlatam.config import get_settings
from coachlatam.errors import AppError, ExternalError
from coachlatam.routers import admin, clients, coupons, subscription, webhooks
from coachlatam.utils import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    settings = get_settings()
    setup_logging(settings.log_level, verbose=settings.debug)

    # Auto-create tables for SQLite (dev mode); PostgreSQL uses Alembic
    from coachlatam.db.session import dispose_engines, engine
    from coachlatam.models import Base

    if settings.database_url.startswith("sqlite"):
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    if not settings.paypal_configured:
        logger.warning("PayPal credentials not configured, billing endpoints will fail")

    # Initialize shared httpx client for connection pooling
    from coachlatam.http_client import close_http_client, init_http_client
    await init_http_client()

    yield

    await close_http_client()
    await dispose_engines()


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
    )
    app.state.settings = settings

    # --- Error handlers ---
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            {"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
            status_code=400,
        )

    @app.exception_handler(Exception)
    async def server_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        error = ExternalError("Internal server error")
        return JSONResponse(error.to_dict(), status_code=error.status_code)

    # --- Health ---
    @app.get("/health", tags=["health"])
    async def health():
        return {"status": "ok"}

    # --- Routers ---
    app.include_router(subscription.router)
    app.include_router(coupons.router)
    app.include_router(webhooks.router)
    app.include_router(admin.router)
    app.include_router(clients.router)

    return app


app = create_app()
