"""FastAPI application entry point and lifecycle management."""

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from sqlalchemy import text

from vip_gate.logging_config import configure_logging, get_logger
from vip_gate.middleware import ContextMiddleware, RequestLoggingMiddleware

# Initialize logger
logger = get_logger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager.

    Startup: load config, create the ledger schema, seed settings, wire the
    engine and start the sweep timer. Shutdown reverses it.
    """
    from vip_gate.config import get_config
    from vip_gate.repositories.database import get_database
    from vip_gate.repositories.ledger import get_ledger
    from vip_gate.services.access_gate import get_access_gate
    from vip_gate.services.payment_gateway import get_payment_gateway
    from vip_gate.services.subscription_engine import get_subscription_engine
    from vip_gate.services.sweep_scheduler import SweepScheduler

    logger.info("vip_gate_starting", version=VERSION)

    config = get_config()
    database = get_database()
    database.create_schema()

    ledger = get_ledger()
    if config.bootstrap_settings is not None:
        ledger.settings.seed_if_absent(config.bootstrap_settings)
    if ledger.settings.get() is None:
        logger.warning("settings_not_configured", message="Run /setup as an admin to configure")

    engine = get_subscription_engine()
    scheduler = None
    if config.engine.sweep_enabled:
        scheduler = SweepScheduler(
            engine,
            interval_seconds=config.engine.sweep_interval_minutes * 60,
        )
        scheduler.start()
    app.state.sweep_scheduler = scheduler

    try:
        logger.info("vip_gate_started", status="ready", sweep_enabled=scheduler is not None)
        yield
    finally:
        logger.info("vip_gate_shutting_down")
        if scheduler is not None:
            scheduler.stop()
        get_payment_gateway().close()
        get_access_gate().close()
        database.dispose()
        logger.info("vip_gate_stopped")


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    log_level = os.getenv("LOG_LEVEL", "INFO")
    json_format = os.getenv("LOG_FORMAT", "json").lower() == "json"
    configure_logging(log_level=log_level, json_format=json_format)

    app = FastAPI(
        title="VIP Gate",
        description="Payment-gated membership for a restricted Telegram group",
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    include_request_details = os.getenv("LOG_REQUEST_DETAILS", "true").lower() == "true"
    app.add_middleware(RequestLoggingMiddleware, include_request_details=include_request_details)
    app.add_middleware(ContextMiddleware)

    # Register routers
    from vip_gate.api.control import router as control_router
    from vip_gate.api.telegram import router as telegram_router
    from vip_gate.api.webhooks import router as webhook_router

    app.include_router(webhook_router)
    app.include_router(telegram_router)
    app.include_router(control_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Liveness endpoint."""
        logger.debug("root_endpoint_called")
        return {
            "service": "vip-gate",
            "status": "running",
            "version": VERSION,
        }

    @app.get("/health")
    def health() -> JSONResponse:
        """Ledger connectivity and configuration state."""
        from vip_gate.repositories.database import get_database
        from vip_gate.repositories.ledger import get_ledger

        try:
            with get_database().engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            settings_status = "configured" if get_ledger().settings.get() else "not_configured"
        except Exception as e:
            logger.warning("health_check_failed", error=str(e))
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "database": "unreachable"},
            )

        return JSONResponse(
            content={"status": "healthy", "database": "ok", "settings": settings_status},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            },
        )

    logger.info("app_created", endpoints=len(app.routes))
    return app


# Create app instance
app = create_app()
