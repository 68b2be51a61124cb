"""GridWatch API - Main FastAPI Application.

This module provides the HTTP surface of the telemetry core.
It includes:
- Health check endpoints
- Monitoring endpoints (metrics, alerts, errors, logs)
- Prometheus scrape endpoint mounted at /metrics
- Request telemetry middleware
- Telemetry startup and shutdown in the lifespan

Usage:
    # Run with uvicorn
    uvicorn gridwatch.api.main:app --reload
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from gridwatch import __version__
from gridwatch.api.middleware import TelemetryMiddleware
from gridwatch.api.models import ErrorResponse
from gridwatch.api.routes.health import router as health_router, set_server_start_time
from gridwatch.api.routes.monitoring import router as monitoring_router
from gridwatch.core.container import TelemetryContainer, get_container
from gridwatch.core.exceptions import InitializationError
from gridwatch.monitoring.exporter import get_metrics_app

logger = structlog.get_logger(__name__)

API_TITLE = "GridWatch API"
API_DESCRIPTION = """
## Telemetry and alerting core

- **Metrics**: sliding-window statistics per recorded metric
- **Alerts**: rule evaluation with cooldowns and severity routed notifications
- **Errors**: deduplicated error reports with occurrence counts
- **Logs**: recent structured log entries

Prometheus can scrape `/metrics`.
"""


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events:
    - Startup: Configure logging, install error hooks, start periodic ticks
    - Shutdown: Stop ticks, remove error hooks
    """
    telemetry: TelemetryContainer = app.state.telemetry

    telemetry.configure_logging()
    logger.info("application_starting", version=__version__)
    set_server_start_time()

    try:
        await telemetry.start()
    except InitializationError as e:
        # Serve queries without periodic ticks
        logger.error("telemetry_start_failed", error=str(e))

    logger.info("application_started")

    yield

    logger.info("application_stopping")
    try:
        await telemetry.shutdown()
    except Exception as e:
        logger.error("telemetry_shutdown_error", error=str(e))
    logger.info("application_stopped")


def create_app(telemetry: Optional[TelemetryContainer] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        telemetry: Container to serve. Defaults to the process-wide one.

    Returns:
        Configured FastAPI application instance
    """
    telemetry = telemetry or get_container()
    settings = telemetry.settings

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_tags=[
            {
                "name": "Health",
                "description": "System health and status endpoints",
            },
            {
                "name": "Monitoring",
                "description": "Metrics, alerts, error reports and logs",
            },
        ],
    )
    app.state.telemetry = telemetry

    app.add_middleware(TelemetryMiddleware)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            error_type=type(exc).__name__,
        )

        response = ErrorResponse(
            error="internal_server_error",
            message="An unexpected error occurred",
            detail=str(exc) if settings.debug else None,
            path=request.url.path,
            timestamp=datetime.now(timezone.utc),
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=response.model_dump(mode="json"),
        )

    @app.get("/", include_in_schema=False)
    async def root() -> dict:
        """Root endpoint with API information."""
        return {
            "name": API_TITLE,
            "version": __version__,
            "docs": "/docs" if settings.is_development else None,
            "health": "/health",
            "metrics": "/metrics",
        }

    app.include_router(health_router)
    app.include_router(monitoring_router)
    app.mount("/metrics", get_metrics_app(telemetry))

    return app


app = create_app()
