"""Request telemetry middleware for FastAPI.

Times every API request into the ``api.response.time`` metric and logs it.
Server errors are also counted under ``api.request.error`` so they show up
in the error rate used by health checks and alert rules.

Usage:
    from gridwatch.api.middleware import TelemetryMiddleware

    app = FastAPI()
    app.add_middleware(TelemetryMiddleware)

Health, docs, and metrics endpoints are not recorded.
"""

import time

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from gridwatch.api.dependencies import get_telemetry
from gridwatch.monitoring.error_tracker import ErrorCategory, ErrorSeverity
from gridwatch.monitoring.log_aggregator import log_request
from gridwatch.monitoring.sampler import MetricNames

logger = structlog.get_logger(__name__)

REQUEST_ERROR_METRIC = "api.request.error"


class TelemetryMiddleware(BaseHTTPMiddleware):
    """
    Middleware that feeds request timings into the telemetry core.

    Features:
    - Records duration in milliseconds for every non-excluded request
    - Counts 5xx responses and unhandled exceptions as request errors
    - Tracks unhandled exceptions in the error tracker before re-raising
    """

    # Endpoints excluded from request telemetry (health checks and docs)
    EXCLUDED_PATHS = {
        "/",
        "/health",
        "/health/live",
        "/docs",
        "/redoc",
        "/openapi.json",
        "/metrics",
        "/metrics/",
    }

    async def dispatch(self, request: Request, call_next):
        """Time the request and record the outcome."""
        if request.url.path in self.EXCLUDED_PATHS:
            return await call_next(request)

        telemetry = get_telemetry(request)
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            telemetry.metric_store.record(MetricNames.API_RESPONSE_TIME, duration_ms)
            telemetry.metric_store.record(REQUEST_ERROR_METRIC, duration_ms)
            telemetry.error_tracker.track_error(
                e,
                severity=ErrorSeverity.HIGH,
                category=ErrorCategory.BUSINESS_LOGIC,
                context={"method": request.method, "path": request.url.path},
            )
            log_request(request.method, request.url.path, 500, duration_ms)
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        telemetry.metric_store.record(MetricNames.API_RESPONSE_TIME, duration_ms)
        if response.status_code >= 500:
            telemetry.metric_store.record(REQUEST_ERROR_METRIC, duration_ms)

        log_request(request.method, request.url.path, response.status_code, duration_ms)
        return response
