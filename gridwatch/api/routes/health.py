"""Health check endpoints for the GridWatch API.

Derives service health from the telemetry core itself: process memory,
the number of unresolved alerts and recorded operation performance.
"""

from datetime import datetime, timezone
import time
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Response, status

from gridwatch import __version__
from gridwatch.api.dependencies import get_telemetry
from gridwatch.api.models import CheckResult, HealthCheckResponse
from gridwatch.core.container import TelemetryContainer
from gridwatch.monitoring.sampler import MetricNames, calculate_error_rate, get_memory_usage

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Health"])

# Health check thresholds
MEMORY_USAGE_PERCENT = 90.0
MAX_RESPONSE_TIME_MS = 5000.0
MAX_ERROR_RATE = 0.1
MAX_ACTIVE_ALERTS = 10

# Track server start time for uptime calculation
_server_start_time: Optional[float] = None


def set_server_start_time() -> None:
    """Set the server start time. Called on application startup."""
    global _server_start_time
    _server_start_time = time.time()


def get_uptime_seconds() -> Optional[float]:
    """Get server uptime in seconds."""
    if _server_start_time is None:
        return None
    return time.time() - _server_start_time


def check_operations_health(telemetry: TelemetryContainer) -> CheckResult:
    """Warn when any ``*.error`` metric has recorded samples."""
    failing = [
        name
        for name, stats in telemetry.metric_store.get_all().items()
        if "error" in name and stats is not None and stats.count > 0
    ]
    if failing:
        return CheckResult(
            status="warn",
            message=f"Operation errors detected: {', '.join(sorted(failing))}",
            details={"error_metrics": sorted(failing)},
        )
    return CheckResult(status="pass", message="No failed operations recorded")


def check_memory_health() -> CheckResult:
    """Check process memory against MEMORY_USAGE_PERCENT."""
    try:
        usage = get_memory_usage()
    except Exception as e:
        logger.error("memory_health_check_failed", error=str(e))
        return CheckResult(
            status="fail",
            message="Memory health check failed",
            details={"error": str(e)[:100]},
        )

    percent = usage["percent"]
    details = {"rss": usage["rss"], "vms": usage["vms"], "percentage": percent}

    if percent > MEMORY_USAGE_PERCENT:
        return CheckResult(
            status="fail", message=f"High memory usage: {percent:.1f}%", details=details
        )
    if percent > MEMORY_USAGE_PERCENT * 0.8:
        return CheckResult(
            status="warn", message=f"Elevated memory usage: {percent:.1f}%", details=details
        )
    return CheckResult(
        status="pass",
        message=f"Memory usage normal: {percent:.1f}%",
        details={"percentage": percent},
    )


def check_alerts_health(telemetry: TelemetryContainer) -> CheckResult:
    """Check the number of unresolved alerts against MAX_ACTIVE_ALERTS."""
    stats = telemetry.alert_manager.get_alert_stats()
    unresolved = stats["unresolved"]

    if unresolved > MAX_ACTIVE_ALERTS:
        return CheckResult(
            status="fail", message=f"Too many active alerts: {unresolved}", details=stats
        )
    if unresolved > MAX_ACTIVE_ALERTS * 0.5:
        return CheckResult(
            status="warn",
            message=f"High number of active alerts: {unresolved}",
            details=stats,
        )
    return CheckResult(
        status="pass",
        message=f"Alert levels normal: {unresolved} unresolved",
        details=stats,
    )


def check_performance_health(telemetry: TelemetryContainer) -> CheckResult:
    """Slow responses warn; an error rate above MAX_ERROR_RATE fails."""
    store = telemetry.metric_store
    response_stats = store.get_stats(MetricNames.API_RESPONSE_TIME)

    if response_stats is not None and response_stats.average > MAX_RESPONSE_TIME_MS:
        return CheckResult(
            status="warn",
            message=f"Slow API responses: {response_stats.average:.0f}ms average",
            details=response_stats.to_dict(),
        )

    error_rate = calculate_error_rate(store)
    if error_rate > MAX_ERROR_RATE:
        return CheckResult(
            status="fail",
            message=f"High error rate: {error_rate * 100:.1f}%",
            details={"error_rate": error_rate},
        )

    return CheckResult(
        status="pass",
        message="Performance metrics within acceptable ranges",
        details={
            "avg_response_time": response_stats.average if response_stats else 0,
            "error_rate": error_rate * 100,
        },
    )


@router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health Check",
    description="Check the health of the service from its own telemetry.",
    responses={503: {"model": HealthCheckResponse, "description": "Service unhealthy"}},
)
async def health_check(
    response: Response,
    telemetry: TelemetryContainer = Depends(get_telemetry),
) -> HealthCheckResponse:
    """
    Run every health check and fold them into one status.

    Any failing check makes the service unhealthy (503); any warning makes
    it degraded.
    """
    started = time.perf_counter()

    checks = {
        "operations": check_operations_health(telemetry),
        "memory": check_memory_health(),
        "alerts": check_alerts_health(telemetry),
        "performance": check_performance_health(telemetry),
    }

    statuses = [c.status for c in checks.values()]
    if "fail" in statuses:
        overall_status = "unhealthy"
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif "warn" in statuses:
        overall_status = "degraded"
    else:
        overall_status = "healthy"

    logger.info(
        "health_check_completed",
        status=overall_status,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
        checks={name: c.status for name, c in checks.items()},
    )

    return HealthCheckResponse(
        status=overall_status,
        version=__version__,
        timestamp=datetime.now(timezone.utc),
        checks=checks,
        uptime_seconds=get_uptime_seconds(),
    )


@router.get(
    "/health/live",
    summary="Liveness Check",
    description="Simple liveness check for container orchestration.",
)
async def liveness() -> dict:
    """
    Simple liveness check.

    Returns 200 if the service is alive.
    """
    return {
        "status": "alive",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
