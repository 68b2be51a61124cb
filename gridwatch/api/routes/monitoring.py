"""Monitoring endpoints for the GridWatch API.

Read access to the telemetry core (metrics, alerts, errors, logs) and the
acknowledge/resolve operations on alerts and errors.
"""

from datetime import datetime, timezone
import os
import platform
from typing import Any, Literal, Optional

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from gridwatch.api.dependencies import get_telemetry
from gridwatch.api.models import AcknowledgeRequest, ActionResult, MetricsResponse
from gridwatch.api.routes.health import get_uptime_seconds
from gridwatch.core.container import TelemetryContainer
from gridwatch.monitoring.alerts import AlertSeverity, AlertType
from gridwatch.monitoring.error_tracker import ErrorCategory, ErrorSeverity
from gridwatch.monitoring.exporter import build_registry
from gridwatch.monitoring.log_aggregator import LogLevel
from gridwatch.monitoring.sampler import get_memory_usage

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/monitoring", tags=["Monitoring"])


def _system_info() -> dict[str, Any]:
    try:
        memory: Optional[dict[str, float]] = get_memory_usage()
    except Exception as e:
        logger.warning("memory_usage_unavailable", error=str(e))
        memory = None

    return {
        "uptime": get_uptime_seconds(),
        "python_version": platform.python_version(),
        "platform": platform.system().lower(),
        "arch": platform.machine(),
        "pid": os.getpid(),
        "memory": memory,
    }


# =============================================================================
# Metrics
# =============================================================================


@router.get(
    "/metrics",
    response_model=MetricsResponse,
    summary="Telemetry snapshot",
    description="All telemetry as JSON, or in Prometheus text format with ?format=prometheus.",
    responses={200: {"content": {CONTENT_TYPE_LATEST: {}}}},
)
async def get_metrics(
    format: Literal["json", "prometheus"] = Query("json", description="Output format"),
    telemetry: TelemetryContainer = Depends(get_telemetry),
):
    """
    Gather performance, alert, error, cache and log statistics.

    **Parameters:**
    - **format**: `json` (default) or `prometheus`
    """
    if format == "prometheus":
        return Response(
            content=generate_latest(build_registry(telemetry)),
            media_type=CONTENT_TYPE_LATEST,
        )

    performance = {
        name: stats.to_dict() if stats else None
        for name, stats in telemetry.metric_store.get_all().items()
    }

    return MetricsResponse(
        timestamp=datetime.now(timezone.utc),
        performance=performance,
        alerts=telemetry.alert_manager.get_alert_stats(),
        errors=telemetry.error_tracker.get_error_stats(),
        cache=telemetry.cache_stats(),
        logs=telemetry.log_aggregator.get_log_stats(),
        system=_system_info(),
    )


# =============================================================================
# Alerts
# =============================================================================


@router.get(
    "/alerts",
    summary="List alerts",
    description="Alerts held in the buffer, newest first.",
)
async def list_alerts(
    type: Optional[AlertType] = Query(None, description="Filter by alert type"),
    severity: Optional[AlertSeverity] = Query(None, description="Filter by severity"),
    resolved: Optional[bool] = Query(None, description="Filter by resolved state"),
    acknowledged: Optional[bool] = Query(None, description="Filter by acknowledged state"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum alerts returned"),
    telemetry: TelemetryContainer = Depends(get_telemetry),
) -> list[dict[str, Any]]:
    alerts = telemetry.alert_manager.get_alerts(
        type=type,
        severity=severity,
        resolved=resolved,
        acknowledged=acknowledged,
        limit=limit,
    )
    return [alert.to_dict() for alert in alerts]


@router.get(
    "/alerts/stats",
    summary="Alert statistics",
    description="Alert totals by type and severity plus unresolved and unacknowledged counts.",
)
async def alert_stats(
    telemetry: TelemetryContainer = Depends(get_telemetry),
) -> dict[str, Any]:
    return telemetry.alert_manager.get_alert_stats()


@router.post(
    "/alerts/{alert_id}/acknowledge",
    response_model=ActionResult,
    summary="Acknowledge an alert",
    responses={404: {"description": "Alert not found"}},
)
async def acknowledge_alert(
    alert_id: str,
    request: Optional[AcknowledgeRequest] = Body(None),
    telemetry: TelemetryContainer = Depends(get_telemetry),
) -> ActionResult:
    """
    Acknowledge an alert.

    Acknowledging twice is not an error; the second call reports changed=false.
    """
    manager = telemetry.alert_manager
    if manager.get_alert(alert_id) is None:
        raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")

    acknowledged_by = request.acknowledged_by if request else None
    changed = manager.acknowledge_alert(alert_id, acknowledged_by=acknowledged_by)
    return ActionResult(id=alert_id, changed=changed)


@router.post(
    "/alerts/{alert_id}/resolve",
    response_model=ActionResult,
    summary="Resolve an alert",
    responses={404: {"description": "Alert not found"}},
)
async def resolve_alert(
    alert_id: str,
    telemetry: TelemetryContainer = Depends(get_telemetry),
) -> ActionResult:
    manager = telemetry.alert_manager
    if manager.get_alert(alert_id) is None:
        raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")

    return ActionResult(id=alert_id, changed=manager.resolve_alert(alert_id))


# =============================================================================
# Errors
# =============================================================================


@router.get(
    "/errors",
    summary="List error reports",
    description="Deduplicated error reports with occurrence counts.",
)
async def list_errors(
    severity: Optional[ErrorSeverity] = Query(None, description="Filter by severity"),
    category: Optional[ErrorCategory] = Query(None, description="Filter by category"),
    resolved: Optional[bool] = Query(None, description="Filter by resolved state"),
    telemetry: TelemetryContainer = Depends(get_telemetry),
) -> dict[str, Any]:
    tracker = telemetry.error_tracker
    reports = tracker.get_all_errors()

    if severity is not None:
        reports = [r for r in reports if r.severity == severity]
    if category is not None:
        reports = [r for r in reports if r.category == category]
    if resolved is not None:
        reports = [r for r in reports if r.resolved == resolved]

    reports.sort(key=lambda r: r.last_seen, reverse=True)
    return {
        "stats": tracker.get_error_stats(),
        "errors": [r.to_dict() for r in reports],
    }


@router.post(
    "/errors/{error_id}/resolve",
    response_model=ActionResult,
    summary="Resolve an error report",
    responses={404: {"description": "Error report not found"}},
)
async def resolve_error(
    error_id: str,
    telemetry: TelemetryContainer = Depends(get_telemetry),
) -> ActionResult:
    """Resolve an error report by its ``id`` (``error_<ms>_<hex>``)."""
    tracker = telemetry.error_tracker
    report = tracker.get_error_by_id(error_id)
    if report is None:
        raise HTTPException(status_code=404, detail=f"Error report {error_id} not found")

    was_resolved = report.resolved
    tracker.mark_error_resolved(report.fingerprint)
    return ActionResult(id=error_id, changed=not was_resolved)


# =============================================================================
# Logs
# =============================================================================


@router.get(
    "/logs",
    summary="Recent logs",
    description="Captured log entries, newest first.",
)
async def list_logs(
    level: Optional[LogLevel] = Query(None, description="Minimum severity to include"),
    since: Optional[float] = Query(None, description="Epoch seconds lower bound"),
    until: Optional[float] = Query(None, description="Epoch seconds upper bound"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum entries returned"),
    telemetry: TelemetryContainer = Depends(get_telemetry),
) -> dict[str, Any]:
    aggregator = telemetry.log_aggregator
    entries = aggregator.get_aggregated_logs(level=level, since=since, until=until, limit=limit)
    return {
        "stats": aggregator.get_log_stats(),
        "logs": [entry.to_dict() for entry in entries],
    }
