"""Pydantic models for API requests and responses.

This module defines the request/response schemas of the monitoring API.
"""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Health Models
# =============================================================================


class CheckResult(BaseModel):
    """Outcome of a single health check."""

    status: Literal["pass", "warn", "fail"] = Field(..., description="Check outcome")
    message: Optional[str] = Field(None, description="Human readable summary")
    details: Optional[dict[str, Any]] = Field(None, description="Supporting figures")


class HealthCheckResponse(BaseModel):
    """Response model for health check endpoint."""

    status: Literal["healthy", "degraded", "unhealthy"] = Field(
        ..., description="Overall system status"
    )
    version: str = Field(..., description="API version")
    timestamp: datetime = Field(..., description="Check timestamp")
    checks: dict[str, CheckResult] = Field(
        default_factory=dict,
        description="Individual check results",
    )
    uptime_seconds: Optional[float] = Field(None, description="Server uptime in seconds")


# =============================================================================
# Monitoring Models
# =============================================================================


class AcknowledgeRequest(BaseModel):
    """Request model for acknowledging an alert."""

    acknowledged_by: Optional[str] = Field(
        None,
        max_length=255,
        description="Who acknowledged the alert",
        json_schema_extra={"example": "ops-oncall"},
    )


class ActionResult(BaseModel):
    """Result of an idempotent state change."""

    id: str = Field(..., description="Alert id or error fingerprint")
    changed: bool = Field(..., description="False if already in that state or unknown")


class MetricsResponse(BaseModel):
    """Snapshot of every telemetry component."""

    timestamp: datetime
    performance: dict[str, Optional[dict[str, float]]]
    alerts: dict[str, Any]
    errors: dict[str, Any]
    cache: dict[str, dict[str, float]]
    logs: dict[str, Any]
    system: dict[str, Any]


# =============================================================================
# Error Models
# =============================================================================


class ErrorResponse(BaseModel):
    """Standard error response model."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Human-readable error message")
    detail: Optional[str] = Field(None, description="Additional error details")
    path: Optional[str] = Field(None, description="Request path that caused the error")
    timestamp: datetime = Field(..., description="Error timestamp")
