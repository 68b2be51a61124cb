"""Middleware package for the GridWatch API.

Provides custom middleware components for the FastAPI application.
"""

from gridwatch.api.middleware.telemetry import TelemetryMiddleware

__all__ = ["TelemetryMiddleware"]
