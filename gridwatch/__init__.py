"""
GridWatch - Telemetry and alerting core.

In-process metrics, caches, error tracking, alerting and log aggregation,
with an optional FastAPI surface for health checks and queries.
"""

__version__ = "0.1.0"
