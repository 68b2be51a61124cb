"""API route modules."""

from gridwatch.api.routes.health import router as health_router
from gridwatch.api.routes.monitoring import router as monitoring_router

__all__ = [
    "health_router",
    "monitoring_router",
]
