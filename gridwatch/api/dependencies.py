"""FastAPI dependency injection providers.

Route handlers receive the telemetry container through Depends(get_telemetry).
create_app() binds a container to app.state; handlers fall back to the
process-wide container when none is bound.
"""

from fastapi import Request

from gridwatch.core.container import TelemetryContainer, get_container


def get_telemetry(request: Request) -> TelemetryContainer:
    """
    Get the telemetry container for this request.

    Returns:
        The container bound to the app, or the process-wide one.
    """
    container = getattr(request.app.state, "telemetry", None)
    if container is None:
        container = get_container()
    return container
