"""
GridWatch FastAPI Application.

This module contains the REST API over the telemetry core:

- main: FastAPI application factory and configuration
- routes/: API endpoint definitions organized by domain
- middleware/: request telemetry
- models: Pydantic request/response models
- dependencies: FastAPI dependency injection providers

API Structure:
- /health - Health and liveness checks
- /monitoring - Metrics, alerts, error reports and logs
- /metrics - Prometheus scrape endpoint

Example:
    from gridwatch.api.main import create_app

    app = create_app()
"""
