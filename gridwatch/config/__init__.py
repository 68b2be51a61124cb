"""
Configuration Management.

Centralized configuration using Pydantic Settings.

Configuration sources (in order of precedence):
1. Environment variables (GRIDWATCH_ prefix)
2. .env file
3. Default values

Example:
    from gridwatch.config import get_settings

    settings = get_settings()
    window = settings.metric_window_size
"""

from gridwatch.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
