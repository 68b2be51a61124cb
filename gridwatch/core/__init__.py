"""
Core infrastructure modules for GridWatch.

- exceptions: Standardized exception hierarchy
- container: Wiring of the telemetry components
  (import from gridwatch.core.container; it depends on gridwatch.monitoring)
"""

from gridwatch.core.exceptions import (
    GridWatchError,
    ConfigurationError,
    UnknownConditionError,
    InitializationError,
)

__all__ = [
    "GridWatchError",
    "ConfigurationError",
    "UnknownConditionError",
    "InitializationError",
]
