"""
Core exception hierarchy for GridWatch.

The telemetry operations themselves are total and never raise for ordinary
input; these exceptions cover wiring and configuration mistakes.
"""

from typing import Any, Optional


# =============================================================================
# Base Exceptions
# =============================================================================


class GridWatchError(Exception):
    """Base exception for all GridWatch errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(GridWatchError):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, config_key: Optional[str] = None):
        self.config_key = config_key
        details = {"config_key": config_key} if config_key else None
        super().__init__(message, details)


class UnknownConditionError(ConfigurationError):
    """Raised when a rule references a condition name that is not registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"No alert condition registered as '{name}'", "condition")


# =============================================================================
# Initialization Errors
# =============================================================================


class InitializationError(GridWatchError):
    """Raised when a component fails to initialize."""

    def __init__(self, component: str, message: str, details: Optional[dict[str, Any]] = None):
        self.component = component
        super().__init__(f"[{component}] {message}", details)
