"""
Telemetry Settings.

Centralized configuration using Pydantic Settings with environment variable loading.
Every value has a sensible default so the core can be embedded without any
environment set up; override with GRIDWATCH_* variables or a .env file.

Production Mode:
    When app_env="production", additional validations apply:
    - debug must be False
    - sampling and evaluation intervals must be positive
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Telemetry core settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="GRIDWATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Application Settings
    # -------------------------------------------------------------------------
    app_env: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment",
    )
    debug: bool = Field(
        default=True,
        description="Enable debug mode",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "console"] = Field(
        default="json",
        description="Renderer for emitted log lines",
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="Host the HTTP API binds to",
    )
    api_port: int = Field(
        default=8000,
        description="Port the HTTP API binds to",
    )

    # -------------------------------------------------------------------------
    # Metrics
    # -------------------------------------------------------------------------
    metric_window_size: int = Field(
        default=1000,
        ge=1,
        description="Samples kept per metric (sliding window)",
    )
    memory_sample_interval_seconds: float = Field(
        default=30.0,
        description="Interval between process memory samples",
    )

    # -------------------------------------------------------------------------
    # Caches
    # -------------------------------------------------------------------------
    api_cache_ttl_seconds: float = Field(
        default=300.0,
        description="Default TTL for cached API responses (5 minutes)",
    )
    query_cache_ttl_seconds: float = Field(
        default=600.0,
        description="Default TTL for cached query results (10 minutes)",
    )
    object_cache_ttl_seconds: float = Field(
        default=300.0,
        description="Default TTL for the generic object cache",
    )
    bypass_cache: bool = Field(
        default=False,
        description="Skip cache reads in development",
    )

    # -------------------------------------------------------------------------
    # Error tracking, alerting and logs
    # -------------------------------------------------------------------------
    max_errors: int = Field(default=1000, ge=1, description="Error reports kept")
    max_alerts: int = Field(default=1000, ge=1, description="Alerts kept")
    log_buffer_size: int = Field(
        default=1000,
        ge=1,
        description="Log entries kept by the in-memory aggregator",
    )
    alert_evaluation_interval_seconds: float = Field(
        default=60.0,
        description="Interval between alert rule evaluations",
    )
    load_default_rules: bool = Field(
        default=True,
        description="Register the built-in alert rule set on startup",
    )
    install_global_hooks: bool = Field(
        default=True,
        description="Route uncaught exceptions into the error tracker",
    )

    # -------------------------------------------------------------------------
    # Notification channels
    # -------------------------------------------------------------------------
    slack_webhook_url: SecretStr | None = Field(
        default=None,
        description="Chat webhook; enables the chat channel when set",
    )
    smtp_host: str | None = Field(
        default=None,
        description="SMTP host; enables the email channel when set",
    )
    alert_email_recipients: list[str] = Field(
        default_factory=list,
        description="Recipients for critical alert emails",
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.app_env == "development"

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Validate that production settings are sane."""
        if self.app_env == "production":
            errors = []

            if self.debug:
                errors.append("debug must be False in production")

            if self.memory_sample_interval_seconds <= 0:
                errors.append("memory_sample_interval_seconds must be positive")

            if self.alert_evaluation_interval_seconds <= 0:
                errors.append("alert_evaluation_interval_seconds must be positive")

            if errors:
                raise ValueError(
                    f"Production configuration errors: {'; '.join(errors)}"
                )

        return self


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload settings if needed.
    """
    return Settings()
