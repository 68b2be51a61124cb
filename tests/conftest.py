"""
Pytest Configuration and Shared Fixtures.

This module provides common fixtures for all tests:

- clock: Manually advanced time source for TTL and cooldown tests
- settings: Settings with hooks, default rules and channels switched off
- container: Fresh TelemetryContainer on the fake clock
- uncached_logging: configure_logging() without logger caching
"""

import pytest
import structlog

from gridwatch.config.settings import Settings
from gridwatch.core.container import TelemetryContainer, reset_container


class FakeClock:
    """Callable time source returning epoch seconds that only moves on advance()."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    """Return a fake clock starting at a fixed epoch."""
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    """Return settings suitable for isolated tests."""
    return Settings(
        _env_file=None,
        app_env="development",
        install_global_hooks=False,
        load_default_rules=False,
        slack_webhook_url=None,
        smtp_host=None,
    )


@pytest.fixture
def container(settings, clock) -> TelemetryContainer:
    """Return a fresh container wired to the fake clock."""
    return TelemetryContainer(settings, clock=clock)


@pytest.fixture(autouse=True)
def _reset_global_state():
    """Forget the process-wide container and logging config between tests."""
    yield
    reset_container()
    structlog.reset_defaults()


@pytest.fixture
def uncached_logging(monkeypatch):
    """
    Keep configure_logging() from caching loggers.

    Cached loggers would keep the JSON pipeline after the test and hide
    later events from structlog.testing.capture_logs.
    """
    original = structlog.configure

    def configure(**kwargs):
        kwargs["cache_logger_on_first_use"] = False
        original(**kwargs)

    monkeypatch.setattr(structlog, "configure", configure)
