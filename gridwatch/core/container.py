"""
Dependency Injection Container for GridWatch.

Builds one instance of every telemetry component from Settings and wires
them together. Production code creates one container per process (see
get_container()); tests build a fresh container each time.

Usage:
    # At application startup
    container = TelemetryContainer(settings)
    await container.start()

    # Pass to request handlers
    container.metric_store.record("api.response.time", elapsed_ms)

    # At shutdown
    await container.shutdown()
"""

from __future__ import annotations

import time
from typing import Any, Callable, Optional

import structlog

from gridwatch.config.settings import Settings, get_settings
from gridwatch.core.exceptions import InitializationError
from gridwatch.monitoring.alerts import AlertManager
from gridwatch.monitoring.cache import ApiResponseCache, MemoryCache, ObjectCache, QueryCache
from gridwatch.monitoring.error_tracker import ErrorTracker, GlobalErrorHandler
from gridwatch.monitoring.log_aggregator import LogAggregator, configure_logging
from gridwatch.monitoring.metrics import MetricStore
from gridwatch.monitoring.notifiers import LoggingChannel, SeverityRoutingNotifier
from gridwatch.monitoring.sampler import MonitoringScheduler

logger = structlog.get_logger(__name__)


def build_notifier(settings: Settings) -> SeverityRoutingNotifier:
    """Enable the chat and email channels only when they are configured."""
    chat = LoggingChannel("chat") if settings.slack_webhook_url else None
    email = (
        LoggingChannel("email", recipients=settings.alert_email_recipients)
        if settings.smtp_host
        else None
    )
    return SeverityRoutingNotifier(chat=chat, email=email)


class TelemetryContainer:
    """
    Owns the telemetry components for one process.

    Example:
        container = TelemetryContainer()
        container.error_tracker.track_error(exc)
        container.alert_manager.get_alert_stats()
    """

    def __init__(
        self,
        settings: Settings | None = None,
        notifier: Any = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the container.

        Args:
            settings: Telemetry settings. Defaults to get_settings().
            notifier: Alert notifier. Defaults to build_notifier(settings).
            clock: Time source shared by every component.
        """
        self._settings = settings or get_settings()
        s = self._settings

        self.metric_store = MetricStore(window_size=s.metric_window_size)
        self.memory_cache = MemoryCache(s.object_cache_ttl_seconds, clock=clock)
        self.api_cache = ApiResponseCache(s.api_cache_ttl_seconds, clock=clock)
        self.query_cache = QueryCache(s.query_cache_ttl_seconds, clock=clock)
        self.object_cache = ObjectCache(s.object_cache_ttl_seconds, clock=clock)
        self.error_tracker = ErrorTracker(max_errors=s.max_errors, clock=clock)
        self.log_aggregator = LogAggregator(max_entries=s.log_buffer_size, clock=clock)
        self.alert_manager = AlertManager(
            notifier=notifier if notifier is not None else build_notifier(s),
            max_alerts=s.max_alerts,
            load_default_rules=s.load_default_rules,
            clock=clock,
        )
        self.error_handler = GlobalErrorHandler(self.error_tracker)
        self.scheduler = MonitoringScheduler(
            self.metric_store,
            self.alert_manager,
            memory_interval=s.memory_sample_interval_seconds,
            evaluation_interval=s.alert_evaluation_interval_seconds,
        )
        self._started = False
        self.created_at = time.time()

        logger.info("telemetry_container_created")

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def is_started(self) -> bool:
        return self._started

    def cache_stats(self) -> dict[str, dict[str, float]]:
        return {
            "memory": self.memory_cache.get_stats(),
            "api": self.api_cache.get_stats(),
            "query": self.query_cache.get_stats(),
            "object": self.object_cache.get_stats(),
        }

    def configure_logging(self) -> None:
        """Route every structlog event through the container's log aggregator."""
        configure_logging(self._settings, self.log_aggregator)

    async def start(self) -> None:
        """
        Install global hooks and start the periodic ticks.

        Raises:
            InitializationError: If the scheduler cannot be started.
        """
        if self._started:
            logger.warning("telemetry_container_already_started")
            return

        if self._settings.install_global_hooks:
            self.error_handler.install()

        try:
            await self.scheduler.start()
        except Exception as e:
            self.error_handler.uninstall()
            logger.error("telemetry_scheduler_start_failed", error=str(e))
            raise InitializationError(
                "MonitoringScheduler",
                f"Failed to start monitoring ticks: {e}",
            ) from e

        self._started = True
        logger.info("telemetry_container_started")

    async def shutdown(self) -> None:
        logger.info("telemetry_container_shutting_down")
        await self.scheduler.stop()
        self.error_handler.uninstall()
        self._started = False
        logger.info("telemetry_container_shutdown_complete")


# Process-wide container for production wiring.
# Prefer passing a container explicitly via dependency injection.
_container: Optional[TelemetryContainer] = None


def get_container() -> TelemetryContainer:
    """
    Get the process-wide container, creating it on first use.

    Returns:
        Global TelemetryContainer instance.
    """
    global _container
    if _container is None:
        _container = TelemetryContainer()
    return _container


def set_container(container: TelemetryContainer) -> None:
    global _container
    _container = container


async def shutdown_container() -> None:
    """Shutdown and forget the process-wide container."""
    global _container
    if _container is not None:
        await _container.shutdown()
        _container = None


def reset_container() -> None:
    """Forget the process-wide container without shutting it down (for tests)."""
    global _container
    _container = None
