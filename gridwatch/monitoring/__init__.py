"""
Monitoring and observability for GridWatch.

In-memory telemetry core: metric windows with percentile stats, TTL caches,
error deduplication, rule-driven alerts and a recent-logs buffer.

Usage:
    from gridwatch.monitoring import MetricStore, AlertManager, ErrorTracker

    store = MetricStore()
    with store.track_operation("api", "GET./projects"):
        await handler(request)

    alerts = AlertManager()
    alerts.evaluate_metrics(build_metrics_snapshot(store))
"""

from gridwatch.monitoring.alerts import (
    Alert,
    AlertManager,
    AlertRule,
    AlertSeverity,
    AlertType,
    default_rules,
)
from gridwatch.monitoring.cache import (
    ApiResponseCache,
    CacheEntry,
    MemoryCache,
    ObjectCache,
    QueryCache,
    generate_cache_key,
    optimal_ttl,
    should_bypass_cache,
)
from gridwatch.monitoring.conditions import (
    AllOf,
    AnyOf,
    CallableCondition,
    NamedCondition,
    RuleCondition,
    ThresholdCondition,
    register_condition,
)
from gridwatch.monitoring.error_tracker import (
    ErrorCategory,
    ErrorReport,
    ErrorSeverity,
    ErrorTracker,
    GlobalErrorHandler,
)
from gridwatch.monitoring.log_aggregator import (
    LogAggregator,
    LogEntry,
    LogLevel,
    configure_logging,
    log_database_operation,
    log_performance,
    log_request,
    log_security_event,
    log_user_action,
)
from gridwatch.monitoring.metrics import MetricStats, MetricStore
from gridwatch.monitoring.notifiers import (
    LoggingChannel,
    NotificationChannel,
    Notifier,
    SeverityRoutingNotifier,
)
from gridwatch.monitoring.sampler import (
    MetricNames,
    MonitoringScheduler,
    build_metrics_snapshot,
    sample_memory,
)

__all__ = [
    # Metrics
    "MetricStats",
    "MetricStore",
    "MetricNames",
    # Caches
    "ApiResponseCache",
    "CacheEntry",
    "MemoryCache",
    "ObjectCache",
    "QueryCache",
    "generate_cache_key",
    "optimal_ttl",
    "should_bypass_cache",
    # Errors
    "ErrorCategory",
    "ErrorReport",
    "ErrorSeverity",
    "ErrorTracker",
    "GlobalErrorHandler",
    # Alerts
    "Alert",
    "AlertManager",
    "AlertRule",
    "AlertSeverity",
    "AlertType",
    "default_rules",
    "AllOf",
    "AnyOf",
    "CallableCondition",
    "NamedCondition",
    "RuleCondition",
    "ThresholdCondition",
    "register_condition",
    # Notifications
    "LoggingChannel",
    "NotificationChannel",
    "Notifier",
    "SeverityRoutingNotifier",
    # Logs
    "LogAggregator",
    "LogEntry",
    "LogLevel",
    "configure_logging",
    "log_database_operation",
    "log_performance",
    "log_request",
    "log_security_event",
    "log_user_action",
    # Ticks
    "MonitoringScheduler",
    "build_metrics_snapshot",
    "sample_memory",
]
