"""
Prometheus exposition of the telemetry core.

The core keeps its state in memory; TelemetryCollector reads it at scrape
time and emits gauges, so nothing is double-counted or kept twice.

Usage:
    from gridwatch.monitoring.exporter import get_metrics_app

    app.mount("/metrics", get_metrics_app(container))
"""

import time
from typing import TYPE_CHECKING, Iterator

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from prometheus_client.core import GaugeMetricFamily
from prometheus_client.registry import Collector
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

if TYPE_CHECKING:
    from gridwatch.core.container import TelemetryContainer

_STAT_FIELDS = ("count", "average", "min", "max", "p95", "p99")


class TelemetryCollector(Collector):
    """Scrape-time collector over a TelemetryContainer."""

    def __init__(self, container: "TelemetryContainer", namespace: str = "gridwatch") -> None:
        self.container = container
        self.namespace = namespace

    def _name(self, suffix: str) -> str:
        return f"{self.namespace}_{suffix}"

    def collect(self) -> Iterator[GaugeMetricFamily]:
        yield from self._collect_metric_windows()
        yield from self._collect_alerts()
        yield from self._collect_errors()
        yield from self._collect_caches()
        yield from self._collect_logs()

        uptime = GaugeMetricFamily(self._name("uptime_seconds"), "Seconds since the telemetry core was created")
        uptime.add_metric([], time.time() - self.container.created_at)
        yield uptime

    def _collect_metric_windows(self) -> Iterator[GaugeMetricFamily]:
        families = {
            stat: GaugeMetricFamily(
                self._name(f"performance_{stat}"),
                f"Sliding-window {stat} per recorded metric",
                labels=["metric"],
            )
            for stat in _STAT_FIELDS
        }
        for name, stats in self.container.metric_store.get_all().items():
            if stats is None:
                continue
            for stat in _STAT_FIELDS:
                families[stat].add_metric([name], getattr(stats, stat))
        yield from families.values()

    def _collect_alerts(self) -> Iterator[GaugeMetricFamily]:
        stats = self.container.alert_manager.get_alert_stats()

        for key, help_text in (
            ("total", "Alerts held in the buffer"),
            ("unresolved", "Alerts not yet resolved"),
            ("unacknowledged", "Alerts not yet acknowledged"),
        ):
            family = GaugeMetricFamily(self._name(f"alerts_{key}"), help_text)
            family.add_metric([], stats[key])
            yield family

        by_severity = GaugeMetricFamily(
            self._name("alerts_by_severity"), "Alerts by severity", labels=["severity"]
        )
        for severity, count in stats["by_severity"].items():
            by_severity.add_metric([severity], count)
        yield by_severity

    def _collect_errors(self) -> Iterator[GaugeMetricFamily]:
        stats = self.container.error_tracker.get_error_stats()

        for key, help_text in (
            ("total", "Deduplicated error reports held"),
            ("unresolved", "Error reports not yet resolved"),
        ):
            family = GaugeMetricFamily(self._name(f"errors_{key}"), help_text)
            family.add_metric([], stats[key])
            yield family

        by_category = GaugeMetricFamily(
            self._name("errors_by_category"), "Error reports by category", labels=["category"]
        )
        for category, count in stats["by_category"].items():
            by_category.add_metric([category], count)
        yield by_category

    def _collect_caches(self) -> Iterator[GaugeMetricFamily]:
        hit_rate = GaugeMetricFamily(
            self._name("cache_hit_rate"), "Cache hit rate percentage", labels=["cache"]
        )
        size = GaugeMetricFamily(
            self._name("cache_size"), "Live cache entries", labels=["cache"]
        )
        for cache_name, stats in self.container.cache_stats().items():
            hit_rate.add_metric([cache_name], stats["hit_rate"])
            size.add_metric([cache_name], stats["size"])
        yield hit_rate
        yield size

    def _collect_logs(self) -> Iterator[GaugeMetricFamily]:
        stats = self.container.log_aggregator.get_log_stats()
        by_level = GaugeMetricFamily(
            self._name("logs_by_level"), "Buffered log entries by level", labels=["level"]
        )
        for level, count in stats["by_level"].items():
            by_level.add_metric([level], count)
        yield by_level


def build_registry(container: "TelemetryContainer") -> CollectorRegistry:
    registry = CollectorRegistry(auto_describe=False)
    registry.register(TelemetryCollector(container))
    return registry


def get_metrics_app(container: "TelemetryContainer") -> Starlette:
    """
    Get a Starlette app serving the container's metrics in Prometheus format.

    Mount this at /metrics in your main app:
        app.mount("/metrics", get_metrics_app(container))
    """
    registry = build_registry(container)

    async def metrics_endpoint(request: Request) -> Response:
        return Response(
            content=generate_latest(registry),
            media_type=CONTENT_TYPE_LATEST,
        )

    return Starlette(
        routes=[
            Route("/", metrics_endpoint),
        ]
    )
