"""Unit tests for log aggregation and the logging helpers."""

import pytest
import structlog
from structlog.testing import capture_logs

from gridwatch.config.settings import Settings
from gridwatch.monitoring.log_aggregator import (
    LogAggregator,
    LogLevel,
    configure_logging,
    log_database_operation,
    log_performance,
    log_request,
    log_security_event,
    log_user_action,
)


class TestLogLevel:
    """Tests for level ordering."""

    def test_rank_orders_by_severity(self):
        ranks = [level.rank for level in (LogLevel.ERROR, LogLevel.WARN, LogLevel.INFO, LogLevel.HTTP, LogLevel.DEBUG)]

        assert ranks == sorted(ranks)


class TestLogAggregator:
    """Tests for LogAggregator."""

    @pytest.fixture
    def aggregator(self, clock):
        return LogAggregator(clock=clock)

    def test_add_and_query_newest_first(self, aggregator, clock):
        aggregator.add("info", "first")
        clock.advance(1)
        aggregator.add("error", "second")

        events = [e.event for e in aggregator.get_aggregated_logs()]
        assert events == ["second", "first"]

    def test_level_filter_keeps_more_severe(self, aggregator):
        aggregator.add(LogLevel.ERROR, "e")
        aggregator.add(LogLevel.WARN, "w")
        aggregator.add(LogLevel.INFO, "i")
        aggregator.add(LogLevel.DEBUG, "d")

        events = [e.event for e in aggregator.get_aggregated_logs(level="warn")]
        assert events == ["w", "e"]

    def test_structlog_level_names_are_mapped(self, aggregator):
        assert aggregator.add("warning", "x").level == LogLevel.WARN
        assert aggregator.add("critical", "y").level == LogLevel.ERROR

    def test_time_window_and_limit(self, aggregator, clock):
        start = clock.now
        for i in range(5):
            aggregator.add("info", f"e{i}")
            clock.advance(10)

        window = aggregator.get_aggregated_logs(since=start + 10, until=start + 30)
        assert [e.event for e in window] == ["e3", "e2", "e1"]
        assert len(aggregator.get_aggregated_logs(limit=2)) == 2
        assert aggregator.get_aggregated_logs(limit=0) == []

    def test_ring_buffer_drops_oldest(self, clock):
        aggregator = LogAggregator(max_entries=3, clock=clock)
        for i in range(5):
            aggregator.add("info", f"e{i}")

        assert len(aggregator) == 3
        assert aggregator.get_aggregated_logs()[-1].event == "e2"

    def test_stats(self, aggregator, clock):
        aggregator.add("info", "a")
        clock.advance(5)
        aggregator.add("error", "b")

        stats = aggregator.get_log_stats()
        assert stats["total"] == 2
        assert stats["by_level"] == {"error": 1, "warn": 0, "info": 1, "http": 0, "debug": 0}
        assert stats["newest"] - stats["oldest"] == 5

    def test_stats_when_empty(self, aggregator):
        stats = aggregator.get_log_stats()

        assert stats["total"] == 0
        assert stats["oldest"] is None

    def test_clear(self, aggregator):
        aggregator.add("info", "a")
        aggregator.clear()

        assert len(aggregator) == 0

    def test_processor_copies_event(self, aggregator):
        event_dict = {"event": "user_login", "level": "info", "logger": "auth", "user_id": "u1"}

        returned = aggregator.processor(None, "info", event_dict)

        assert returned is event_dict
        entry = aggregator.get_aggregated_logs()[0]
        assert entry.event == "user_login"
        assert entry.logger == "auth"
        assert entry.fields == {"user_id": "u1"}

    def test_processor_maps_http_channel(self, aggregator):
        aggregator.processor(None, "info", {"event": "http_request", "channel": "http"})
        aggregator.processor(None, "error", {"event": "http_request", "channel": "http"})

        levels = [e.level for e in aggregator.get_aggregated_logs()]
        assert levels == [LogLevel.ERROR, LogLevel.HTTP]

    def test_processor_unknown_level_falls_back_to_info(self, aggregator):
        aggregator.processor(None, "trace", {"event": "x"})

        assert aggregator.get_aggregated_logs()[0].level == LogLevel.INFO

    def test_entry_to_dict(self, aggregator):
        entry = aggregator.add("warn", "disk_low", "system", free_mb=12)

        data = entry.to_dict()
        assert data["level"] == "warn"
        assert data["fields"] == {"free_mb": 12}
        assert data["timestamp"].endswith("+00:00")


class TestConfigureLogging:
    """Tests for the structlog pipeline."""

    def test_events_reach_the_aggregator(self, uncached_logging, clock):
        aggregator = LogAggregator(clock=clock)
        configure_logging(Settings(_env_file=None, log_format="console"), aggregator)

        structlog.get_logger("gridwatch.test").warning("disk_low", free_mb=12)

        entry = aggregator.get_aggregated_logs()[0]
        assert entry.event == "disk_low"
        assert entry.level == LogLevel.WARN
        assert entry.logger == "gridwatch.test"
        assert entry.fields["free_mb"] == 12


class TestLoggingHelpers:
    """Tests for the domain logging helpers."""

    @pytest.mark.parametrize(
        "status_code,level",
        [(200, "info"), (302, "warning"), (404, "error"), (503, "error")],
    )
    def test_log_request_level(self, status_code, level):
        with capture_logs() as logs:
            log_request("GET", "/api/projects", status_code, 12.346)

        assert logs[0]["log_level"] == level
        assert logs[0]["duration_ms"] == 12.35

    def test_successful_request_uses_http_channel(self):
        with capture_logs() as logs:
            log_request("GET", "/api/projects", 200, 5.0)

        assert logs[0]["channel"] == "http"

    def test_log_performance_threshold(self):
        with capture_logs() as logs:
            log_performance("render", 999.0)
            log_performance("render", 1001.0)

        assert [e["log_level"] for e in logs] == ["debug", "warning"]

    def test_log_database_operation(self):
        with capture_logs() as logs:
            log_database_operation("select", "projects", 3.2, True)
            log_database_operation("insert", "projects", 8.0, False, error=RuntimeError("duplicate key"))

        assert logs[0]["log_level"] == "debug"
        assert logs[1]["log_level"] == "error"
        assert logs[1]["error"] == "duplicate key"

    def test_user_and_security_events(self):
        with capture_logs() as logs:
            log_user_action("u1", "fund_project", project_id="p9")
            log_security_event("brute_force", user_id="u1", ip="10.0.0.1", attempts=12)

        assert logs[0]["action"] == "fund_project"
        assert logs[0]["project_id"] == "p9"
        assert logs[1]["log_level"] == "warning"
        assert logs[1]["security_event"] == "brute_force"
        assert logs[1]["attempts"] == 12
