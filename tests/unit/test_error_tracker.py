"""Unit tests for error deduplication and the global error hooks."""

import asyncio
import json
import sys
import threading
from unittest.mock import MagicMock

import pytest
from structlog.testing import capture_logs

from gridwatch.monitoring.error_tracker import (
    ErrorCategory,
    ErrorSeverity,
    ErrorTracker,
    GlobalErrorHandler,
    create_fingerprint,
    format_stack,
)


def _raise_value_error(message: str = "bad input") -> None:
    raise ValueError(message)


def _caught(message: str = "bad input") -> ValueError:
    try:
        _raise_value_error(message)
    except ValueError as e:
        return e


class TestFingerprint:
    """Tests for fingerprint construction."""

    def test_whitespace_is_removed(self):
        fp = create_fingerprint("connection reset by peer", None, ErrorCategory.NETWORK)

        assert fp == "network:connectionresetbypeer:"

    def test_only_first_five_stack_lines_count(self):
        head = "\n".join(f"line {i}" for i in range(5))

        assert create_fingerprint("m", head + "\nline 5", ErrorCategory.UNKNOWN) == create_fingerprint(
            "m", head + "\nsomething else", ErrorCategory.UNKNOWN
        )

    def test_category_separates_fingerprints(self):
        assert create_fingerprint("m", None, ErrorCategory.DATABASE) != create_fingerprint(
            "m", None, ErrorCategory.NETWORK
        )

    def test_format_stack_of_unraised_error(self):
        assert format_stack(ValueError("never raised")) is None

    def test_format_stack_of_raised_error(self):
        lines = format_stack(_caught()).split("\n")

        assert lines[0] == "ValueError: bad input"
        assert lines[1].startswith("  at _raise_value_error (")
        assert lines[2].startswith("  at _caught (")

    def test_distinct_raise_sites_get_distinct_fingerprints(self):
        def parse_amount():
            raise ValueError("invalid")

        def parse_currency():
            raise ValueError("invalid")

        def dispatch(handler):
            try:
                handler()
            except ValueError as e:
                return e

        tracker = ErrorTracker()
        first = tracker.track_error(dispatch(parse_amount), category=ErrorCategory.VALIDATION)
        second = tracker.track_error(dispatch(parse_currency), category=ErrorCategory.VALIDATION)

        assert first != second
        assert len(tracker) == 2
        assert "parse_amount" in first


class TestErrorTracker:
    """Tests for ErrorTracker."""

    @pytest.fixture
    def tracker(self, clock):
        return ErrorTracker(clock=clock)

    def test_repeated_error_is_deduplicated(self, tracker, clock):
        fingerprints = set()
        for attempt in range(3):
            fingerprints.add(
                tracker.track_error(
                    _caught(),
                    ErrorSeverity.HIGH,
                    ErrorCategory.VALIDATION,
                    {f"attempt_{attempt}": attempt},
                )
            )
            clock.advance(1)

        assert len(fingerprints) == 1
        report = tracker.get_error(fingerprints.pop())
        assert report.occurrences == 3
        assert report.context["attempt_0"] == 0
        assert report.context["attempt_2"] == 2
        assert report.last_seen - report.first_seen == 2
        assert len(tracker) == 1

    def test_new_report_fields(self, tracker, clock):
        fp = tracker.track_error("payment gateway timeout", category=ErrorCategory.EXTERNAL_API)
        report = tracker.get_error(fp)

        assert report.id.startswith(f"error_{int(clock.now * 1000)}_")
        assert report.severity == ErrorSeverity.MEDIUM
        assert report.stack is None
        assert report.occurrences == 1
        assert report.resolved is False
        assert "timestamp" in report.context

    def test_get_error_by_id(self, tracker):
        report = tracker.get_error(tracker.track_error(_caught()))

        assert tracker.get_error_by_id(report.id) is report
        assert tracker.get_error_by_id("error_0_missing") is None

    def test_empty_message_falls_back_to_type_name(self, tracker):
        fp = tracker.track_error(KeyError())

        assert tracker.get_error(fp).message == "KeyError"

    def test_fifo_eviction(self, clock):
        tracker = ErrorTracker(max_errors=2, clock=clock)
        first = tracker.track_error("first", ErrorSeverity.CRITICAL)
        second = tracker.track_error("second", ErrorSeverity.LOW)
        third = tracker.track_error("third", ErrorSeverity.LOW)

        assert tracker.get_error(first) is None
        assert tracker.get_error(second) is not None
        assert tracker.get_error(third) is not None

    def test_stats_include_every_bucket(self, tracker):
        tracker.track_error("a", ErrorSeverity.HIGH, ErrorCategory.DATABASE)
        fp = tracker.track_error("b", ErrorSeverity.LOW, ErrorCategory.NETWORK)
        tracker.mark_error_resolved(fp)

        stats = tracker.get_error_stats()
        assert stats["total"] == 2
        assert stats["unresolved"] == 1
        assert stats["by_severity"] == {"low": 1, "medium": 0, "high": 1, "critical": 0}
        assert stats["by_category"]["database"] == 1
        assert stats["by_category"]["security"] == 0
        assert len(stats["by_category"]) == len(ErrorCategory)

    def test_filters(self, tracker):
        tracker.track_error("a", ErrorSeverity.HIGH, ErrorCategory.DATABASE)
        tracker.track_error("b", ErrorSeverity.LOW, ErrorCategory.DATABASE)

        assert [r.message for r in tracker.get_errors_by_severity(ErrorSeverity.HIGH)] == ["a"]
        assert len(tracker.get_errors_by_category(ErrorCategory.DATABASE)) == 2

    def test_mark_resolved_unknown(self, tracker):
        assert tracker.mark_error_resolved("nope") is False

    def test_clear_resolved(self, tracker):
        fp = tracker.track_error("a")
        tracker.track_error("b")
        tracker.mark_error_resolved(fp)

        assert tracker.clear_resolved_errors() == 1
        assert [r.message for r in tracker.get_all_errors()] == ["b"]

    def test_export_is_json(self, tracker):
        tracker.track_error("a", ErrorSeverity.CRITICAL, ErrorCategory.SECURITY)

        exported = json.loads(tracker.export_errors())
        assert exported[0]["message"] == "a"
        assert exported[0]["severity"] == "critical"
        assert exported[0]["category"] == "security"

    @pytest.mark.parametrize(
        "severity,event,level",
        [
            (ErrorSeverity.CRITICAL, "critical_error", "error"),
            (ErrorSeverity.HIGH, "high_priority_error", "error"),
            (ErrorSeverity.MEDIUM, "medium_priority_error", "warning"),
            (ErrorSeverity.LOW, "low_priority_error", "info"),
        ],
    )
    def test_log_level_follows_severity(self, tracker, severity, event, level):
        with capture_logs() as logs:
            tracker.track_error("boom", severity, context={"event": "ignored", "user_id": "u1"})

        assert logs[-1]["event"] == event
        assert logs[-1]["log_level"] == level
        assert logs[-1]["user_id"] == "u1"
        assert logs[-1]["error"] == "boom"


class TestGlobalErrorHandler:
    """Tests for GlobalErrorHandler."""

    @pytest.fixture
    def tracker(self, clock):
        return ErrorTracker(clock=clock)

    @pytest.fixture
    def handler(self, tracker):
        handler = GlobalErrorHandler(tracker)
        yield handler
        handler.uninstall()

    def test_install_and_uninstall_restore_hooks(self, handler):
        original_excepthook = sys.excepthook
        original_thread_hook = threading.excepthook

        handler.install()
        assert handler.is_installed
        assert sys.excepthook == handler._handle_uncaught
        assert threading.excepthook == handler._handle_thread_exception

        handler.uninstall()
        assert not handler.is_installed
        assert sys.excepthook is original_excepthook
        assert threading.excepthook is original_thread_hook

    def test_uncaught_exception_is_critical_and_chained(self, handler, tracker):
        previous = MagicMock()
        handler._previous_excepthook = previous
        error = _caught("crash")

        handler._handle_uncaught(ValueError, error, error.__traceback__)

        report = tracker.get_all_errors()[0]
        assert report.severity == ErrorSeverity.CRITICAL
        assert report.context["type"] == "uncaught_exception"
        previous.assert_called_once_with(ValueError, error, error.__traceback__)

    def test_keyboard_interrupt_is_not_tracked(self, handler, tracker):
        handler._previous_excepthook = MagicMock()

        handler._handle_uncaught(KeyboardInterrupt, KeyboardInterrupt(), None)

        assert len(tracker) == 0

    def test_thread_exception_is_tracked(self, handler, tracker, monkeypatch):
        previous = MagicMock()
        monkeypatch.setattr(threading, "excepthook", previous)
        handler.install()

        def worker():
            raise RuntimeError("worker died")

        thread = threading.Thread(target=worker, name="worker-1")
        thread.start()
        thread.join()

        report = tracker.get_all_errors()[0]
        assert report.message == "worker died"
        assert report.severity == ErrorSeverity.CRITICAL
        assert report.context["thread"] == "worker-1"
        previous.assert_called_once()
        handler.uninstall()

    @pytest.mark.asyncio
    async def test_loop_exception_is_high(self, handler, tracker):
        loop = asyncio.get_running_loop()
        previous = MagicMock()
        loop.set_exception_handler(previous)
        handler.install()

        loop.call_exception_handler({"message": "Task exception was never retrieved",
                                     "exception": RuntimeError("lost")})

        report = tracker.get_all_errors()[0]
        assert report.severity == ErrorSeverity.HIGH
        assert report.context["type"] == "unhandled_rejection"
        previous.assert_called_once()

        handler.uninstall()
        assert loop.get_exception_handler() is previous
        loop.set_exception_handler(None)

    def test_track_component_error(self, handler, tracker):
        fp = handler.track_component_error(_caught("render failed"), component="Dashboard", user_id="u1")

        report = tracker.get_error(fp)
        assert report.severity == ErrorSeverity.HIGH
        assert report.category == ErrorCategory.UI_COMPONENT
        assert report.context["component"] == "Dashboard"
        assert report.context["type"] == "error_boundary"
