"""Error deduplication and tracking.

Groups recurring failures into reports keyed by a fingerprint built from the
error category, its message and the first lines of its stack. Reports live
in a bounded, insertion-ordered map; once it exceeds ``max_errors`` the
oldest-inserted report is evicted regardless of severity.

Usage:
    from gridwatch.monitoring.error_tracker import (
        ErrorCategory, ErrorSeverity, ErrorTracker, GlobalErrorHandler,
    )

    tracker = ErrorTracker()
    try:
        await escrow.release(project_id)
    except EscrowError as e:
        tracker.track_error(
            e, ErrorSeverity.HIGH, ErrorCategory.EXTERNAL_API,
            {"project_id": project_id},
        )

    # Route uncaught exceptions into the tracker
    GlobalErrorHandler(tracker).install()
"""

import asyncio
import json
import re
import sys
import threading
import time
import traceback
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)

STACK_LINES_IN_FINGERPRINT = 5
_WHITESPACE = re.compile(r"\s+")


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    NETWORK = "network"
    DATABASE = "database"
    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    BUSINESS_LOGIC = "business_logic"
    EXTERNAL_API = "external_api"
    UI_COMPONENT = "ui_component"
    PERFORMANCE = "performance"
    SECURITY = "security"
    UNKNOWN = "unknown"


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass
class ErrorReport:
    """A group of occurrences sharing one fingerprint."""

    id: str
    message: str
    severity: ErrorSeverity
    category: ErrorCategory
    fingerprint: str
    first_seen: float
    last_seen: float
    stack: Optional[str] = None
    context: dict[str, Any] = field(default_factory=dict)
    occurrences: int = 1
    resolved: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "message": self.message,
            "stack": self.stack,
            "severity": self.severity.value,
            "category": self.category.value,
            "context": self.context,
            "fingerprint": self.fingerprint,
            "occurrences": self.occurrences,
            "first_seen": _iso(self.first_seen),
            "last_seen": _iso(self.last_seen),
            "resolved": self.resolved,
        }


def format_stack(error: BaseException) -> Optional[str]:
    """
    Render an exception's traceback innermost frame first, or None if it was never raised.

    The first line is ``Type: message``; each following line is one frame,
    ``at function (file:line)``, so the head of the stack names the raise site.
    """
    if error.__traceback__ is None:
        return None

    header = traceback.format_exception_only(type(error), error)[-1].strip()
    frames = [
        f"  at {frame.name} ({frame.filename}:{frame.lineno})"
        for frame in reversed(traceback.extract_tb(error.__traceback__))
    ]
    return "\n".join([header, *frames])


def create_fingerprint(
    message: str,
    stack: Optional[str],
    category: ErrorCategory,
) -> str:
    """
    Build the dedup key for an error.

    ``category:message:stack-head`` with the first five stack lines trimmed,
    then every whitespace run removed.
    """
    simplified_stack = ""
    if stack:
        lines = stack.split("\n")[:STACK_LINES_IN_FINGERPRINT]
        simplified_stack = "".join(line.strip() for line in lines)

    return _WHITESPACE.sub("", f"{category.value}:{message}:{simplified_stack}")


class ErrorTracker:
    """
    Deduplicating error store.

    Args:
        max_errors: Reports kept before FIFO eviction (default: 1000)
        clock: Time source returning epoch seconds
    """

    def __init__(
        self,
        max_errors: int = 1000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_errors = max_errors
        self._clock = clock
        self._errors: dict[str, ErrorReport] = {}
        self._lock = threading.RLock()

    def track_error(
        self,
        error: BaseException | str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        context: Optional[dict[str, Any]] = None,
    ) -> str:
        """
        Record an occurrence of ``error``.

        Repeat occurrences of a fingerprint bump the count, refresh last_seen
        and merge ``context`` into the stored one.

        Returns:
            The report fingerprint.
        """
        context = context or {}
        if isinstance(error, BaseException):
            message = str(error) or type(error).__name__
            stack = format_stack(error)
        else:
            message = error
            stack = None

        fingerprint = create_fingerprint(message, stack, category)
        now = self._clock()
        evicted: Optional[str] = None

        with self._lock:
            existing = self._errors.get(fingerprint)
            if existing is not None:
                existing.occurrences += 1
                existing.last_seen = now
                existing.context = {**existing.context, **context}
            else:
                self._errors[fingerprint] = ErrorReport(
                    id=f"error_{int(now * 1000)}_{uuid.uuid4().hex[:9]}",
                    message=message,
                    stack=stack,
                    severity=severity,
                    category=category,
                    context={**context, "timestamp": _iso(now)},
                    fingerprint=fingerprint,
                    occurrences=1,
                    first_seen=now,
                    last_seen=now,
                )
                if len(self._errors) > self.max_errors:
                    evicted = next(iter(self._errors))
                    del self._errors[evicted]

        if evicted is not None:
            logger.debug("error_report_evicted", fingerprint=evicted)

        self._log_error(message, severity, category, context)
        return fingerprint

    def _log_error(
        self,
        message: str,
        severity: ErrorSeverity,
        category: ErrorCategory,
        context: dict[str, Any],
    ) -> None:
        fields = {
            **{k: v for k, v in context.items() if k != "event"},
            "error": message,
            "severity": severity.value,
            "category": category.value,
        }
        if severity == ErrorSeverity.CRITICAL:
            logger.error("critical_error", **fields)
        elif severity == ErrorSeverity.HIGH:
            logger.error("high_priority_error", **fields)
        elif severity == ErrorSeverity.MEDIUM:
            logger.warning("medium_priority_error", **fields)
        else:
            logger.info("low_priority_error", **fields)

    def get_error_stats(self) -> dict[str, Any]:
        """Totals by severity and category (every value present) plus unresolved."""
        by_severity = {s.value: 0 for s in ErrorSeverity}
        by_category = {c.value: 0 for c in ErrorCategory}
        unresolved = 0

        with self._lock:
            reports = list(self._errors.values())

        for report in reports:
            by_severity[report.severity.value] += 1
            by_category[report.category.value] += 1
            if not report.resolved:
                unresolved += 1

        return {
            "total": len(reports),
            "by_severity": by_severity,
            "by_category": by_category,
            "unresolved": unresolved,
        }

    def get_error(self, fingerprint: str) -> Optional[ErrorReport]:
        with self._lock:
            return self._errors.get(fingerprint)

    def get_error_by_id(self, error_id: str) -> Optional[ErrorReport]:
        """Look up a report by its ``error_<ms>_<hex>`` id."""
        with self._lock:
            for report in self._errors.values():
                if report.id == error_id:
                    return report
        return None

    def get_all_errors(self) -> list[ErrorReport]:
        with self._lock:
            return list(self._errors.values())

    def get_errors_by_severity(self, severity: ErrorSeverity) -> list[ErrorReport]:
        return [e for e in self.get_all_errors() if e.severity == severity]

    def get_errors_by_category(self, category: ErrorCategory) -> list[ErrorReport]:
        return [e for e in self.get_all_errors() if e.category == category]

    def mark_error_resolved(self, fingerprint: str) -> bool:
        with self._lock:
            report = self._errors.get(fingerprint)
            if report is None:
                return False
            report.resolved = True

        logger.info("error_marked_resolved", error_id=report.id, fingerprint=fingerprint)
        return True

    def clear_resolved_errors(self) -> int:
        """Remove resolved reports; returns how many were removed."""
        with self._lock:
            resolved = [fp for fp, report in self._errors.items() if report.resolved]
            for fingerprint in resolved:
                del self._errors[fingerprint]

        logger.info("resolved_errors_cleared", count=len(resolved))
        return len(resolved)

    def export_errors(self) -> str:
        """Serialize every report as a JSON array."""
        return json.dumps(
            [report.to_dict() for report in self.get_all_errors()],
            indent=2,
            default=str,
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._errors)


# =============================================================================
# Process-wide hooks
# =============================================================================


class GlobalErrorHandler:
    """
    Routes uncaught failures into an ErrorTracker.

    - sys.excepthook: uncaught exceptions, CRITICAL
    - threading.excepthook: uncaught thread exceptions, CRITICAL
    - asyncio loop exception handler: never-retrieved task exceptions, HIGH

    Previously installed hooks are always called afterwards, so the host
    runtime's normal crash behaviour still happens once the failure is recorded.
    """

    def __init__(self, tracker: ErrorTracker) -> None:
        self.tracker = tracker
        self._previous_excepthook: Optional[Callable[..., Any]] = None
        self._previous_threading_hook: Optional[Callable[..., Any]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._previous_loop_handler: Optional[Callable[..., Any]] = None
        self._installed = False

    @property
    def is_installed(self) -> bool:
        return self._installed

    def install(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Install process hooks, plus the loop handler when a loop is given or running."""
        if self._installed:
            logger.warning("global_error_handler_already_installed")
            return

        self._previous_excepthook = sys.excepthook
        sys.excepthook = self._handle_uncaught

        self._previous_threading_hook = threading.excepthook
        threading.excepthook = self._handle_thread_exception

        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
        if loop is not None:
            self._loop = loop
            self._previous_loop_handler = loop.get_exception_handler()
            loop.set_exception_handler(self._handle_loop_exception)

        self._installed = True
        logger.info("global_error_handler_installed", asyncio_hook=loop is not None)

    def uninstall(self) -> None:
        if not self._installed:
            return

        sys.excepthook = self._previous_excepthook or sys.__excepthook__
        threading.excepthook = self._previous_threading_hook or threading.__excepthook__
        if self._loop is not None:
            self._loop.set_exception_handler(self._previous_loop_handler)
            self._loop = None

        self._installed = False
        logger.info("global_error_handler_uninstalled")

    def _handle_uncaught(self, exc_type, exc_value, exc_traceback) -> None:
        error = exc_value if exc_value is not None else exc_type()
        if not isinstance(exc_value, KeyboardInterrupt):
            self.tracker.track_error(
                error,
                ErrorSeverity.CRITICAL,
                ErrorCategory.UNKNOWN,
                {"type": "uncaught_exception", "component": "global"},
            )
        previous = self._previous_excepthook or sys.__excepthook__
        previous(exc_type, exc_value, exc_traceback)

    def _handle_thread_exception(self, args: threading.ExceptHookArgs) -> None:
        error = args.exc_value if args.exc_value is not None else args.exc_type()
        self.tracker.track_error(
            error,
            ErrorSeverity.CRITICAL,
            ErrorCategory.UNKNOWN,
            {
                "type": "uncaught_thread_exception",
                "component": "global",
                "thread": args.thread.name if args.thread else None,
            },
        )
        previous = self._previous_threading_hook or threading.__excepthook__
        previous(args)

    def _handle_loop_exception(
        self,
        loop: asyncio.AbstractEventLoop,
        context: dict[str, Any],
    ) -> None:
        error = context.get("exception")
        if error is None:
            error = RuntimeError(context.get("message", "unhandled asyncio error"))

        task = context.get("future") or context.get("task")
        self.tracker.track_error(
            error,
            ErrorSeverity.HIGH,
            ErrorCategory.UNKNOWN,
            {
                "type": "unhandled_rejection",
                "component": "global",
                "task": repr(task) if task is not None else None,
            },
        )
        if self._previous_loop_handler is not None:
            self._previous_loop_handler(loop, context)
        else:
            loop.default_exception_handler(context)

    def track_error(
        self,
        error: BaseException | str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        context: Optional[dict[str, Any]] = None,
    ) -> str:
        """Manually track an error through the shared tracker."""
        return self.tracker.track_error(error, severity, category, context)

    def track_component_error(
        self,
        error: BaseException,
        component: Optional[str] = None,
        user_id: Optional[str] = None,
        component_stack: Optional[str] = None,
    ) -> str:
        """Record an error caught at a component or request-handler boundary."""
        return self.tracker.track_error(
            error,
            ErrorSeverity.HIGH,
            ErrorCategory.UI_COMPONENT,
            {
                "component": component,
                "user_id": user_id,
                "component_stack": component_stack,
                "type": "error_boundary",
            },
        )
