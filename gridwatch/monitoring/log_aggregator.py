"""In-memory log aggregation and structured logging setup.

Every component logs through structlog. configure_logging() installs the
processor chain once per process and appends LogAggregator.processor so that
ordinary ``logger.info(...)`` calls are also kept in a bounded ring buffer,
which answers "recent logs" queries without touching the file system.

Usage:
    from gridwatch.monitoring.log_aggregator import LogAggregator, configure_logging

    aggregator = LogAggregator(max_entries=1000)
    configure_logging(settings, aggregator)

    aggregator.get_aggregated_logs(level="warn", limit=20)
    aggregator.get_log_stats()
"""

import logging
import sys
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, MutableMapping, Optional

import structlog

if TYPE_CHECKING:
    from gridwatch.config.settings import Settings

logger = structlog.get_logger(__name__)


class LogLevel(str, Enum):
    """Log levels, most severe first."""

    ERROR = "error"
    WARN = "warn"
    INFO = "info"
    HTTP = "http"
    DEBUG = "debug"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]


_LEVEL_RANK = {
    LogLevel.ERROR: 0,
    LogLevel.WARN: 1,
    LogLevel.INFO: 2,
    LogLevel.HTTP: 3,
    LogLevel.DEBUG: 4,
}

# structlog/stdlib level names -> aggregator levels
_STRUCTLOG_LEVELS = {
    "critical": LogLevel.ERROR,
    "exception": LogLevel.ERROR,
    "error": LogLevel.ERROR,
    "warning": LogLevel.WARN,
    "warn": LogLevel.WARN,
    "info": LogLevel.INFO,
    "debug": LogLevel.DEBUG,
}

_RESERVED_KEYS = ("event", "level", "timestamp", "logger")


@dataclass
class LogEntry:
    """A single captured log line."""

    timestamp: float
    level: LogLevel
    event: str
    logger: Optional[str] = None
    fields: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat(),
            "level": self.level.value,
            "event": self.event,
            "logger": self.logger,
            "fields": self.fields,
        }


def _coerce_level(level: LogLevel | str) -> LogLevel:
    if isinstance(level, LogLevel):
        return level
    name = level.lower()
    if name in _STRUCTLOG_LEVELS:
        return _STRUCTLOG_LEVELS[name]
    return LogLevel(name)


class LogAggregator:
    """
    Bounded ring buffer of structured log entries.

    Args:
        max_entries: Entries kept; the oldest are dropped first (default: 1000)
        clock: Time source returning epoch seconds
    """

    def __init__(
        self,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_entries = max_entries
        self._clock = clock
        self._entries: deque[LogEntry] = deque(maxlen=max_entries)
        self._lock = threading.RLock()

    def add(
        self,
        level: LogLevel | str,
        event: str,
        logger_name: Optional[str] = None,
        **fields: Any,
    ) -> LogEntry:
        """Append an entry to the buffer."""
        entry = LogEntry(
            timestamp=self._clock(),
            level=_coerce_level(level),
            event=event,
            logger=logger_name,
            fields=fields,
        )
        with self._lock:
            self._entries.append(entry)
        return entry

    def processor(
        self,
        _logger: Any,
        method_name: str,
        event_dict: MutableMapping[str, Any],
    ) -> MutableMapping[str, Any]:
        """structlog processor that copies each event into the buffer."""
        try:
            level = _coerce_level(str(event_dict.get("level", method_name)))
        except ValueError:
            level = LogLevel.INFO
        if event_dict.get("channel") == "http" and level in (LogLevel.INFO, LogLevel.DEBUG):
            level = LogLevel.HTTP

        fields = {k: v for k, v in event_dict.items() if k not in _RESERVED_KEYS}
        self.add(
            level,
            str(event_dict.get("event", "")),
            event_dict.get("logger"),
            **fields,
        )
        return event_dict

    def get_aggregated_logs(
        self,
        level: LogLevel | str | None = None,
        since: Optional[float] = None,
        until: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> list[LogEntry]:
        """
        Query captured entries, newest first.

        Args:
            level: Only entries at this level or more severe
            since: Only entries at or after this epoch timestamp
            until: Only entries at or before this epoch timestamp
            limit: Maximum number of entries returned
        """
        with self._lock:
            entries = list(self._entries)

        if level is not None:
            max_rank = _coerce_level(level).rank
            entries = [e for e in entries if e.level.rank <= max_rank]
        if since is not None:
            entries = [e for e in entries if e.timestamp >= since]
        if until is not None:
            entries = [e for e in entries if e.timestamp <= until]

        entries.reverse()
        return entries[:limit] if limit is not None else entries

    def get_log_stats(self) -> dict[str, Any]:
        """Totals by level plus the time span held in the buffer."""
        with self._lock:
            entries = list(self._entries)

        by_level = {lvl.value: 0 for lvl in LogLevel}
        for entry in entries:
            by_level[entry.level.value] += 1

        return {
            "total": len(entries),
            "by_level": by_level,
            "oldest": entries[0].timestamp if entries else None,
            "newest": entries[-1].timestamp if entries else None,
        }

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# =============================================================================
# structlog configuration
# =============================================================================


def configure_logging(
    settings: "Settings",
    aggregator: Optional[LogAggregator] = None,
) -> None:
    """
    Configure structlog for the process.

    Args:
        settings: Supplies log_level and log_format
        aggregator: When given, every emitted event is also captured in it
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )

    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if aggregator is not None:
        processors.append(aggregator.processor)

    if settings.log_format == "console":
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# =============================================================================
# Logging helpers
# =============================================================================


def log_request(
    method: str,
    url: str,
    status_code: int,
    duration_ms: float,
    user_id: Optional[str] = None,
) -> None:
    """Log an HTTP request; 4xx/5xx at error, 3xx at warning, else http level."""
    fields = {
        "method": method,
        "url": url,
        "status_code": status_code,
        "duration_ms": round(duration_ms, 2),
        "user_id": user_id,
    }
    if status_code >= 400:
        logger.error("http_request", **fields)
    elif status_code >= 300:
        logger.warning("http_request", **fields)
    else:
        logger.info("http_request", channel="http", **fields)


def log_performance(operation: str, duration_ms: float, **metadata: Any) -> None:
    """Log an operation duration; anything slower than a second is a warning."""
    if duration_ms > 1000:
        logger.warning("slow_operation", operation=operation, duration_ms=duration_ms, **metadata)
    else:
        logger.debug("operation_timed", operation=operation, duration_ms=duration_ms, **metadata)


def log_database_operation(
    operation: str,
    table: str,
    duration_ms: float,
    success: bool,
    error: Optional[BaseException] = None,
) -> None:
    fields = {
        "operation": operation,
        "table": table,
        "duration_ms": round(duration_ms, 2),
        "success": success,
    }
    if success:
        logger.debug("database_operation", **fields)
    else:
        logger.error("database_operation", error=str(error) if error else None, **fields)


def log_user_action(user_id: str, action: str, **details: Any) -> None:
    logger.info("user_action", user_id=user_id, action=action, **details)


def log_security_event(
    event: str,
    user_id: Optional[str] = None,
    ip: Optional[str] = None,
    **details: Any,
) -> None:
    logger.warning("security_event", security_event=event, user_id=user_id, ip=ip, **details)
