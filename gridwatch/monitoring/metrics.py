"""
In-process metric store for GridWatch observability.

Records numeric samples per metric name in a bounded sliding window and
derives count/average/min/max/p95/p99 on demand.

Usage:
    from gridwatch.monitoring.metrics import MetricStore

    store = MetricStore()
    store.record("api.response.time", 182.0)

    stop = store.start_timer("db.projects.select")
    rows = fetch_projects()
    stop()

    with store.track_operation("api", "GET./projects"):
        await handler(request)

    store.get_stats("api.response.time")
"""

import math
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Callable, Generator, Optional

import structlog

from gridwatch.monitoring.log_aggregator import log_performance

logger = structlog.get_logger(__name__)

DEFAULT_WINDOW_SIZE = 1000


@dataclass(frozen=True)
class MetricStats:
    """Derived read-only view over a metric window."""

    count: int
    average: float
    min: float
    max: float
    p95: float
    p99: float

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


def compute_stats(values: list[float]) -> Optional[MetricStats]:
    """
    Compute window statistics using nearest-rank percentiles.

    The percentile index is floor(p * n) into the ascending sort, with no
    interpolation between neighbours.
    """
    if not values:
        return None

    ordered = sorted(values)
    count = len(ordered)
    return MetricStats(
        count=count,
        average=sum(ordered) / count,
        min=ordered[0],
        max=ordered[-1],
        p95=ordered[math.floor(count * 0.95)],
        p99=ordered[math.floor(count * 0.99)],
    )


class MetricStore:
    """
    Sliding-window metric recorder.

    Each metric name owns a FIFO window of the most recent ``window_size``
    samples. Windows are created on first record and live until clear().

    Args:
        window_size: Samples kept per metric (default: 1000)
    """

    def __init__(self, window_size: int = DEFAULT_WINDOW_SIZE) -> None:
        self.window_size = window_size
        self._metrics: dict[str, deque[float]] = {}
        self._lock = threading.RLock()

    def record(self, name: str, value: float) -> None:
        """Append a sample, dropping the oldest once the window is full."""
        with self._lock:
            window = self._metrics.get(name)
            if window is None:
                window = deque(maxlen=self.window_size)
                self._metrics[name] = window
            window.append(value)

    def start_timer(self, name: str) -> Callable[[], float]:
        """
        Start a wall-clock timer for ``name``.

        Returns:
            A stop function that records the elapsed milliseconds and returns them.
        """
        start_time = time.perf_counter()

        def stop() -> float:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self.record(name, duration_ms)
            log_performance(name, duration_ms)
            return duration_ms

        return stop

    @contextmanager
    def timed(self, name: str) -> Generator[None, None, None]:
        """Context manager form of start_timer()."""
        stop = self.start_timer(name)
        try:
            yield
        finally:
            stop()

    @contextmanager
    def track_operation(
        self,
        kind: str,
        target: str,
        operation: Optional[str] = None,
    ) -> Generator[None, None, None]:
        """
        Track an operation's duration under ``{kind}.{target}[.{operation}]``.

        Failures are recorded under the same name with an ``.error`` suffix
        and re-raised.

        Usage:
            with store.track_operation("db", "projects", "select"):
                rows = await db.fetch(...)

            with store.track_operation("api", "GET./projects"):
                response = await call_next(request)
        """
        name = f"{kind}.{target}" if operation is None else f"{kind}.{target}.{operation}"
        start_time = time.perf_counter()
        failed = False
        try:
            yield
        except Exception:
            failed = True
            raise
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self.record(f"{name}.error" if failed else name, duration_ms)
            if failed:
                logger.debug("operation_failed", metric=name, duration_ms=duration_ms)

    def record_render_time(self, component: str, duration_ms: float) -> None:
        """Record how long a component took to render."""
        self.record(f"component.{component}.render", duration_ms)

    def record_mount_time(self, component: str, duration_ms: float) -> None:
        """Record how long a component took to mount."""
        self.record(f"component.{component}.mount", duration_ms)

    def get_values(self, name: str) -> list[float]:
        """Return a copy of the current window (oldest first)."""
        with self._lock:
            return list(self._metrics.get(name, ()))

    def get_stats(self, name: str) -> Optional[MetricStats]:
        """Return window statistics, or None if nothing has been recorded."""
        with self._lock:
            values = list(self._metrics.get(name, ()))
        return compute_stats(values)

    def get_all(self) -> dict[str, Optional[MetricStats]]:
        """Return statistics for every known metric."""
        with self._lock:
            names = list(self._metrics)
        return {name: self.get_stats(name) for name in names}

    def names(self) -> list[str]:
        with self._lock:
            return list(self._metrics)

    def clear(self) -> None:
        """Drop every metric window."""
        with self._lock:
            self._metrics.clear()
        logger.info("metrics_cleared")
