"""Periodic monitoring ticks.

Two recurring activities feed the telemetry core:
- a memory tick that samples process memory into the MetricStore
- an evaluation tick that builds a metrics snapshot and hands it to the
  AlertManager

Both are APScheduler interval jobs on an AsyncIOScheduler that call the
synchronous core operations.

Usage:
    scheduler = MonitoringScheduler(
        metric_store, alert_manager,
        memory_interval=30, evaluation_interval=60,
    )
    await scheduler.start()
    ...
    await scheduler.stop()
"""

from datetime import datetime, timezone
from typing import Any, Callable, Optional

import psutil
import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from gridwatch.monitoring.alerts import Alert, AlertManager
from gridwatch.monitoring.metrics import MetricStore

logger = structlog.get_logger(__name__)

MEMORY_JOB_ID = "gridwatch_memory_sample"
ALERTS_JOB_ID = "gridwatch_alert_evaluation"


class MetricNames:
    """Well-known metric names read by build_metrics_snapshot()."""

    API_RESPONSE_TIME = "api.response.time"
    PAGE_LOAD_TIME = "page.load.time"
    AUTH_FAILED = "auth.failed"
    SUSPICIOUS_REQUEST = "security.suspicious_request"
    SESSION_DURATION = "session.duration"
    BOUNCE_RATE = "session.bounce_rate"
    MEMORY_RSS = "memory.rss"
    MEMORY_VMS = "memory.vms"
    MEMORY_PERCENT = "memory.percent"
    MEMORY_SYSTEM_PERCENT = "memory.system_percent"


def sample_memory(store: MetricStore) -> dict[str, float]:
    """Record current process and system memory usage."""
    usage = get_memory_usage()
    sample = {
        MetricNames.MEMORY_RSS: usage["rss"],
        MetricNames.MEMORY_VMS: usage["vms"],
        MetricNames.MEMORY_PERCENT: usage["percent"],
        MetricNames.MEMORY_SYSTEM_PERCENT: usage["system_percent"],
    }
    for name, value in sample.items():
        store.record(name, value)
    return sample


def get_memory_usage() -> dict[str, float]:
    """Current memory figures without recording them."""
    process = psutil.Process()
    info = process.memory_info()
    system = psutil.virtual_memory()
    return {
        "rss": float(info.rss),
        "vms": float(info.vms),
        "percent": float(process.memory_percent()),
        "system_total": float(system.total),
        "system_percent": float(system.percent),
    }


def calculate_error_rate(store: MetricStore) -> float:
    """
    Share of recorded samples that landed in ``*.error`` metrics.

    Process memory samples are not operations and are left out.
    """
    total = 0
    errors = 0
    for name, stats in store.get_all().items():
        if stats is None or name.startswith("memory."):
            continue
        total += stats.count
        if "error" in name:
            errors += stats.count
    return errors / total if total else 0.0


def _average(store: MetricStore, name: str) -> Optional[float]:
    stats = store.get_stats(name)
    return stats.average if stats else None


def _latest(store: MetricStore, name: str) -> Optional[float]:
    values = store.get_values(name)
    return values[-1] if values else None


def _count(store: MetricStore, name: str) -> int:
    stats = store.get_stats(name)
    return stats.count if stats else 0


def build_metrics_snapshot(store: MetricStore) -> dict[str, Any]:
    """
    Derive the alert rule snapshot from recorded metrics.

    Fields with no data are None, which threshold conditions never match.
    """
    return {
        "average_response_time": _average(store, MetricNames.API_RESPONSE_TIME),
        "error_rate": calculate_error_rate(store),
        "memory_usage_percent": _latest(store, MetricNames.MEMORY_PERCENT),
        "average_page_load_time": _average(store, MetricNames.PAGE_LOAD_TIME),
        "failed_auth_attempts": _count(store, MetricNames.AUTH_FAILED),
        "suspicious_requests": _count(store, MetricNames.SUSPICIOUS_REQUEST),
        "average_session_duration": _average(store, MetricNames.SESSION_DURATION),
        "bounce_rate": _latest(store, MetricNames.BOUNCE_RATE),
    }


class MonitoringScheduler:
    """
    Runs the memory and alert-evaluation ticks as APScheduler interval jobs.

    Both jobs run on the event loop; the first run of each is immediate.

    Args:
        metric_store: Receives memory samples and feeds snapshots
        alert_manager: Evaluates each snapshot
        memory_interval: Seconds between memory samples (default: 30)
        evaluation_interval: Seconds between rule evaluations (default: 60)
        snapshot_builder: Builds the snapshot passed to evaluate_metrics()
    """

    def __init__(
        self,
        metric_store: MetricStore,
        alert_manager: AlertManager,
        memory_interval: float = 30.0,
        evaluation_interval: float = 60.0,
        snapshot_builder: Callable[[MetricStore], dict[str, Any]] = build_metrics_snapshot,
    ) -> None:
        self.metric_store = metric_store
        self.alert_manager = alert_manager
        self.memory_interval = memory_interval
        self.evaluation_interval = evaluation_interval
        self.snapshot_builder = snapshot_builder
        self._scheduler: Optional[AsyncIOScheduler] = None

    def tick_memory(self) -> Optional[dict[str, float]]:
        try:
            return sample_memory(self.metric_store)
        except Exception as e:
            logger.error("memory_sample_failed", error=str(e))
            return None

    def tick_alerts(self) -> list[Alert]:
        try:
            snapshot = self.snapshot_builder(self.metric_store)
        except Exception as e:
            logger.error("metrics_snapshot_failed", error=str(e))
            return []
        return self.alert_manager.evaluate_metrics(snapshot)

    async def _memory_job(self) -> None:
        self.tick_memory()

    async def _alerts_job(self) -> None:
        self.tick_alerts()

    async def start(self) -> None:
        """Start both jobs; a second call is a no-op."""
        if self._scheduler is not None:
            logger.warning("monitoring_scheduler_already_running")
            return

        scheduler = AsyncIOScheduler()
        first_run = datetime.now(timezone.utc)

        scheduler.add_job(
            self._memory_job,
            trigger=IntervalTrigger(seconds=self.memory_interval),
            id=MEMORY_JOB_ID,
            name="GridWatch: memory sample",
            next_run_time=first_run,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        scheduler.add_job(
            self._alerts_job,
            trigger=IntervalTrigger(seconds=self.evaluation_interval),
            id=ALERTS_JOB_ID,
            name="GridWatch: alert evaluation",
            next_run_time=first_run,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        scheduler.start()
        self._scheduler = scheduler

        logger.info(
            "monitoring_scheduler_started",
            memory_interval=self.memory_interval,
            evaluation_interval=self.evaluation_interval,
        )

    async def stop(self) -> None:
        if self._scheduler is None:
            return

        self._scheduler.shutdown(wait=True)
        self._scheduler = None
        logger.info("monitoring_scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    @property
    def job_ids(self) -> list[str]:
        if self._scheduler is None:
            return []
        return [job.id for job in self._scheduler.get_jobs()]
