"""
Rule-driven alert engine.

Rules are evaluated against a metrics snapshot. A rule fires when it is
enabled, its cooldown has elapsed since it last fired, and its condition
matches. Firing records an Alert in a bounded buffer, notifies listeners,
logs a warning and forwards the alert to the injected notifier.

Rule lifecycle per evaluation:
- disabled: skipped
- armed: condition checked
- fired: alert emitted, last_triggered = now, immediately armed again
- suppressed: condition would match but cooldown has not elapsed

Usage:
    from gridwatch.monitoring.alerts import AlertManager, AlertRule, AlertSeverity, AlertType
    from gridwatch.monitoring.conditions import ThresholdCondition

    manager = AlertManager(load_default_rules=False)
    manager.add_rule(AlertRule(
        id="mem",
        name="Heap pressure",
        type=AlertType.SYSTEM,
        severity=AlertSeverity.HIGH,
        condition=ThresholdCondition("heap_percent", ">", 85),
        message="Heap usage is above 85%",
        cooldown=5.0,
    ))
    manager.evaluate_metrics({"heap_percent": 90})
"""

import dataclasses
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Mapping, Optional

import structlog

from gridwatch.monitoring.conditions import RuleCondition, ThresholdCondition, as_condition
from gridwatch.monitoring.notifiers import Notifier

logger = structlog.get_logger(__name__)

AlertCallback = Callable[["Alert"], None]


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertType(str, Enum):
    PERFORMANCE = "performance"
    ERROR = "error"
    SECURITY = "security"
    SYSTEM = "system"
    BUSINESS = "business"


def _iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass
class AlertRule:
    """
    Declarative alert rule.

    Args:
        condition: RuleCondition or plain ``snapshot -> bool`` callable
        cooldown: Minimum seconds between two firings
    """

    id: str
    name: str
    type: AlertType
    severity: AlertSeverity
    condition: RuleCondition
    message: str
    cooldown: float
    enabled: bool = True
    last_triggered: Optional[float] = None

    def __post_init__(self) -> None:
        self.condition = as_condition(self.condition)

    def in_cooldown(self, now: float) -> bool:
        return self.last_triggered is not None and now - self.last_triggered < self.cooldown

    def to_dict(self) -> dict[str, Any]:
        describe = getattr(self.condition, "describe", None)
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "severity": self.severity.value,
            "condition": describe() if describe else repr(self.condition),
            "message": self.message,
            "cooldown": self.cooldown,
            "enabled": self.enabled,
            "last_triggered": _iso(self.last_triggered),
        }


@dataclass
class Alert:
    """A single rule firing."""

    id: str
    type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    timestamp: float
    details: dict[str, Any] = field(default_factory=dict)
    resolved: bool = False
    resolved_at: Optional[float] = None
    acknowledged: bool = False
    acknowledged_at: Optional[float] = None
    acknowledged_by: Optional[str] = None

    @property
    def timestamp_iso(self) -> str:
        return _iso(self.timestamp) or ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "severity": self.severity.value,
            "title": self.title,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp_iso,
            "resolved": self.resolved,
            "resolved_at": _iso(self.resolved_at),
            "acknowledged": self.acknowledged,
            "acknowledged_at": _iso(self.acknowledged_at),
            "acknowledged_by": self.acknowledged_by,
        }


def default_rules() -> list[AlertRule]:
    """Built-in rule set; thresholds are plain data."""
    minute = 60.0
    return [
        AlertRule(
            id="high-response-time",
            name="High API Response Time",
            type=AlertType.PERFORMANCE,
            severity=AlertSeverity.MEDIUM,
            condition=ThresholdCondition("average_response_time", ">", 5000),
            message="Average API response time is above 5 seconds",
            cooldown=5 * minute,
        ),
        AlertRule(
            id="high-error-rate",
            name="High Error Rate",
            type=AlertType.ERROR,
            severity=AlertSeverity.HIGH,
            condition=ThresholdCondition("error_rate", ">", 0.05),
            message="Error rate is above 5%",
            cooldown=10 * minute,
        ),
        AlertRule(
            id="high-memory-usage",
            name="High Memory Usage",
            type=AlertType.SYSTEM,
            severity=AlertSeverity.MEDIUM,
            condition=ThresholdCondition("memory_usage_percent", ">", 85),
            message="Memory usage is above 85%",
            cooldown=5 * minute,
        ),
        AlertRule(
            id="slow-page-load",
            name="Slow Page Load",
            type=AlertType.PERFORMANCE,
            severity=AlertSeverity.MEDIUM,
            condition=ThresholdCondition("average_page_load_time", ">", 3000),
            message="Average page load time is above 3 seconds",
            cooldown=10 * minute,
        ),
        AlertRule(
            id="failed-auth-attempts",
            name="High Failed Authentication Attempts",
            type=AlertType.SECURITY,
            severity=AlertSeverity.HIGH,
            condition=ThresholdCondition("failed_auth_attempts", ">", 10),
            message="High number of failed authentication attempts detected",
            cooldown=15 * minute,
        ),
        AlertRule(
            id="suspicious-activity",
            name="Suspicious Activity Detected",
            type=AlertType.SECURITY,
            severity=AlertSeverity.CRITICAL,
            condition=ThresholdCondition("suspicious_requests", ">", 5),
            message="Suspicious activity detected from multiple sources",
            cooldown=30 * minute,
        ),
        AlertRule(
            id="low-user-engagement",
            name="Low User Engagement",
            type=AlertType.BUSINESS,
            severity=AlertSeverity.LOW,
            condition=ThresholdCondition("average_session_duration", "<", 30),
            message="Average user session duration is below 30 seconds",
            cooldown=60 * minute,
        ),
        AlertRule(
            id="high-bounce-rate",
            name="High Bounce Rate",
            type=AlertType.BUSINESS,
            severity=AlertSeverity.MEDIUM,
            condition=ThresholdCondition("bounce_rate", ">", 0.7),
            message="Bounce rate is above 70%",
            cooldown=30 * minute,
        ),
    ]


class AlertManager:
    """
    Holds alert rules, evaluates them and keeps fired alerts.

    Args:
        notifier: Receives every fired alert; failures are logged, never raised
        max_alerts: Alerts kept; the oldest are dropped first (default: 1000)
        load_default_rules: Register default_rules() on construction
        clock: Time source returning epoch seconds
    """

    def __init__(
        self,
        notifier: Optional[Notifier] = None,
        max_alerts: int = 1000,
        load_default_rules: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.notifier = notifier
        self.max_alerts = max_alerts
        self._clock = clock
        self._rules: list[AlertRule] = []
        self._alerts: deque[Alert] = deque(maxlen=max_alerts)
        self._callbacks: list[AlertCallback] = []
        self._lock = threading.RLock()

        if load_default_rules:
            for rule in default_rules():
                self.add_rule(rule)

    # -------------------------------------------------------------------------
    # Rules
    # -------------------------------------------------------------------------

    def add_rule(self, rule: AlertRule) -> None:
        """Insert or replace a rule by id, keeping last_triggered of a replaced rule."""
        with self._lock:
            for index, existing in enumerate(self._rules):
                if existing.id == rule.id:
                    self._rules[index] = dataclasses.replace(
                        rule, last_triggered=existing.last_triggered
                    )
                    break
            else:
                self._rules.append(dataclasses.replace(rule, last_triggered=None))

        logger.info("alert_rule_upserted", rule_id=rule.id, rule_name=rule.name)

    def remove_rule(self, rule_id: str) -> bool:
        with self._lock:
            for index, rule in enumerate(self._rules):
                if rule.id == rule_id:
                    del self._rules[index]
                    break
            else:
                return False

        logger.info("alert_rule_removed", rule_id=rule_id)
        return True

    def set_rule_enabled(self, rule_id: str, enabled: bool) -> bool:
        with self._lock:
            rule = self._find_rule(rule_id)
            if rule is None:
                return False
            rule.enabled = enabled

        logger.info("alert_rule_toggled", rule_id=rule_id, enabled=enabled)
        return True

    def get_rule(self, rule_id: str) -> Optional[AlertRule]:
        with self._lock:
            return self._find_rule(rule_id)

    def get_rules(self) -> list[AlertRule]:
        with self._lock:
            return list(self._rules)

    def _find_rule(self, rule_id: str) -> Optional[AlertRule]:
        for rule in self._rules:
            if rule.id == rule_id:
                return rule
        return None

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    def evaluate_metrics(self, snapshot: Mapping[str, Any]) -> list[Alert]:
        """
        Evaluate every enabled rule against ``snapshot``.

        A condition that raises is logged and counts as not matching; the
        remaining rules are still evaluated.

        Returns:
            Alerts fired during this call.
        """
        fired: list[Alert] = []
        with self._lock:
            rules = list(self._rules)

        for rule in rules:
            if not rule.enabled:
                continue

            now = self._clock()
            if rule.in_cooldown(now):
                continue

            try:
                matched = rule.condition.evaluate(snapshot)
            except Exception as e:
                logger.error(
                    "alert_rule_evaluation_failed",
                    rule_id=rule.id,
                    rule_name=rule.name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            if not matched:
                continue

            alert = self._record_alert(rule, snapshot, now)
            if alert is not None:
                self._dispatch_alert(alert)
                fired.append(alert)

        return fired

    def _record_alert(
        self, rule: AlertRule, snapshot: Mapping[str, Any], now: float
    ) -> Optional[Alert]:
        """Claim the rule and store its alert; None if another sweep fired it first."""
        alert = Alert(
            id=f"{rule.id}-{int(now * 1000)}",
            type=rule.type,
            severity=rule.severity,
            title=rule.name,
            message=rule.message,
            details={
                "rule_id": rule.id,
                "metrics": dict(snapshot),
                "triggered_at": _iso(now),
            },
            timestamp=now,
        )

        with self._lock:
            current = self._find_rule(rule.id) or rule
            if current.in_cooldown(now):
                return None
            current.last_triggered = now
            self._alerts.append(alert)

        return alert

    def _dispatch_alert(self, alert: Alert) -> None:
        with self._lock:
            callbacks = list(self._callbacks)

        for callback in callbacks:
            try:
                callback(alert)
            except Exception as e:
                logger.error("alert_callback_failed", alert_id=alert.id, error=str(e))

        logger.warning(
            "alert_triggered",
            alert_id=alert.id,
            type=alert.type.value,
            severity=alert.severity.value,
            title=alert.title,
            message=alert.message,
        )

        self._send_notification(alert)

    def _send_notification(self, alert: Alert) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.send(alert)
        except Exception as e:
            logger.error("alert_notification_failed", alert_id=alert.id, error=str(e))

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def on_alert(self, callback: AlertCallback) -> None:
        with self._lock:
            self._callbacks.append(callback)

    def remove_alert_callback(self, callback: AlertCallback) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    # -------------------------------------------------------------------------
    # Alert lifecycle and queries
    # -------------------------------------------------------------------------

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        with self._lock:
            for alert in self._alerts:
                if alert.id == alert_id:
                    return alert
        return None

    def acknowledge_alert(self, alert_id: str, acknowledged_by: Optional[str] = None) -> bool:
        """Acknowledge once; returns False if unknown or already acknowledged."""
        with self._lock:
            alert = self.get_alert(alert_id)
            if alert is None or alert.acknowledged:
                return False
            alert.acknowledged = True
            alert.acknowledged_at = self._clock()
            alert.acknowledged_by = acknowledged_by

        logger.info("alert_acknowledged", alert_id=alert_id, acknowledged_by=acknowledged_by)
        return True

    def resolve_alert(self, alert_id: str) -> bool:
        """Resolve once; returns False if unknown or already resolved."""
        with self._lock:
            alert = self.get_alert(alert_id)
            if alert is None or alert.resolved:
                return False
            alert.resolved = True
            alert.resolved_at = self._clock()

        logger.info("alert_resolved", alert_id=alert_id)
        return True

    def get_alerts(
        self,
        type: Optional[AlertType] = None,
        severity: Optional[AlertSeverity] = None,
        resolved: Optional[bool] = None,
        acknowledged: Optional[bool] = None,
        limit: Optional[int] = None,
    ) -> list[Alert]:
        """Filtered alerts, newest first."""
        with self._lock:
            alerts = list(self._alerts)

        if type is not None:
            alerts = [a for a in alerts if a.type == type]
        if severity is not None:
            alerts = [a for a in alerts if a.severity == severity]
        if resolved is not None:
            alerts = [a for a in alerts if a.resolved == resolved]
        if acknowledged is not None:
            alerts = [a for a in alerts if a.acknowledged == acknowledged]

        alerts.sort(key=lambda a: a.timestamp, reverse=True)
        return alerts[:limit] if limit is not None else alerts

    def get_alert_stats(self) -> dict[str, Any]:
        by_type = {t.value: 0 for t in AlertType}
        by_severity = {s.value: 0 for s in AlertSeverity}
        unresolved = 0
        unacknowledged = 0

        with self._lock:
            alerts = list(self._alerts)

        for alert in alerts:
            by_type[alert.type.value] += 1
            by_severity[alert.severity.value] += 1
            if not alert.resolved:
                unresolved += 1
            if not alert.acknowledged:
                unacknowledged += 1

        return {
            "total": len(alerts),
            "by_type": by_type,
            "by_severity": by_severity,
            "unresolved": unresolved,
            "unacknowledged": unacknowledged,
        }

    def clear_alerts(self) -> None:
        with self._lock:
            self._alerts.clear()
        logger.info("alerts_cleared")
