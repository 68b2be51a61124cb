"""Unit tests for the rule-driven alert engine."""

import threading
from unittest.mock import MagicMock

import pytest
from structlog.testing import capture_logs

from gridwatch.monitoring.alerts import (
    AlertManager,
    AlertRule,
    AlertSeverity,
    AlertType,
    default_rules,
)
from gridwatch.monitoring.conditions import ThresholdCondition


def _heap_rule(cooldown: float = 5.0, **overrides) -> AlertRule:
    fields = dict(
        id="mem",
        name="Heap pressure",
        type=AlertType.SYSTEM,
        severity=AlertSeverity.HIGH,
        condition=ThresholdCondition("heap_percent", ">", 85),
        message="Heap usage is above 85%",
        cooldown=cooldown,
    )
    fields.update(overrides)
    return AlertRule(**fields)


class TestDefaultRules:
    """Tests for the built-in rule set."""

    def test_eight_rules_with_unique_ids(self):
        rules = default_rules()

        assert len(rules) == 8
        assert len({r.id for r in rules}) == 8

    def test_rule_table(self):
        rules = {r.id: r for r in default_rules()}

        assert rules["high-error-rate"].severity == AlertSeverity.HIGH
        assert rules["high-error-rate"].cooldown == 600
        assert rules["suspicious-activity"].severity == AlertSeverity.CRITICAL
        assert rules["suspicious-activity"].cooldown == 1800
        assert rules["low-user-engagement"].condition.describe() == "average_session_duration < 30"
        assert rules["low-user-engagement"].cooldown == 3600

    def test_manager_loads_defaults(self, clock):
        manager = AlertManager(clock=clock)

        assert len(manager.get_rules()) == 8

    def test_default_rules_fire_on_matching_snapshot(self, clock):
        manager = AlertManager(clock=clock)

        fired = manager.evaluate_metrics({"average_response_time": 6000, "error_rate": 0.01})

        assert [a.details["rule_id"] for a in fired] == ["high-response-time"]


class TestAlertEvaluation:
    """Tests for rule evaluation and cooldowns."""

    @pytest.fixture
    def manager(self, clock):
        return AlertManager(load_default_rules=False, clock=clock)

    def test_heap_rule_cooldown(self, manager, clock):
        manager.add_rule(_heap_rule(cooldown=5.0))

        first = manager.evaluate_metrics({"heap_percent": 90})
        assert len(first) == 1
        alert = first[0]
        assert alert.id == f"mem-{int(clock.now * 1000)}"
        assert alert.severity == AlertSeverity.HIGH
        assert alert.title == "Heap pressure"
        assert alert.details["metrics"] == {"heap_percent": 90}

        assert manager.evaluate_metrics({"heap_percent": 90}) == []

        clock.advance(5.001)
        second = manager.evaluate_metrics({"heap_percent": 90})
        assert len(second) == 1
        assert second[0].id != alert.id
        assert manager.get_alert_stats()["total"] == 2

    def test_sixty_second_cooldown_fires_once(self, manager, clock):
        manager.add_rule(_heap_rule(cooldown=60.0))

        fired = []
        for _ in range(30):
            fired += manager.evaluate_metrics({"heap_percent": 99})
            clock.advance(1)

        assert len(fired) == 1

    def test_concurrent_sweeps_fire_once_per_cooldown(self, manager):
        barrier = threading.Barrier(2, timeout=5)

        def both_sweeps_matched(snapshot):
            barrier.wait()
            return True

        manager.add_rule(_heap_rule(cooldown=60.0, condition=both_sweeps_matched))
        fired = []

        def sweep():
            fired.extend(manager.evaluate_metrics({}))

        threads = [threading.Thread(target=sweep) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert len(fired) == 1
        assert manager.get_alert_stats()["total"] == 1

    def test_non_matching_snapshot(self, manager):
        manager.add_rule(_heap_rule())

        assert manager.evaluate_metrics({"heap_percent": 50}) == []
        assert manager.evaluate_metrics({}) == []

    def test_disabled_rule_is_skipped(self, manager):
        manager.add_rule(_heap_rule())
        assert manager.set_rule_enabled("mem", False) is True

        assert manager.evaluate_metrics({"heap_percent": 99}) == []
        assert manager.set_rule_enabled("unknown", True) is False

    def test_failing_condition_is_isolated(self, manager):
        def broken(snapshot):
            raise KeyError("heap_total")

        manager.add_rule(_heap_rule(id="broken", condition=broken))
        manager.add_rule(_heap_rule(id="mem"))

        with capture_logs() as logs:
            fired = manager.evaluate_metrics({"heap_percent": 99})

        assert [a.details["rule_id"] for a in fired] == ["mem"]
        failures = [e for e in logs if e["event"] == "alert_rule_evaluation_failed"]
        assert failures[0]["rule_id"] == "broken"

    def test_plain_function_condition(self, manager):
        manager.add_rule(_heap_rule(condition=lambda s: s.get("heap_percent", 0) > 50))

        assert len(manager.evaluate_metrics({"heap_percent": 60})) == 1

    def test_upsert_keeps_last_triggered(self, manager, clock):
        manager.add_rule(_heap_rule(cooldown=60.0))
        manager.evaluate_metrics({"heap_percent": 99})
        triggered_at = manager.get_rule("mem").last_triggered

        manager.add_rule(_heap_rule(cooldown=60.0, message="updated"))

        rule = manager.get_rule("mem")
        assert rule.message == "updated"
        assert rule.last_triggered == triggered_at
        assert len(manager.get_rules()) == 1
        assert manager.evaluate_metrics({"heap_percent": 99}) == []

    def test_remove_rule(self, manager):
        manager.add_rule(_heap_rule())

        assert manager.remove_rule("mem") is True
        assert manager.remove_rule("mem") is False
        assert manager.get_rule("mem") is None

    def test_triggered_alert_is_logged_as_warning(self, manager):
        manager.add_rule(_heap_rule())

        with capture_logs() as logs:
            manager.evaluate_metrics({"heap_percent": 99})

        triggered = [e for e in logs if e["event"] == "alert_triggered"]
        assert triggered[0]["log_level"] == "warning"
        assert triggered[0]["severity"] == "high"

    def test_alert_buffer_drops_oldest(self, clock):
        manager = AlertManager(max_alerts=2, load_default_rules=False, clock=clock)
        manager.add_rule(_heap_rule(cooldown=0))

        ids = []
        for _ in range(3):
            ids.append(manager.evaluate_metrics({"heap_percent": 99})[0].id)
            clock.advance(1)

        assert manager.get_alert(ids[0]) is None
        assert [a.id for a in manager.get_alerts()] == [ids[2], ids[1]]


class TestAlertListenersAndNotifier:
    """Tests for callbacks and notifier dispatch."""

    @pytest.fixture
    def notifier(self):
        return MagicMock()

    @pytest.fixture
    def manager(self, notifier, clock):
        manager = AlertManager(notifier=notifier, load_default_rules=False, clock=clock)
        manager.add_rule(_heap_rule())
        return manager

    def test_callbacks_and_notifier_receive_alert(self, manager, notifier):
        received = []
        manager.on_alert(received.append)

        alert = manager.evaluate_metrics({"heap_percent": 99})[0]

        assert received == [alert]
        notifier.send.assert_called_once_with(alert)

    def test_failing_callback_does_not_block_others(self, manager, notifier):
        received = []

        def broken(alert):
            raise RuntimeError("listener down")

        manager.on_alert(broken)
        manager.on_alert(received.append)

        fired = manager.evaluate_metrics({"heap_percent": 99})

        assert len(fired) == 1
        assert len(received) == 1
        notifier.send.assert_called_once()

    def test_failing_notifier_is_swallowed(self, manager, notifier):
        notifier.send.side_effect = RuntimeError("webhook down")

        with capture_logs() as logs:
            fired = manager.evaluate_metrics({"heap_percent": 99})

        assert len(fired) == 1
        assert any(e["event"] == "alert_notification_failed" for e in logs)

    def test_remove_callback(self, manager):
        received = []
        manager.on_alert(received.append)
        manager.remove_alert_callback(received.append)

        manager.evaluate_metrics({"heap_percent": 99})

        assert received == []


class TestAlertLifecycle:
    """Tests for acknowledge/resolve and queries."""

    @pytest.fixture
    def manager(self, clock):
        manager = AlertManager(load_default_rules=False, clock=clock)
        manager.add_rule(_heap_rule(cooldown=0))
        manager.add_rule(
            _heap_rule(
                id="auth",
                name="Failed logins",
                type=AlertType.SECURITY,
                severity=AlertSeverity.CRITICAL,
                condition=ThresholdCondition("failed_auth_attempts", ">", 10),
                cooldown=0,
            )
        )
        return manager

    def test_acknowledge_is_idempotent(self, manager, clock):
        alert = manager.evaluate_metrics({"heap_percent": 99})[0]
        clock.advance(3)

        assert manager.acknowledge_alert(alert.id, acknowledged_by="ops") is True
        assert manager.acknowledge_alert(alert.id, acknowledged_by="someone-else") is False
        assert alert.acknowledged_by == "ops"
        assert alert.acknowledged_at == clock.now
        assert manager.acknowledge_alert("unknown") is False

    def test_resolve_is_idempotent(self, manager):
        alert = manager.evaluate_metrics({"heap_percent": 99})[0]

        assert manager.resolve_alert(alert.id) is True
        assert manager.resolve_alert(alert.id) is False
        assert alert.resolved_at is not None
        assert manager.resolve_alert("unknown") is False

    def test_filters_and_stats(self, manager, clock):
        heap = manager.evaluate_metrics({"heap_percent": 99})[0]
        clock.advance(1)
        auth = manager.evaluate_metrics({"failed_auth_attempts": 20})[0]
        manager.resolve_alert(heap.id)

        assert manager.get_alerts(type=AlertType.SECURITY) == [auth]
        assert manager.get_alerts(severity=AlertSeverity.HIGH) == [heap]
        assert manager.get_alerts(resolved=False) == [auth]
        assert manager.get_alerts(limit=1) == [auth]
        assert manager.get_alerts(limit=0) == []

        stats = manager.get_alert_stats()
        assert stats["total"] == 2
        assert stats["unresolved"] == 1
        assert stats["unacknowledged"] == 2
        assert stats["by_type"]["security"] == 1
        assert stats["by_severity"]["critical"] == 1
        assert stats["by_severity"]["low"] == 0

    def test_clear_alerts(self, manager):
        manager.evaluate_metrics({"heap_percent": 99})
        manager.clear_alerts()

        assert manager.get_alerts() == []

    def test_alert_to_dict(self, manager):
        alert = manager.evaluate_metrics({"heap_percent": 99})[0]

        data = alert.to_dict()
        assert data["type"] == "system"
        assert data["severity"] == "high"
        assert data["timestamp"].endswith("+00:00")
        assert data["resolved_at"] is None
