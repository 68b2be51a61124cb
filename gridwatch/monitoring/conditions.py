"""
Alert rule conditions.

A condition decides whether a rule should fire for a metrics snapshot.
Prefer ThresholdCondition (pure data: field, comparator, threshold); use a
named condition from the registry for logic that does not fit a single
comparison, or wrap an arbitrary callable with CallableCondition.

Usage:
    from gridwatch.monitoring.conditions import (
        ThresholdCondition, NamedCondition, register_condition,
    )

    slow = ThresholdCondition("average_response_time", ">", 5000)

    @register_condition("heap_pressure")
    def heap_pressure(snapshot):
        return snapshot["heap_used"] / snapshot["heap_total"] > 0.85

    pressure = NamedCondition("heap_pressure")
"""

import operator
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Mapping, Optional, Protocol, runtime_checkable

from gridwatch.core.exceptions import ConfigurationError, UnknownConditionError

Snapshot = Mapping[str, Any]
Comparator = Literal[">", ">=", "<", "<=", "==", "!="]

_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
    "==": operator.eq,
    "!=": operator.ne,
}

_MISSING = object()


@runtime_checkable
class RuleCondition(Protocol):
    """Anything that can judge a snapshot."""

    def evaluate(self, snapshot: Snapshot) -> bool: ...


def resolve_field(snapshot: Snapshot, path: str) -> Any:
    """Look up a dotted path (``memory.heap_percent``) in nested mappings."""
    current: Any = snapshot
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


@dataclass(frozen=True)
class ThresholdCondition:
    """
    ``snapshot[field] <comparator> threshold``.

    A missing or None field never matches. A value that cannot be compared
    raises, which the alert manager logs and treats as false.
    """

    field: str
    comparator: Comparator
    threshold: float

    def __post_init__(self) -> None:
        if self.comparator not in _COMPARATORS:
            raise ConfigurationError(
                f"Unsupported comparator '{self.comparator}'", "comparator"
            )

    def evaluate(self, snapshot: Snapshot) -> bool:
        value = resolve_field(snapshot, self.field)
        if value is _MISSING or value is None:
            return False
        return bool(_COMPARATORS[self.comparator](value, self.threshold))

    def describe(self) -> str:
        return f"{self.field} {self.comparator} {self.threshold}"


@dataclass(frozen=True)
class CallableCondition:
    """Adapter for a plain ``snapshot -> bool`` function."""

    func: Callable[[Snapshot], bool]
    name: Optional[str] = None

    def evaluate(self, snapshot: Snapshot) -> bool:
        return bool(self.func(snapshot))

    def describe(self) -> str:
        return self.name or getattr(self.func, "__name__", repr(self.func))


@dataclass(frozen=True)
class AllOf:
    """Matches when every sub-condition matches."""

    conditions: tuple[RuleCondition, ...] = field(default_factory=tuple)

    def evaluate(self, snapshot: Snapshot) -> bool:
        return all(c.evaluate(snapshot) for c in self.conditions)


@dataclass(frozen=True)
class AnyOf:
    """Matches when at least one sub-condition matches."""

    conditions: tuple[RuleCondition, ...] = field(default_factory=tuple)

    def evaluate(self, snapshot: Snapshot) -> bool:
        return any(c.evaluate(snapshot) for c in self.conditions)


# =============================================================================
# Named condition registry
# =============================================================================


_condition_registry: dict[str, Callable[[Snapshot], bool]] = {}


def register_condition(
    name: str,
) -> Callable[[Callable[[Snapshot], bool]], Callable[[Snapshot], bool]]:
    """Decorator registering a condition function under ``name``."""

    def decorator(func: Callable[[Snapshot], bool]) -> Callable[[Snapshot], bool]:
        _condition_registry[name] = func
        return func

    return decorator


def unregister_condition(name: str) -> None:
    _condition_registry.pop(name, None)


def get_registered_conditions() -> dict[str, Callable[[Snapshot], bool]]:
    return _condition_registry.copy()


@dataclass(frozen=True)
class NamedCondition:
    """
    Condition looked up by name in the registry.

    Raises:
        UnknownConditionError: If ``name`` is not registered at construction time.
    """

    name: str

    def __post_init__(self) -> None:
        if self.name not in _condition_registry:
            raise UnknownConditionError(self.name)

    def evaluate(self, snapshot: Snapshot) -> bool:
        return bool(_condition_registry[self.name](snapshot))

    def describe(self) -> str:
        return self.name


def as_condition(condition: RuleCondition | Callable[[Snapshot], bool]) -> RuleCondition:
    """Accept either a RuleCondition or a bare function."""
    if isinstance(condition, RuleCondition):
        return condition
    if callable(condition):
        return CallableCondition(condition)
    raise ConfigurationError(f"Not a rule condition: {condition!r}", "condition")
