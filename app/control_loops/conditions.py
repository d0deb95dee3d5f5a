"""
Condition evaluation
====================

Recursive evaluation of a parsed condition tree against the event store and
the local wall clock. Every node is evaluated (no short-circuit) so that the
returned annotated tree shows the outcome of each branch:

* groups get ``result`` and their annotated ``conditions``;
* leaves get ``result``; sensor and output leaves also get ``actual``
  (the resolved current value) and, for dynamic references, ``target``.
"""

from __future__ import annotations

import logging
import operator as _op
from datetime import datetime
from typing import Any, Callable

from app.domain.exceptions import RuleEvaluationError
from app.domain.rules import ConditionGroup, ConditionLeaf, ConditionNode, DynamicRef
from app.enums.control import ConditionType, GroupOperator
from app.services.event_store import EventStore

logger = logging.getLogger(__name__)

_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "=": _op.eq,
    "==": _op.eq,
    "!=": _op.ne,
    "<": _op.lt,
    ">": _op.gt,
    "<=": _op.le,
    ">=": _op.ge,
}


def local_now() -> datetime:
    return datetime.now().astimezone()


def compare(actual: Any, operator: str, target: Any) -> bool:
    """Compare with one of ``= != < > <= >=``; a missing actual value never matches."""
    if actual is None:
        return False
    fn = _COMPARATORS.get(operator)
    if fn is None:
        logger.warning("Unknown comparison operator %r", operator)
        return False
    return fn(actual, target)


def _minutes(value: Any) -> int:
    try:
        hours, minutes = str(value).split(":")[:2]
        return int(hours) * 60 + int(minutes)
    except (TypeError, ValueError):
        raise RuleEvaluationError(f"Invalid time literal: {value!r}") from None


def _pair(value: Any) -> tuple[Any, Any]:
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise RuleEvaluationError(f"'between' expects [start, end], got {value!r}")
    return value[0], value[1]


def _as_number(value: Any) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        raise RuleEvaluationError(f"Expected a number, got {value!r}") from None


class ConditionEvaluator:
    """Evaluates condition trees; a pure function of store state and the clock."""

    def __init__(self, store: EventStore, *, clock: Callable[[], datetime] = local_now) -> None:
        self._store = store
        self._clock = clock

    def evaluate(self, node: ConditionNode) -> tuple[bool, dict[str, Any]]:
        if isinstance(node, ConditionGroup):
            return self._evaluate_group(node)
        return self._evaluate_leaf(node)

    def _evaluate_group(self, group: ConditionGroup) -> tuple[bool, dict[str, Any]]:
        children = [self.evaluate(child) for child in group.conditions]
        results = [matched for matched, _ in children]
        matched = all(results) if group.operator == GroupOperator.AND else any(results)
        annotated = dict(group.raw)
        annotated.update(
            operator=group.operator.value,
            conditions=[detail for _, detail in children],
            result=matched,
        )
        return matched, annotated

    def _evaluate_leaf(self, leaf: ConditionLeaf) -> tuple[bool, dict[str, Any]]:
        annotated = dict(leaf.raw)
        if leaf.type == ConditionType.TIME.value:
            matched = self._time(leaf)
        elif leaf.type == ConditionType.DATE.value:
            matched = self._date(leaf)
        elif leaf.type == ConditionType.SENSOR.value:
            matched = self._sensor(leaf, annotated)
        elif leaf.type == ConditionType.OUTPUT.value:
            matched = self._output(leaf, annotated)
        else:
            logger.warning("Unknown condition type: %r", leaf.type)
            matched = False
        annotated["result"] = matched
        return matched, annotated

    # ---------------------------------------------------------------- leaves
    def _time(self, leaf: ConditionLeaf) -> bool:
        now = self._clock()
        current = now.hour * 60 + now.minute
        if leaf.operator == "between":
            start, end = (_minutes(v) for v in _pair(leaf.value))
            if start <= end:
                return start <= current <= end
            # range wraps past midnight, e.g. 22:00 - 06:00
            return current >= start or current <= end
        return compare(current, leaf.operator, _minutes(leaf.value))

    def _date(self, leaf: ConditionLeaf) -> bool:
        today = self._clock().date().isoformat()
        if leaf.operator == "between":
            start, end = _pair(leaf.value)
            return str(start) <= today <= str(end)
        if leaf.operator == "before":
            return today < str(leaf.value)
        if leaf.operator == "after":
            return today > str(leaf.value)
        if leaf.operator in ("=", "=="):
            return today == str(leaf.value)
        logger.warning("Unknown date operator %r", leaf.operator)
        return False

    def _sensor(self, leaf: ConditionLeaf, annotated: dict[str, Any]) -> bool:
        actual = self._store.latest_sensor(leaf.channel) if leaf.channel else None
        annotated["actual"] = actual
        if isinstance(leaf.value, DynamicRef):
            target = leaf.value.resolve(self._store.latest_sensor(leaf.value.channel))
            annotated["target"] = target
        else:
            target = _as_number(leaf.value)
        return compare(actual, leaf.operator, target)

    def _output(self, leaf: ConditionLeaf, annotated: dict[str, Any]) -> bool:
        actual = self._store.latest_output(leaf.channel) if leaf.channel else None
        if actual is None:
            actual = 0
        annotated["actual"] = actual
        return compare(actual, leaf.operator, _as_number(leaf.value))
