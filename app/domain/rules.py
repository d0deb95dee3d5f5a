"""
Rule model
==========

Rules are stored as JSON documents (``rules.conditions`` and
``rules.action``). They are parsed once per tick into the tagged tree below:

* :class:`ConditionGroup` ``{"operator": "AND"|"OR", "conditions": [...]}``
* :class:`ConditionLeaf` ``{"type": "time"|"date"|"sensor"|"output",
  "channel": ..., "operator": ..., "value": ...}``

A sensor leaf may compare against a :class:`DynamicRef`
(``{"type": "dynamic", "channel", "factor", "offset"}``) instead of a literal.
An action's value may be a :class:`Calculated` expression
(``{"type": "calculated", "sensorA", "sensorB", "factor", "offset"}``).
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union

from app.domain.exceptions import RuleEvaluationError
from app.enums.control import GroupOperator


@dataclass(frozen=True)
class DynamicRef:
    channel: str
    factor: float = 1.0
    offset: float = 0.0

    def resolve(self, ref_value: float | None) -> float:
        return (ref_value or 0) * self.factor + self.offset


@dataclass(frozen=True)
class Calculated:
    sensor_a: str
    sensor_b: str | None = None
    factor: float = 1.0
    offset: float = 0.0

    def resolve(self, value_a: float | None, value_b: float | None) -> float:
        diff = (value_a or 0) - (value_b or 0)
        return diff * self.factor + self.offset


@dataclass(frozen=True)
class ConditionLeaf:
    type: str
    operator: str
    value: Any = None
    channel: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class ConditionGroup:
    operator: GroupOperator
    conditions: tuple["ConditionNode", ...] = ()
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


ConditionNode = Union[ConditionGroup, ConditionLeaf]


@dataclass(frozen=True)
class Action:
    channel: str
    value: Union[float, Calculated]


@dataclass(frozen=True)
class Rule:
    id: int
    name: str
    position: int
    conditions: ConditionNode
    action: Action | None
    type: str = "static"
    enabled: bool = True


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _number(value: Any, default: float) -> float:
    """Coerce a factor/offset; missing, zero-ish or non-numeric falls back to *default*."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value) if value or default == 0 else default


def parse_condition(node: Any) -> ConditionNode:
    if not isinstance(node, dict):
        raise RuleEvaluationError(f"Condition must be an object, got {type(node).__name__}")

    operator = node.get("operator")
    if operator in (GroupOperator.AND.value, GroupOperator.OR.value):
        children = node.get("conditions") or []
        if not isinstance(children, list):
            raise RuleEvaluationError("Group 'conditions' must be a list")
        return ConditionGroup(
            operator=GroupOperator(operator),
            conditions=tuple(parse_condition(child) for child in children),
            raw=node,
        )

    value = node.get("value")
    if isinstance(value, dict) and value.get("type") == "dynamic":
        if not value.get("channel"):
            raise RuleEvaluationError("Dynamic reference needs a channel")
        value = DynamicRef(
            channel=str(value["channel"]),
            factor=_number(value.get("factor"), 1.0),
            offset=_number(value.get("offset"), 0.0),
        )
    return ConditionLeaf(
        type=str(node.get("type") or ""),
        operator=str(operator or ""),
        value=value,
        channel=node.get("channel"),
        raw=node,
    )


def parse_action(action: Any) -> Action | None:
    """Parse an action document; None when it names no channel or no value."""
    if not isinstance(action, dict):
        raise RuleEvaluationError("Action must be an object")
    channel = action.get("channel")
    value = action.get("value")
    if not channel or value is None:
        return None
    if isinstance(value, dict):
        if value.get("type") != "calculated" or not value.get("sensorA"):
            raise RuleEvaluationError("Unsupported action value", detail={"value": value})
        return Action(
            channel=str(channel),
            value=Calculated(
                sensor_a=str(value["sensorA"]),
                sensor_b=value.get("sensorB") or None,
                factor=_number(value.get("factor"), 1.0),
                offset=_number(value.get("offset"), 0.0),
            ),
        )
    if isinstance(value, bool):
        return Action(channel=str(channel), value=1.0 if value else 0.0)
    try:
        return Action(channel=str(channel), value=float(value))
    except (TypeError, ValueError):
        raise RuleEvaluationError("Action value is not a number", detail={"value": value}) from None


def _load_json(text: Any, what: str) -> Any:
    if isinstance(text, (dict, list)):
        return text
    try:
        return json.loads(text or "{}")
    except (TypeError, ValueError) as exc:
        raise RuleEvaluationError(f"Rule {what} is not valid JSON: {exc}") from exc


def rule_from_row(row: dict[str, Any]) -> Rule:
    """Build a :class:`Rule` from a ``rules`` table row."""
    rule_id = row.get("id")
    try:
        return Rule(
            id=int(rule_id),
            name=row.get("name") or "",
            position=int(row.get("position") or 0),
            conditions=parse_condition(_load_json(row.get("conditions"), "conditions")),
            action=parse_action(_load_json(row.get("action"), "action")),
            type=row.get("type") or "static",
            enabled=bool(row.get("enabled", 1)),
        )
    except RuleEvaluationError as exc:
        exc.rule_id = rule_id
        raise
