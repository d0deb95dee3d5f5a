from datetime import datetime
from itertools import product

import pytest

from app.control_loops.conditions import ConditionEvaluator, compare
from app.domain.exceptions import RuleEvaluationError
from app.domain.rules import parse_condition


def evaluator_at(store, hour=12, minute=0, day=15):
    return ConditionEvaluator(store, clock=lambda: datetime(2026, 6, day, hour, minute))


def evaluate(evaluator, node):
    return evaluator.evaluate(parse_condition(node))


def sensor(channel, op, value):
    return {"type": "sensor", "channel": channel, "operator": op, "value": value}


TRUE_LEAF = {"type": "date", "operator": "after", "value": "2000-01-01"}
FALSE_LEAF = {"type": "date", "operator": "before", "value": "2000-01-01"}


# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("a,b", list(product([True, False], repeat=2)))
def test_group_truth_tables(event_store, a, b):
    ev = evaluator_at(event_store)
    leaves = [TRUE_LEAF if a else FALSE_LEAF, TRUE_LEAF if b else FALSE_LEAF]

    assert evaluate(ev, {"operator": "AND", "conditions": leaves})[0] is (a and b)
    assert evaluate(ev, {"operator": "OR", "conditions": leaves})[0] is (a or b)


def test_empty_groups(event_store):
    ev = evaluator_at(event_store)
    assert evaluate(ev, {"operator": "AND", "conditions": []})[0] is True
    assert evaluate(ev, {"operator": "OR", "conditions": []})[0] is False


def test_nested_groups_are_annotated_without_short_circuit(event_store):
    ev = evaluator_at(event_store)
    tree = {
        "operator": "OR",
        "conditions": [
            TRUE_LEAF,
            {"operator": "AND", "conditions": [FALSE_LEAF, TRUE_LEAF]},
        ],
    }

    matched, annotated = evaluate(ev, tree)

    assert matched is True
    assert annotated["result"] is True
    inner = annotated["conditions"][1]
    assert inner["result"] is False
    # the second child of the inner AND was still evaluated
    assert [c["result"] for c in inner["conditions"]] == [False, True]


# ---------------------------------------------------------------------------
# Sensor leaves
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "op,target,expected",
    [
        (">", 20, True),
        (">", 21.5, False),
        (">=", 21.5, True),
        ("<", 22, True),
        ("<=", 21, False),
        ("=", 21.5, True),
        ("==", 21.5, True),
        ("!=", 21.5, False),
    ],
)
def test_sensor_comparisons(event_store, op, target, expected):
    event_store.record("ac:", "temp", None, 21.5)
    matched, annotated = evaluate(evaluator_at(event_store), sensor("ac:temp", op, target))
    assert matched is expected
    assert annotated["actual"] == 21.5


def test_sensor_without_data_never_matches(event_store):
    matched, annotated = evaluate(evaluator_at(event_store), sensor("ac:temp", "<", 100))
    assert matched is False
    assert annotated["actual"] is None


def test_sensor_numeric_strings_are_coerced(event_store):
    event_store.record("ac:", "temp", None, 25)
    assert evaluate(evaluator_at(event_store), sensor("ac:temp", ">", "24.5"))[0] is True


def test_unknown_operator_is_false(event_store):
    event_store.record("ac:", "temp", None, 25)
    assert evaluate(evaluator_at(event_store), sensor("ac:temp", "~", 1))[0] is False


@pytest.mark.parametrize("a_value,expected", [(19.5, True), (19, False), (25, True), (10, False)])
def test_dynamic_reference(event_store, a_value, expected):
    # sensorA > sensorB * 2 - 1  with sensorB = 10  <=>  sensorA > 19
    event_store.record("a:", "temp", None, a_value)
    event_store.record("b:", "temp", None, 10)
    leaf = sensor("a:temp", ">", {"type": "dynamic", "channel": "b:temp", "factor": 2, "offset": -1})

    matched, annotated = evaluate(evaluator_at(event_store), leaf)

    assert matched is expected
    assert annotated["target"] == 19
    assert annotated["actual"] == a_value


def test_dynamic_reference_without_reference_data_uses_zero(event_store):
    event_store.record("a:", "temp", None, 1)
    leaf = sensor("a:temp", ">", {"type": "dynamic", "channel": "b:temp", "offset": 0.5})
    matched, annotated = evaluate(evaluator_at(event_store), leaf)
    assert matched is True
    assert annotated["target"] == 0.5


def test_dynamic_reference_needs_channel():
    with pytest.raises(RuleEvaluationError):
        parse_condition(sensor("a:temp", ">", {"type": "dynamic"}))


def test_non_numeric_literal_raises(event_store):
    event_store.record("ac:", "temp", None, 25)
    with pytest.raises(RuleEvaluationError):
        evaluate(evaluator_at(event_store), sensor("ac:temp", ">", "warm"))


# ---------------------------------------------------------------------------
# Output leaves
# ---------------------------------------------------------------------------


def test_output_leaf_defaults_to_zero(event_store):
    leaf = {"type": "output", "channel": "fan", "operator": "==", "value": 0}
    matched, annotated = evaluate(evaluator_at(event_store), leaf)
    assert matched is True
    assert annotated["actual"] == 0


def test_output_leaf_reads_current_state(event_store):
    event_store.record_output("fan", 1)
    leaf = {"type": "output", "channel": "fan", "operator": "==", "value": True}
    assert evaluate(evaluator_at(event_store), leaf)[0] is True


# ---------------------------------------------------------------------------
# Time and date leaves
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "hour,minute,expected",
    [(21, 59, False), (22, 0, True), (23, 30, True), (3, 0, True), (6, 0, True), (6, 1, False), (12, 0, False)],
)
def test_time_between_wraps_past_midnight(event_store, hour, minute, expected):
    leaf = {"type": "time", "operator": "between", "value": ["22:00", "06:00"]}
    assert evaluate(evaluator_at(event_store, hour, minute), leaf)[0] is expected


@pytest.mark.parametrize("hour,expected", [(7, False), (8, True), (12, True), (18, True), (19, False)])
def test_time_between_same_day(event_store, hour, expected):
    leaf = {"type": "time", "operator": "between", "value": ["08:00", "18:00"]}
    assert evaluate(evaluator_at(event_store, hour), leaf)[0] is expected


def test_time_comparison(event_store):
    leaf = {"type": "time", "operator": ">=", "value": "12:00"}
    assert evaluate(evaluator_at(event_store, 12, 0), leaf)[0] is True
    assert evaluate(evaluator_at(event_store, 11, 59), leaf)[0] is False


def test_time_invalid_literal_raises(event_store):
    leaf = {"type": "time", "operator": "between", "value": ["late"]}
    with pytest.raises(RuleEvaluationError):
        evaluate(evaluator_at(event_store), leaf)


@pytest.mark.parametrize(
    "op,value,expected",
    [
        ("before", "2026-06-16", True),
        ("before", "2026-06-15", False),
        ("after", "2026-06-14", True),
        ("after", "2026-06-15", False),
        ("between", ["2026-06-01", "2026-06-15"], True),
        ("between", ["2026-06-16", "2026-06-30"], False),
        ("=", "2026-06-15", True),
        ("on", "2026-06-15", False),
    ],
)
def test_date_operators(event_store, op, value, expected):
    leaf = {"type": "date", "operator": op, "value": value}
    assert evaluate(evaluator_at(event_store, day=15), leaf)[0] is expected


def test_unknown_condition_type_is_false(event_store):
    matched, annotated = evaluate(evaluator_at(event_store), {"type": "weather", "operator": "=", "value": "rain"})
    assert matched is False
    assert annotated["result"] is False


def test_compare_with_missing_actual():
    assert compare(None, "<", 5) is False
    assert compare(0, "<", 5) is True
