import threading
from datetime import datetime, timezone

import pytest

from app.control_loops.rule_engine import RuleEngine

ALWAYS = {"operator": "AND", "conditions": []}


def warm(threshold=25):
    return {"type": "sensor", "channel": "ac:temp", "operator": ">", "value": threshold}


@pytest.fixture()
def outputs(output_repo):
    output_repo.save("light", device="tapo", device_channel="plug1")
    output_repo.save("fan", value_type="number", max_value=10, device="ac:", device_channel="fan_speed")
    return output_repo


def test_every_configured_output_defaults_off(rule_engine, outputs, event_store):
    desired = rule_engine.run()

    assert desired == {"light": 0, "fan": 0}
    assert event_store.current_outputs() == {"light": 0.0, "fan": 0.0}
    assert rule_engine.active_rule_ids == frozenset()
    assert rule_engine.last_run_at is not None


def test_later_rule_overrides_earlier(rule_engine, outputs, rule_repo):
    first = rule_repo.create("Light on", ALWAYS, {"channel": "light", "value": 1}, position=0)
    second = rule_repo.create("Light off", ALWAYS, {"channel": "light", "value": 0}, position=1)

    desired = rule_engine.run()

    assert desired["light"] == 0
    assert rule_engine.active_rule_ids == {first, second}


def test_position_orders_rules_not_insertion(rule_engine, outputs, rule_repo):
    rule_repo.create("Light off", ALWAYS, {"channel": "light", "value": 0}, position=5)
    rule_repo.create("Light on", ALWAYS, {"channel": "light", "value": 1}, position=1)

    assert rule_engine.run()["light"] == 0


def test_non_matching_rule_leaves_default(rule_engine, outputs, rule_repo, event_store):
    rule_id = rule_repo.create("Fan when warm", warm(), {"channel": "fan", "value": 7})
    event_store.record("ac:", "temp", None, 22)

    assert rule_engine.run()["fan"] == 0
    assert rule_engine.rule_statuses[rule_id]["result"] is False

    event_store.record("ac:", "temp", None, 26)
    assert rule_engine.run()["fan"] == 7
    assert rule_engine.rule_statuses[rule_id]["actual"] == 26


def test_calculated_action_value(rule_engine, outputs, rule_repo, event_store):
    event_store.record("a:", "temp", None, 25)
    event_store.record("b:", "temp", None, 20)
    action = {
        "channel": "fan",
        "value": {"type": "calculated", "sensorA": "a:temp", "sensorB": "b:temp", "factor": 2, "offset": 1},
    }
    rule_repo.create("Fan follows delta", ALWAYS, action)

    assert rule_engine.run()["fan"] == 11


def test_calculated_action_without_sensor_b(rule_engine, outputs, rule_repo, event_store):
    event_store.record("a:", "temp", None, 3)
    rule_repo.create("Scaled", ALWAYS, {"channel": "fan", "value": {"type": "calculated", "sensorA": "a:temp"}})

    assert rule_engine.run()["fan"] == 3


def test_boolean_action_value(rule_engine, outputs, rule_repo):
    rule_repo.create("Light", ALWAYS, {"channel": "light", "value": True})
    assert rule_engine.run()["light"] == 1.0


def test_rule_without_action_only_reports_activity(rule_engine, outputs, rule_repo):
    rule_id = rule_repo.create("Watcher", ALWAYS, {})
    assert rule_engine.run() == {"light": 0, "fan": 0}
    assert rule_id in rule_engine.active_rule_ids


def test_broken_rule_is_skipped(rule_engine, outputs, rule_repo):
    rule_repo.create("Broken", ["not", "a", "tree"], {"channel": "light", "value": 1}, position=0)
    rule_repo.create("Bad value", ALWAYS, {"channel": "fan", "value": "max"}, position=1)
    good = rule_repo.create("Good", ALWAYS, {"channel": "light", "value": 1}, position=2)

    desired = rule_engine.run()

    assert desired == {"light": 1, "fan": 0}
    assert rule_engine.active_rule_ids == {good}


def test_disabled_rule_is_ignored(rule_engine, outputs, rule_repo):
    rule_repo.create("Off", ALWAYS, {"channel": "light", "value": 1}, enabled=False)
    assert rule_engine.run()["light"] == 0


def test_activation_changes_go_to_changelog(rule_engine, outputs, rule_repo, changelog):
    rule_id = rule_repo.create("Night light", ALWAYS, {"channel": "light", "value": 1})

    rule_engine.run()
    rule_engine.run()
    rule_repo.set_enabled(rule_id, False)
    rule_engine.run()

    assert changelog.entries == [
        ("system", 'Rule "Night light" activated'),
        ("system", 'Rule "Night light" deactivated'),
    ]


def test_changed_outputs_are_commanded_once(rule_engine, outputs, rule_repo, command_sender):
    command_sender.connected.update({"tapo:", "ac:"})
    rule_repo.create("Light on", ALWAYS, {"channel": "light", "value": 1})

    rule_engine.run()
    rule_engine.run()

    # the fan write is 0 on an empty channel: inserted, so it is commanded too
    assert command_sender.commands == [
        ("tapo:", {"device": "plug1", "action": "set_state", "value": 1}),
        ("ac:", {"device": "fan_speed", "action": "set_state", "value": 0}),
    ]


def test_trigger_runs_on_worker(rule_engine, outputs, rule_repo):
    rule_repo.create("Light on", ALWAYS, {"channel": "light", "value": 1})

    assert rule_engine.trigger() is True
    rule_engine.wait_idle(timeout=5)

    assert rule_engine.last_run_at is not None
    assert len(rule_engine.active_rule_ids) == 1


def test_trigger_coalesces_requests(rule_repo, output_repo, event_store, dispatcher):
    runs = []
    release = threading.Event()

    class GatedEngine(RuleEngine):
        def run(self):
            runs.append(1)
            release.wait(5)
            return super().run()

    engine = GatedEngine(rule_repo, output_repo, event_store, dispatcher)
    try:
        for _ in range(20):
            engine.trigger()
        release.set()
        engine.wait_idle(timeout=5)
    finally:
        engine.shutdown()

    # at most one run in progress plus one queued behind it
    assert len(runs) in (1, 2)


def test_trigger_after_shutdown_is_refused(rule_repo, output_repo, event_store, dispatcher):
    engine = RuleEngine(rule_repo, output_repo, event_store, dispatcher)
    engine.shutdown()
    assert engine.trigger() is False


def test_last_run_uses_clock(rule_repo, output_repo, event_store, dispatcher):
    now = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)
    engine = RuleEngine(rule_repo, output_repo, event_store, dispatcher, clock=lambda: now)
    try:
        engine.run()
        assert engine.last_run_at == now
    finally:
        engine.shutdown()
