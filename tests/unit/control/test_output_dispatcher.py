import pytest

from app.control_loops.output_dispatcher import OutputDispatcher
from app.domain.outputs import Binding
from app.enums.control import BindingKind, RecordOutcome


@pytest.fixture()
def bound(output_repo, command_sender):
    output_repo.save("light", device="tapo:", device_channel="plug1")
    output_repo.save("fan", value_type="number", max_value=10, device="ac", device_channel="fan")
    output_repo.save("heater")  # configured but unbound
    command_sender.connected.update({"tapo:", "ac:"})
    return output_repo


def test_command_only_on_change(dispatcher, bound, command_sender):
    assert dispatcher.write_output_value("light", 1) == RecordOutcome.INSERTED
    assert dispatcher.write_output_value("light", 1) == RecordOutcome.EXTENDED
    assert dispatcher.write_output_value("light", 0) == RecordOutcome.INSERTED

    assert command_sender.commands == [
        ("tapo:", {"device": "plug1", "action": "set_state", "value": 1}),
        ("tapo:", {"device": "plug1", "action": "set_state", "value": 0}),
    ]


def test_switch_binding_clamps_to_on_off(dispatcher, bound, command_sender):
    dispatcher.write_output_value("light", 0.4)
    assert command_sender.commands[-1][1]["value"] == 1


def test_level_binding_passes_value_through(dispatcher, bound, command_sender):
    dispatcher.write_output_value("fan", 7)
    assert command_sender.commands == [("ac:", {"device": "fan", "action": "set_state", "value": 7.0})]


def test_unbound_output_is_only_recorded(dispatcher, bound, command_sender, event_store):
    assert dispatcher.write_output_value("heater", 1) == RecordOutcome.INSERTED
    assert command_sender.commands == []
    assert event_store.latest_output("heater") == 1.0


def test_disconnected_agent_does_not_block_recording(dispatcher, bound, command_sender, event_store):
    command_sender.connected.clear()

    assert dispatcher.write_output_value("light", 1) == RecordOutcome.INSERTED
    assert event_store.latest_output("light") == 1.0
    assert command_sender.commands == []


def test_no_sender_attached(event_store, bound):
    dispatcher = OutputDispatcher(event_store, bound)
    assert dispatcher.write_output_value("light", 1) == RecordOutcome.INSERTED


def test_sync_resends_only_non_zero_bound_outputs(dispatcher, bound, command_sender, event_store):
    event_store.record_output("light", 1)
    event_store.record_output("fan", 0)
    event_store.record_output("heater", 1)

    assert dispatcher.sync_output_states() == 1
    assert command_sender.commands == [("tapo:", {"device": "plug1", "action": "set_state", "value": 1})]


def test_sync_counts_only_delivered(dispatcher, bound, command_sender, event_store):
    event_store.record_output("light", 1)
    event_store.record_output("fan", 3)
    command_sender.connected.discard("ac:")

    assert dispatcher.sync_output_states() == 1


def test_desired_device_states(dispatcher, bound, event_store):
    event_store.record_output("fan", 4)

    assert dispatcher.desired_device_states() == {
        "tapo:plug1": {"state": 0, "value": 0, "source": "light"},
        "ac:fan": {"state": 1, "value": 4.0, "source": "fan"},
    }


def test_binding_from_row():
    row = {"channel": "pump", "device": "esp", "device_channel": "relay2", "value_type": "boolean"}
    binding = Binding.from_row(row)

    assert binding == Binding("pump", "esp:", "relay2", BindingKind.SWITCH)
    assert Binding.from_row({"channel": "pump", "device": "esp", "device_channel": ""}) is None
    assert Binding.from_row({"channel": "pump", "device": None, "device_channel": "x"}) is None
