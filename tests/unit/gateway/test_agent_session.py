import json
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from app.domain.exceptions import StoreUnavailable
from app.enums.agent import SessionState
from app.gateway.session import AgentSession
from app.services.event_store import EventStore

RECEIVED_AT = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def api_keys(api_key_repo):
    api_key_repo.create("secret-key", "Tent AC", "ac:")
    return api_key_repo


@pytest.fixture()
def session(transport, api_keys, event_store, rule_trigger):
    s = AgentSession(
        transport,
        api_keys=api_keys,
        store=event_store,
        rules=rule_trigger,
        clock=lambda: RECEIVED_AT,
        remote="10.0.0.5:5000",
    )
    s.open()
    return s


def send(session, message):
    session.handle_message(json.dumps(message))


def authenticate(session, key="secret-key"):
    send(session, {"type": "auth", "apiKey": key})


def test_successful_auth(session, transport, api_keys):
    authenticated = []
    session._on_authenticated = authenticated.append

    authenticate(session)

    assert transport.last == {"type": "auth", "success": True, "devicePrefix": "ac:", "name": "Tent AC"}
    assert session.state == SessionState.AUTHENTICATED
    assert session.device_prefix == "ac:"
    assert authenticated == [session]
    assert api_keys.get("secret-key")["last_used_at"] is not None


def test_missing_api_key(session, transport):
    send(session, {"type": "auth"})
    assert transport.last == {"type": "auth", "success": False, "error": "Missing apiKey"}
    assert session.state == SessionState.AUTHENTICATING


def test_invalid_api_key(session, transport):
    authenticate(session, "wrong")
    assert transport.last == {"type": "auth", "success": False, "error": "Invalid API key"}
    assert not session.authenticated


def test_failed_auth_can_be_retried(session, transport):
    authenticate(session, "wrong")
    authenticate(session)
    assert transport.last["success"] is True


def test_second_auth_is_rejected(session, transport):
    authenticate(session)
    authenticate(session)
    assert transport.last == {"type": "error", "error": "Already authenticated"}
    assert session.authenticated


def test_invalid_json(session, transport):
    session.handle_message("{not json")
    assert transport.last == {"type": "error", "error": "Invalid JSON"}


def test_non_object_frame(session, transport):
    session.handle_message("[1, 2]")
    assert transport.last == {"type": "error", "error": "Invalid message"}


def test_unknown_message_type(session, transport):
    send(session, {"type": "hello"})
    assert transport.last == {"type": "error", "error": "Unknown message type: hello"}


def test_data_before_auth(session, transport, event_store, rule_trigger):
    send(session, {"type": "data", "readings": [{"device": "tent", "channel": "temp", "value": 1}]})

    assert transport.last == {"type": "error", "error": "Not authenticated"}
    assert event_store.sensor_channels() == []
    assert rule_trigger.count == 0


@pytest.mark.parametrize("readings", [None, [], "lots", {"device": "x"}])
def test_invalid_readings(session, transport, readings):
    authenticate(session)
    send(session, {"type": "data", "readings": readings})
    assert transport.last == {"type": "error", "error": "Invalid readings"}


def test_data_is_stored_under_prefix_and_acked(session, transport, event_store, event_repo, rule_trigger):
    authenticate(session)
    send(
        session,
        {
            "type": "data",
            "readings": [
                {"device": "tent", "channel": "temp", "value": 23.5},
                {"device": "tent", "channel": "humidity", "value": 61},
                {"device": "cam", "channel": "meta", "data": {"lux": 300}},
            ],
        },
    )

    assert transport.last == {"type": "ack", "count": 3}
    assert event_store.latest("ac:tent", "temp") == 23.5
    assert event_repo.latest_sensor("ac:tent", "temp")["timestamp"] == "2026-01-01T12:00:00.000+00:00"
    assert event_repo.latest_sensor("ac:cam", "meta")["data"] == '{"lux": 300}'
    assert rule_trigger.count == 1


def test_malformed_entries_are_skipped(session, transport, event_store):
    authenticate(session)
    send(
        session,
        {
            "type": "data",
            "readings": [
                {"device": "tent", "channel": "temp", "value": 20},
                {"device": "", "channel": "temp", "value": 1},
                {"device": "tent", "channel": "nothing"},
                {"device": "tent", "channel": "flag", "value": True},
                "garbage",
            ],
        },
    )

    assert transport.last == {"type": "ack", "count": 1}
    assert [str(k) for k in event_store.sensor_channels()] == ["ac:tent:temp"]


def test_unprefixed_agent_cannot_write_output_states(transport, api_key_repo, event_store, rule_trigger):
    api_key_repo.create("root-key", "Bridge", "")
    session = AgentSession(
        transport, api_keys=api_key_repo, store=event_store, rules=rule_trigger, clock=lambda: RECEIVED_AT
    )
    session.open()
    authenticate(session, "root-key")

    send(
        session,
        {
            "type": "data",
            "readings": [
                {"device": "output", "channel": "fan", "value": 1},
                {"device": "tent", "channel": "temp", "value": 20},
            ],
        },
    )

    assert transport.last == {"type": "ack", "count": 1}
    assert event_store.current_outputs() == {}
    assert event_store.latest("tent", "temp") == 20


def test_store_failure_reports_error_and_skips_rules(transport, api_keys, rule_trigger):
    events = MagicMock()
    events.latest_sensor.side_effect = StoreUnavailable("disk gone")
    session = AgentSession(transport, api_keys=api_keys, store=EventStore(events), rules=rule_trigger)
    session.open()
    authenticate(session)

    send(session, {"type": "data", "readings": [{"device": "tent", "channel": "temp", "value": 20}]})

    assert transport.last == {"type": "error", "error": "Failed to insert readings"}
    assert rule_trigger.count == 0


def test_pong_is_silent(session, transport):
    send(session, {"type": "pong"})
    assert transport.sent == []


def test_send_command_requires_auth(session, transport):
    command = {"device": "fan", "action": "set_state", "value": 1}
    assert session.send_command(command) is False

    authenticate(session)
    assert session.send_command(command) is True
    assert transport.last == {"type": "command", "device": "fan", "action": "set_state", "value": 1}


def test_send_on_closed_socket_reports_failure(session, transport):
    authenticate(session)
    transport.fail_sends = True
    assert session.send_command({"device": "fan", "value": 1}) is False


def test_unanswered_ping_terminates(session, transport):
    assert session.check_alive() is True
    assert len(transport.pings) == 1

    # no pong arrived before the next sweep
    assert session.check_alive() is False
    assert transport.closed
    assert session.state == SessionState.CLOSED


def test_answered_ping_keeps_session(session, transport):
    session.check_alive()
    transport.pings[-1].set()

    assert session.check_alive() is True
    assert len(transport.pings) == 2
    assert not transport.closed
