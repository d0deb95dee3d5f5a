"""
End-to-end: a real agent client talks to the real gateway over loopback.

Telemetry in -> rule match -> output change -> command back to the agent.
"""

import time

import pytest

from app.agent.client import AgentClient
from app.enums.agent import ClientState


def wait_for(predicate, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


@pytest.fixture()
def server(container):
    container.api_key_repo.create("ac-key", "Tent AC", "ac:")
    container.output_repo.save("fan", device="ac:", device_channel="fan")
    container.rule_repo.create(
        "Fan when hot",
        {"operator": "AND", "conditions": [{"type": "sensor", "channel": "ac:tent:temp", "operator": ">", "value": 25}]},
        {"channel": "fan", "value": 1},
    )
    container.gateway.start()
    yield container
    container.gateway.stop()


@pytest.fixture()
def agent_factory(server):
    clients = []

    def make(api_key="ac-key", **kwargs):
        client = AgentClient(
            f"ws://127.0.0.1:{server.gateway.port}",
            api_key,
            reconnect_base_ms=50,
            reconnect_max_ms=200,
            **kwargs,
        )
        clients.append(client)
        return client

    yield make
    for client in clients:
        client.close()


def test_telemetry_drives_commands(server, agent_factory):
    commands = []
    agent = agent_factory(on_command=commands.append)
    assert agent.wait_authenticated(10)
    assert agent.device_prefix == "ac:"
    assert wait_for(lambda: server.gateway.connection_counts() == {"ac:": 1})

    agent.send_readings([{"device": "tent", "channel": "temp", "value": 30}])

    assert wait_for(lambda: commands)
    assert commands[0] == {"type": "command", "device": "fan", "action": "set_state", "value": 1}
    assert server.event_store.latest("ac:tent", "temp") == 30
    assert server.event_store.latest_output("fan") == 1

    # cooling down switches the fan off again
    agent.send_readings([{"device": "tent", "channel": "temp", "value": 20}])
    assert wait_for(lambda: len(commands) == 2)
    assert commands[1]["value"] == 0

    server.rule_engine.wait_idle(timeout=5)
    changelog = [entry["text"] for entry in server.changelog_repo.recent(10)]
    assert 'Rule "Fan when hot" activated' in changelog
    assert 'Rule "Fan when hot" deactivated' in changelog


def test_readings_sent_before_auth_are_delivered(server, agent_factory):
    agent = agent_factory(auto_start=False)
    agent.send_readings([{"device": "tent", "channel": "humidity", "value": 55}])
    agent.start()

    assert agent.wait_authenticated(10)
    assert wait_for(lambda: server.event_store.latest("ac:tent", "humidity") == 55)


def test_sync_resends_current_state(server, agent_factory):
    server.event_store.record_output("fan", 1)
    commands = []
    agent = agent_factory(on_command=commands.append)
    assert agent.wait_authenticated(10)
    assert wait_for(lambda: server.gateway.connection_counts() == {"ac:": 1})

    assert server.output_dispatcher.sync_output_states() == 1
    assert wait_for(lambda: commands)
    assert commands[0]["device"] == "fan"


def test_bad_key_is_rejected_for_good(server, agent_factory):
    agent = agent_factory(api_key="nope")
    assert wait_for(lambda: agent.state == ClientState.CLOSED)
    assert agent.auth_error == "Invalid API key"
    assert server.gateway.connection_counts() == {}


def test_ping_sweep_keeps_responsive_agents(server, agent_factory):
    agent = agent_factory()
    assert agent.wait_authenticated(10)
    assert wait_for(lambda: server.gateway.session_count() == 1)

    assert server.gateway.ping_all() == 1
    time.sleep(0.3)
    assert server.gateway.ping_all() == 1
    assert agent.authenticated


def test_agent_reconnects_after_gateway_restart(server, agent_factory):
    agent = agent_factory()
    assert agent.wait_authenticated(10)

    server.gateway.stop()
    assert wait_for(lambda: not agent.authenticated)

    server.gateway.start()
    assert agent.wait_authenticated(10)
    assert wait_for(lambda: server.gateway.connection_counts() == {"ac:": 1})
