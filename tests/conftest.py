"""
Shared test fixtures for the TischlerCtrl test suite.

Provides:
- File-backed SQLite database (in a tmp dir) with all tables created
- Repository instances wired to the test database
- Event store, dispatcher and rule engine built on those repositories
- Fake transports and command senders that record traffic

A file database is used instead of ``:memory:`` because connections are
per-thread and the rule engine runs on its own worker thread.

Usage:
    def test_example(event_store):
        assert event_store.record("ac:", "temp", "2026-01-01T00:00:00Z", 21.5)
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any

import pytest

from app.control_loops.output_dispatcher import OutputDispatcher
from app.control_loops.rule_engine import RuleEngine
from app.domain.exceptions import AgentConnectionError
from app.services.event_store import EventStore
from infrastructure.database.repositories import (
    ApiKeyRepository,
    ChangelogRepository,
    EventRepository,
    OutputConfigRepository,
    RuleRepository,
)
from infrastructure.database.sqlite_handler import SQLiteDatabaseHandler

# ---------------------------------------------------------------------------
# Logging: keep test output clean
# ---------------------------------------------------------------------------
logging.getLogger("infrastructure").setLevel(logging.WARNING)
logging.getLogger("app").setLevel(logging.WARNING)


def ts(minute: int, second: int = 0) -> datetime:
    """Fixed UTC instants on 2026-01-01 12:MM:SS."""
    return datetime(2026, 1, 1, 12, minute, second, tzinfo=timezone.utc)


# ========================== Fakes ==========================================


class FakeCommandSender:
    """Records commands; ``connected`` lists prefixes that accept them."""

    def __init__(self, connected: set[str] | None = None) -> None:
        self.connected = connected if connected is not None else set()
        self.commands: list[tuple[str, dict[str, Any]]] = []

    def send_command(self, device_prefix: str, command: dict[str, Any]) -> bool:
        if device_prefix not in self.connected:
            return False
        self.commands.append((device_prefix, dict(command)))
        return True


class FakeTransport:
    """In-memory stand-in for a WebSocket connection."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self.pings: list[threading.Event] = []
        self.fail_sends = False

    def send(self, text: str) -> None:
        if self.fail_sends or self.closed:
            raise AgentConnectionError("closed")
        self.sent.append(json.loads(text))

    def ping(self) -> threading.Event:
        event = threading.Event()
        self.pings.append(event)
        return event

    def close(self) -> None:
        self.closed = True

    @property
    def last(self) -> dict[str, Any]:
        return self.sent[-1]


class FakeRuleTrigger:
    def __init__(self) -> None:
        self.count = 0

    def trigger(self) -> bool:
        self.count += 1
        return True


class RecordingChangelog:
    def __init__(self) -> None:
        self.entries: list[tuple[str | None, str]] = []

    def insert(self, user: str | None, text: str) -> None:
        self.entries.append((user, text))


# ========================== Database Fixtures ==============================


@pytest.fixture()
def db_handler(tmp_path):
    """SQLite database in a per-test temp directory with all tables created."""
    handler = SQLiteDatabaseHandler(str(tmp_path / "tischler.db"))
    handler.create_tables()
    yield handler
    handler.close_db()


@pytest.fixture()
def event_repo(db_handler):
    return EventRepository(db_handler)


@pytest.fixture()
def rule_repo(db_handler):
    return RuleRepository(db_handler)


@pytest.fixture()
def api_key_repo(db_handler):
    return ApiKeyRepository(db_handler)


@pytest.fixture()
def output_repo(db_handler):
    return OutputConfigRepository(db_handler)


@pytest.fixture()
def changelog_repo(db_handler):
    return ChangelogRepository(db_handler)


# ========================== Service Fixtures ===============================


@pytest.fixture()
def event_store(event_repo):
    return EventStore(event_repo)


@pytest.fixture()
def command_sender():
    return FakeCommandSender()


@pytest.fixture()
def dispatcher(event_store, output_repo, command_sender):
    return OutputDispatcher(event_store, output_repo, command_sender)


@pytest.fixture()
def changelog():
    return RecordingChangelog()


@pytest.fixture()
def rule_engine(rule_repo, output_repo, event_store, dispatcher, changelog):
    engine = RuleEngine(rule_repo, output_repo, event_store, dispatcher, changelog=changelog)
    yield engine
    engine.shutdown()


@pytest.fixture()
def transport():
    return FakeTransport()


@pytest.fixture()
def rule_trigger():
    return FakeRuleTrigger()


@pytest.fixture()
def make_transport():
    return FakeTransport


# ========================== Application Fixtures ===========================


@pytest.fixture()
def app_config(tmp_path):
    from app.config import AppConfig

    return AppConfig(
        environment="testing",
        database_path=str(tmp_path / "server.db"),
        ws_host="127.0.0.1",
        ws_port=0,
        log_dir=str(tmp_path / "logs"),
        audit_log_path=str(tmp_path / "logs" / "changelog.log"),
    )


@pytest.fixture()
def container(app_config):
    """Fully wired service container; nothing is started."""
    from app.services.container import ServiceContainer

    built = ServiceContainer.build(app_config)
    yield built
    built.shutdown()


@pytest.fixture()
def app(container):
    from app import create_app

    flask_app = create_app(container=container)
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture()
def client(app):
    return app.test_client()
