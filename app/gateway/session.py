"""
Agent Session
=============

Per-connection state machine for one agent socket::

    CONNECTED -> AUTHENTICATING -> AUTHENTICATED -> CLOSED

The session never closes the socket on protocol errors; it replies with an
``error`` frame and keeps going. The only forced close is a missed
liveness ping (see :meth:`AgentSession.check_alive`).
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol

from pydantic import ValidationError as PydanticValidationError

from app.domain.events import Reading
from app.domain.exceptions import AgentConnectionError, ProtocolError, ValidationError
from app.enums.agent import MessageType, SessionState
from app.enums.control import RecordOutcome
from app.schemas.messages import (
    AckMessage,
    AgentMessage,
    AuthResult,
    CommandMessage,
    ErrorMessage,
    ReadingEntry,
    decode_frame,
)
from app.services.event_store import EventStore
from app.utils.time import utc_now
from infrastructure.database.repositories.api_keys import ApiKeyRepository

if TYPE_CHECKING:
    from app.services.protocols import RuleTrigger

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """What a session needs from its socket."""

    def send(self, text: str) -> None:
        """Raise :class:`AgentConnectionError` when the socket is gone."""
        ...

    def ping(self) -> threading.Event:
        """Send a transport ping; the event is set once the pong arrives."""
        ...

    def close(self) -> None:
        ...


class AgentSession:
    def __init__(
        self,
        transport: Transport,
        *,
        api_keys: ApiKeyRepository,
        store: EventStore,
        rules: "RuleTrigger | None" = None,
        on_authenticated: Callable[["AgentSession"], None] | None = None,
        clock: Callable[[], datetime] = utc_now,
        remote: str = "?",
    ) -> None:
        self._transport = transport
        self._api_keys = api_keys
        self._store = store
        self._rules = rules
        self._on_authenticated = on_authenticated
        self._clock = clock
        self.remote = remote

        self.state = SessionState.CONNECTED
        self.device_prefix: Optional[str] = None
        self.name: Optional[str] = None
        self._pending_ping: threading.Event | None = None

    @property
    def authenticated(self) -> bool:
        return self.state == SessionState.AUTHENTICATED

    # --------------------------------------------------------------- lifecycle
    def open(self) -> None:
        self.state = SessionState.AUTHENTICATING
        logger.info("Agent connected from %s", self.remote)

    def closed(self) -> None:
        if self.state == SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        logger.info("Agent disconnected: %s (%s)", self.name or "unauthenticated", self.remote)

    def disconnect(self) -> None:
        self._transport.close()
        self.closed()

    def check_alive(self) -> bool:
        """Ping the agent; False (and the socket closed) if the last ping went unanswered."""
        if self.state == SessionState.CLOSED:
            return False
        if self._pending_ping is not None and not self._pending_ping.is_set():
            logger.warning("Terminating unresponsive agent %s (%s)", self.name or "unauthenticated", self.remote)
            self.disconnect()
            return False
        try:
            self._pending_ping = self._transport.ping()
        except AgentConnectionError as exc:
            logger.debug("Ping to %s failed: %s", self.remote, exc)
            return False
        return True

    # ---------------------------------------------------------------- messages
    def handle_message(self, text: str | bytes) -> None:
        try:
            message = decode_frame(text)
            self._dispatch(message)
        except ProtocolError as exc:
            self._send(ErrorMessage(error=str(exc)))

    def _dispatch(self, message: dict[str, Any]) -> None:
        kind = message.get("type")
        if kind == MessageType.AUTH.value:
            self._handle_auth(message)
        elif kind == MessageType.DATA.value:
            self._handle_data(message)
        elif kind == MessageType.PONG.value:
            pass
        else:
            raise ProtocolError(f"Unknown message type: {kind}")

    def _handle_auth(self, message: dict[str, Any]) -> None:
        if self.authenticated:
            raise ProtocolError("Already authenticated")

        api_key = message.get("apiKey")
        if not api_key or not isinstance(api_key, str):
            self._send(AuthResult(success=False, error="Missing apiKey"))
            return

        record = self._api_keys.validate(api_key)
        if record is None:
            logger.warning("Rejected API key from %s", self.remote)
            self._send(AuthResult(success=False, error="Invalid API key"))
            return

        self.device_prefix = record.get("device_prefix") or ""
        self.name = record.get("name")
        self.state = SessionState.AUTHENTICATED
        if self._on_authenticated is not None:
            self._on_authenticated(self)
        logger.info("✅ Agent authenticated: %s (prefix %r)", self.name, self.device_prefix)
        self._send(AuthResult(success=True, device_prefix=self.device_prefix, name=self.name))

    def _handle_data(self, message: dict[str, Any]) -> None:
        if not self.authenticated:
            raise ProtocolError("Not authenticated")

        readings = message.get("readings")
        if not isinstance(readings, list) or not readings:
            raise ProtocolError("Invalid readings")

        received_at = self._clock()
        count = 0
        unavailable = False
        for raw in readings:
            entry = self._entry(raw)
            if entry is None:
                continue
            reading = Reading.from_message(entry.model_dump())
            if reading is None:
                continue
            try:
                outcome = self._store.record(self.device_prefix + entry.device, entry.channel, received_at, reading)
            except ValidationError as exc:
                logger.debug("Dropping entry from %s: %s", self.name, exc)
                continue
            if outcome is None:
                unavailable = True
            elif outcome in (RecordOutcome.INSERTED, RecordOutcome.EXTENDED):
                count += 1

        if unavailable:
            raise ProtocolError("Failed to insert readings")

        if self._rules is not None:
            self._rules.trigger()
        self._send(AckMessage(count=count))

    @staticmethod
    def _entry(raw: Any) -> ReadingEntry | None:
        if not isinstance(raw, dict):
            return None
        try:
            return ReadingEntry.model_validate(raw)
        except PydanticValidationError:
            return None

    # ---------------------------------------------------------------- outbound
    def send_command(self, command: dict[str, Any]) -> bool:
        if not self.authenticated:
            return False
        return self._send(CommandMessage(**command))

    def _send(self, message: AgentMessage) -> bool:
        try:
            self._transport.send(message.encode())
            return True
        except AgentConnectionError as exc:
            logger.debug("Send to %s failed: %s", self.remote, exc)
            return False
