"""
Agent Gateway
=============

Threaded WebSocket server for remote agents, built on
``websockets.sync.server``: every connection is served on its own thread
and drives one :class:`~app.gateway.session.AgentSession`.

Authenticated sessions are registered under their device prefix; many
sessions may share a prefix. Commands are routed by exact prefix match.
Liveness is driven from outside (the scheduler calls :meth:`ping_all`), so
the library's own keepalive is disabled.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Optional

from websockets.exceptions import ConnectionClosed
from websockets.sync.server import Server, ServerConnection, serve

from app.domain.exceptions import AgentConnectionError
from app.gateway.session import AgentSession
from app.services.event_store import EventStore
from app.utils.concurrency import synchronized
from app.utils.time import utc_now
from infrastructure.database.repositories.api_keys import ApiKeyRepository

if TYPE_CHECKING:
    from app.services.protocols import RuleTrigger

logger = logging.getLogger(__name__)


class WebSocketTransport:
    """Adapts a ``ServerConnection`` to the session's transport interface."""

    def __init__(self, connection: ServerConnection) -> None:
        self._connection = connection

    def send(self, text: str) -> None:
        try:
            self._connection.send(text)
        except ConnectionClosed as exc:
            raise AgentConnectionError(f"Connection closed: {exc}") from exc

    def ping(self) -> threading.Event:
        try:
            return self._connection.ping()
        except ConnectionClosed as exc:
            raise AgentConnectionError(f"Connection closed: {exc}") from exc

    def close(self) -> None:
        self._connection.close()


def _remote(connection: ServerConnection) -> str:
    address = connection.remote_address
    if isinstance(address, tuple) and len(address) >= 2:
        return f"{address[0]}:{address[1]}"
    return str(address)


class AgentGateway:
    def __init__(
        self,
        api_keys: ApiKeyRepository,
        store: EventStore,
        *,
        rules: "RuleTrigger | None" = None,
        host: str = "0.0.0.0",
        port: int = 3962,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._api_keys = api_keys
        self._store = store
        self._rules = rules
        self.host = host
        self.port = port
        self._clock = clock

        self._lock = threading.RLock()
        self._by_prefix: dict[str, set[AgentSession]] = defaultdict(set)
        self._sessions: set[AgentSession] = set()

        self._server: Optional[Server] = None
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------- lifecycle
    def start(self) -> None:
        if self._server is not None:
            logger.warning("Agent gateway already running")
            return
        self._server = serve(self._serve_connection, self.host, self.port, ping_interval=None)
        self.port = self._server.socket.getsockname()[1]
        self._thread = threading.Thread(target=self._server.serve_forever, name="AgentGateway", daemon=True)
        self._thread.start()
        logger.info("✅ Agent gateway listening on ws://%s:%s", self.host, self.port)

    def stop(self, timeout: float = 5.0) -> None:
        server, self._server = self._server, None
        if server is None:
            return
        server.shutdown()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        with self._lock:
            sessions = list(self._sessions)
            self._by_prefix.clear()
            self._sessions.clear()
        for session in sessions:
            session.disconnect()
        logger.info("Agent gateway stopped")

    @property
    def running(self) -> bool:
        return self._server is not None

    # ----------------------------------------------------------- connections
    def create_session(self, transport: Any, remote: str = "?") -> AgentSession:
        session = AgentSession(
            transport,
            api_keys=self._api_keys,
            store=self._store,
            rules=self._rules,
            on_authenticated=self._register,
            clock=self._clock,
            remote=remote,
        )
        with self._lock:
            self._sessions.add(session)
        session.open()
        return session

    def _serve_connection(self, connection: ServerConnection) -> None:
        session = self.create_session(WebSocketTransport(connection), _remote(connection))
        try:
            for message in connection:
                session.handle_message(message)
        except ConnectionClosed as exc:
            logger.debug("Connection %s closed abnormally: %s", session.remote, exc)
        finally:
            self.release(session)

    @synchronized
    def _register(self, session: AgentSession) -> None:
        self._by_prefix[session.device_prefix or ""].add(session)

    @synchronized
    def release(self, session: AgentSession) -> None:
        """Forget a session whose socket has closed."""
        self._sessions.discard(session)
        prefix = session.device_prefix or ""
        members = self._by_prefix.get(prefix)
        if members is not None:
            members.discard(session)
            if not members:
                del self._by_prefix[prefix]
        session.closed()

    # -------------------------------------------------------------- commands
    def send_command(self, device_prefix: str, command: dict[str, Any]) -> bool:
        """Send to every authenticated session of exactly *device_prefix*."""
        with self._lock:
            targets = list(self._by_prefix.get(device_prefix, ()))
        if not targets:
            logger.warning("No agent connected for prefix %r; command dropped: %s", device_prefix, command)
            return False
        delivered = False
        for session in targets:
            if session.send_command(command):
                delivered = True
        if delivered:
            logger.debug("Command -> %s: %s", device_prefix, command)
        return delivered

    def ping_all(self) -> int:
        """Liveness sweep; returns the number of sessions still considered alive."""
        with self._lock:
            sessions = list(self._sessions)
        alive = 0
        for session in sessions:
            if session.check_alive():
                alive += 1
            else:
                self.release(session)
        return alive

    @synchronized
    def connection_counts(self) -> dict[str, int]:
        return {prefix: len(members) for prefix, members in self._by_prefix.items() if members}

    @synchronized
    def session_count(self) -> int:
        return len(self._sessions)
