"""
Agent Client
============

Reconnecting WebSocket client used by remote agents. A single background
thread owns the connection:

* connect, send ``auth``, and wait for the result;
* on success flush every reading queued while offline (in order), then send
  new readings straight away;
* hand ``command`` frames to the registered handler;
* send an application-level ``pong`` every keepalive interval;
* on disconnect wait ``min(base * 2**attempt, max)`` ms and start over.

A rejected API key stops the client for good; so does :meth:`AgentClient.close`.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Any, Callable, Iterable, Optional

from pydantic import ValidationError as PydanticValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.sync.client import ClientConnection, connect

from app.domain.exceptions import AgentConnectionError, AuthError, ProtocolError
from app.enums.agent import ClientState, MessageType
from app.schemas.messages import (
    AuthRequest,
    AuthResult,
    DataMessage,
    PongMessage,
    ReadingEntry,
    decode_frame,
)

logger = logging.getLogger(__name__)

CommandHandler = Callable[[dict[str, Any]], None]


def reconnect_delay(attempt: int, base_ms: int = 1000, max_ms: int = 60000) -> int:
    """Backoff in milliseconds before reconnect *attempt* (0-based)."""
    if attempt < 0:
        attempt = 0
    # 2**16 already exceeds any sane max/base ratio
    return min(base_ms * (2 ** min(attempt, 16)), max_ms)


def _default_connect(url: str) -> ClientConnection:
    return connect(url, ping_interval=None, open_timeout=10)


class AgentClient:
    def __init__(
        self,
        server_url: str,
        api_key: str,
        *,
        on_command: Optional[CommandHandler] = None,
        reconnect_base_ms: int = 1000,
        reconnect_max_ms: int = 60000,
        keepalive_interval_ms: int = 30000,
        connect_factory: Callable[[str], Any] = _default_connect,
        auto_start: bool = True,
    ) -> None:
        self.server_url = server_url
        self._api_key = api_key
        self._on_command = on_command
        self._base_ms = reconnect_base_ms
        self._max_ms = reconnect_max_ms
        self._keepalive_s = keepalive_interval_ms / 1000.0
        self._connect = connect_factory

        self._lock = threading.Lock()
        self._queue: deque[ReadingEntry] = deque()
        self._connection: Any = None
        self._state = ClientState.DISCONNECTED
        self._attempt = 0

        self._stop = threading.Event()
        self._authenticated = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.device_prefix: Optional[str] = None
        self.name: Optional[str] = None
        self.auth_error: Optional[str] = None

        if auto_start:
            self.start()

    # ------------------------------------------------------------- accessors
    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def authenticated(self) -> bool:
        return self._authenticated.is_set()

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def queued(self) -> int:
        with self._lock:
            return len(self._queue)

    def on_command(self, handler: CommandHandler) -> None:
        self._on_command = handler

    def wait_authenticated(self, timeout: float | None = None) -> bool:
        return self._authenticated.wait(timeout)

    # ------------------------------------------------------------- lifecycle
    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="AgentClient", daemon=True)
        self._thread.start()

    def close(self, timeout: float = 5.0) -> None:
        """Disconnect and stop reconnecting."""
        self._stop.set()
        self._authenticated.clear()
        with self._lock:
            connection = self._connection
        if connection is not None:
            try:
                connection.close()
            except (OSError, WebSocketException) as exc:
                logger.debug("Error while closing: %s", exc)
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._state = ClientState.CLOSED

    # -------------------------------------------------------------- readings
    def send_readings(self, readings: Iterable[dict[str, Any]]) -> bool:
        """Send now when authenticated, otherwise queue; returns True if sent.

        Raises :class:`ProtocolError` for an entry without device or channel.
        """
        try:
            entries = [ReadingEntry.model_validate(r) for r in readings]
        except PydanticValidationError as exc:
            raise ProtocolError(f"Invalid reading: {exc.errors()[0].get('msg')}") from exc
        if not entries:
            return False
        with self._lock:
            if self._authenticated.is_set() and self._connection is not None:
                try:
                    self._send(self._connection, DataMessage(readings=entries).encode())
                    return True
                except AgentConnectionError as exc:
                    logger.warning("Send failed, queueing %d readings: %s", len(entries), exc)
            self._queue.extend(entries)
            return False

    @staticmethod
    def _send(connection: Any, text: str) -> None:
        try:
            connection.send(text)
        except (ConnectionClosed, OSError) as exc:
            raise AgentConnectionError(str(exc)) from exc

    # ------------------------------------------------------------ connection
    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self._session()
            except AuthError as exc:
                logger.error("Authentication failed: %s; not reconnecting", exc)
                self.auth_error = str(exc)
                self._stop.set()
            except AgentConnectionError as exc:
                logger.warning("Connection to %s lost: %s", self.server_url, exc)
            except Exception:
                logger.exception("Unexpected error on connection to %s", self.server_url)
            finally:
                self._authenticated.clear()
                with self._lock:
                    connection, self._connection = self._connection, None
                if connection is not None:
                    try:
                        connection.close()
                    except (OSError, WebSocketException) as exc:
                        logger.debug("Error while closing: %s", exc)
                self._state = ClientState.DISCONNECTED

            if self._stop.is_set():
                break
            delay = reconnect_delay(self._attempt, self._base_ms, self._max_ms)
            self._attempt += 1
            logger.info("Reconnecting in %d ms (attempt %d)", delay, self._attempt)
            self._stop.wait(delay / 1000.0)
        self._state = ClientState.CLOSED

    def _session(self) -> None:
        self._state = ClientState.CONNECTING
        try:
            connection = self._connect(self.server_url)
        except (OSError, TimeoutError, WebSocketException) as exc:
            raise AgentConnectionError(f"Cannot connect: {exc}") from exc

        with self._lock:
            self._connection = connection
        if self._stop.is_set():
            return
        self._state = ClientState.CONNECTED
        self._attempt = 0
        logger.info("Connected to %s", self.server_url)
        self._send(connection, AuthRequest(api_key=self._api_key).encode())

        next_keepalive = time.monotonic() + self._keepalive_s
        while not self._stop.is_set():
            timeout = max(0.0, next_keepalive - time.monotonic())
            try:
                text = connection.recv(timeout=timeout)
            except TimeoutError:
                if self._authenticated.is_set():
                    self._send(connection, PongMessage().encode())
                next_keepalive = time.monotonic() + self._keepalive_s
                continue
            except ConnectionClosed as exc:
                if self._stop.is_set():
                    return
                raise AgentConnectionError(f"Connection closed: {exc}") from exc
            self._handle(connection, text)

    def _handle(self, connection: Any, text: str | bytes) -> None:
        try:
            message = decode_frame(text)
        except ProtocolError as exc:
            logger.warning("Ignoring frame from server: %s", exc)
            return

        kind = message.get("type")
        if kind == MessageType.AUTH.value:
            try:
                result = AuthResult.model_validate(message)
            except PydanticValidationError as exc:
                logger.warning("Ignoring malformed auth reply: %s", exc.errors()[0].get("msg"))
                return
            self._handle_auth(connection, result)
        elif kind == MessageType.COMMAND.value:
            self._handle_command(message)
        elif kind == MessageType.ACK.value:
            logger.debug("Server stored %s readings", message.get("count"))
        elif kind == MessageType.ERROR.value:
            logger.warning("Server error: %s", message.get("error"))
        elif kind == MessageType.PONG.value:
            pass
        else:
            logger.debug("Ignoring message type %r", kind)

    def _handle_auth(self, connection: Any, result: AuthResult) -> None:
        if not result.success:
            raise AuthError(result.error or "Authentication rejected")
        with self._lock:
            if self._queue:
                self._send(connection, DataMessage(readings=list(self._queue)).encode())
                logger.info("Flushed %d queued readings", len(self._queue))
                self._queue.clear()
            self.device_prefix = result.device_prefix
            self.name = result.name
            self._state = ClientState.AUTHENTICATED
            self._authenticated.set()
        logger.info("✅ Authenticated as %s (prefix %r)", self.name, self.device_prefix)

    def _handle_command(self, message: dict[str, Any]) -> None:
        if self._on_command is None:
            logger.debug("No command handler; ignoring %s", message)
            return
        try:
            self._on_command(message)
        except Exception:
            logger.exception("Command handler failed for %s", message)
