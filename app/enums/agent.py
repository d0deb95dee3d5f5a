from enum import Enum


class MessageType(str, Enum):
    """WebSocket message ``type`` values exchanged between agents and gateway."""

    AUTH = "auth"
    DATA = "data"
    ACK = "ack"
    ERROR = "error"
    COMMAND = "command"
    PONG = "pong"


class CommandAction(str, Enum):
    SET_STATE = "set_state"


class SessionState(str, Enum):
    """Gateway-side state of one agent connection."""

    CONNECTED = "connected"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


class ClientState(str, Enum):
    """Agent-side connection state."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"
