"""
Agent Message Schemas
=====================

Pydantic models for the JSON frames exchanged between agents and the
gateway. Field names on the wire are camelCase (``apiKey``,
``devicePrefix``); models accept either spelling and always serialize with
aliases and without null fields.
"""

from __future__ import annotations

import json
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.domain.exceptions import ProtocolError
from app.enums.agent import CommandAction


class AgentMessage(BaseModel):
    """Base for every frame; unknown fields are ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def encode(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# client -> server
# ---------------------------------------------------------------------------


class AuthRequest(AgentMessage):
    type: Literal["auth"] = "auth"
    api_key: Optional[str] = Field(default=None, alias="apiKey")


class ReadingEntry(BaseModel):
    """One telemetry entry inside a ``data`` frame."""

    model_config = ConfigDict(extra="ignore")

    device: str = Field(..., min_length=1)
    channel: str = Field(..., min_length=1)
    value: Any = None
    data: Any = None


class DataMessage(AgentMessage):
    type: Literal["data"] = "data"
    readings: list[ReadingEntry] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# server -> client
# ---------------------------------------------------------------------------


class AuthResult(AgentMessage):
    type: Literal["auth"] = "auth"
    success: bool
    device_prefix: Optional[str] = Field(default=None, alias="devicePrefix")
    name: Optional[str] = None
    error: Optional[str] = None


class AckMessage(AgentMessage):
    type: Literal["ack"] = "ack"
    count: int = 0


class ErrorMessage(AgentMessage):
    type: Literal["error"] = "error"
    error: str


class CommandMessage(AgentMessage):
    type: Literal["command"] = "command"
    device: str
    action: str = CommandAction.SET_STATE.value
    value: int | float


class PongMessage(AgentMessage):
    type: Literal["pong"] = "pong"


def decode_frame(text: str | bytes) -> dict[str, Any]:
    """Parse one frame into a JSON object or raise :class:`ProtocolError`."""
    try:
        message = json.loads(text)
    except (TypeError, ValueError):
        raise ProtocolError("Invalid JSON") from None
    if not isinstance(message, dict):
        raise ProtocolError("Invalid message")
    return message
