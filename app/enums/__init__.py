"""
Enums Module
============

Enumeration types shared by the event store, the rule engine and the agent
protocol.
"""

from app.enums.agent import ClientState, CommandAction, MessageType, SessionState
from app.enums.control import (
    BindingKind,
    ChangelogUser,
    ConditionType,
    EventKind,
    GroupOperator,
    OutputValueType,
    RecordOutcome,
)

__all__ = [
    "BindingKind",
    "ChangelogUser",
    "ClientState",
    "CommandAction",
    "ConditionType",
    "EventKind",
    "GroupOperator",
    "MessageType",
    "OutputValueType",
    "RecordOutcome",
    "SessionState",
]
