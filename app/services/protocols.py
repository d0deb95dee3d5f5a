"""
Service protocols (structural typing interfaces).

Protocols let consumer services declare the *minimal* surface they depend on
without importing the concrete class. This breaks the natural cycle between
the gateway (which triggers rule runs), the rule engine (which writes
outputs) and the dispatcher (which sends commands through the gateway), and
lets tests pass in plain fakes.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol, runtime_checkable


@runtime_checkable
class CommandSender(Protocol):
    """Anything that can deliver a command to the agents of one device prefix."""

    def send_command(self, device_prefix: str, command: Dict[str, Any]) -> bool:
        """Return True if at least one live agent accepted the command."""
        ...


@runtime_checkable
class RuleTrigger(Protocol):
    """Anything that can be asked to (re)run the rules soon."""

    def trigger(self) -> bool:
        ...


@runtime_checkable
class ChangelogWriter(Protocol):
    def insert(self, user: Optional[str], text: str) -> None:
        ...
