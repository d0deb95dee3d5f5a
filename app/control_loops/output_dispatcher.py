"""
Output Dispatcher
=================

Writes desired output values through the event store and turns genuine state
changes into ``set_state`` commands for bound devices. Unchanged values only
extend the current output row, so outbound traffic is bounded by the number
of transitions. A periodic sync re-sends every non-zero bound output so that
a freshly (re)connected agent converges within one sync interval.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from app.domain.exceptions import DeliveryFailure
from app.domain.outputs import Binding
from app.enums.control import RecordOutcome
from app.services.event_store import EventStore
from infrastructure.database.repositories.outputs import OutputConfigRepository

if TYPE_CHECKING:
    from app.services.protocols import CommandSender

logger = logging.getLogger(__name__)


class OutputDispatcher:
    def __init__(
        self,
        store: EventStore,
        outputs: OutputConfigRepository,
        sender: "CommandSender | None" = None,
    ) -> None:
        self._store = store
        self._outputs = outputs
        self._sender = sender

    def bind_sender(self, sender: "CommandSender") -> None:
        self._sender = sender

    def write_output_value(self, channel: str, value: float) -> RecordOutcome | None:
        """Record *value* for *channel*; command the bound device only on a change."""
        outcome = self._store.record_output(channel, value)
        if outcome != RecordOutcome.INSERTED:
            return outcome

        binding = self._outputs.bindings().get(channel)
        if binding is None:
            return outcome
        logger.debug(
            "Binding for %s: kind=%s value=%s device_value=%s",
            channel,
            binding.kind.value,
            value,
            binding.device_value(value),
        )
        try:
            self._deliver(binding, value)
        except DeliveryFailure as exc:
            logger.warning("%s", exc)
        return outcome

    def sync_output_states(self) -> int:
        """Re-send commands for every bound, non-zero output; returns the number delivered."""
        bindings = self._outputs.bindings()
        delivered = 0
        for channel, value in self._store.current_outputs().items():
            if value is None or value <= 0:
                continue
            binding = bindings.get(channel)
            if binding is None:
                continue
            try:
                self._deliver(binding, value)
                delivered += 1
            except DeliveryFailure as exc:
                logger.error(
                    "Sync: cannot deliver %s -> %s%s: %s",
                    channel,
                    binding.device_prefix,
                    binding.device_channel,
                    exc,
                )
        return delivered

    def desired_device_states(self) -> dict[str, dict[str, Any]]:
        """Per bound device channel: the on/off state its output currently asks for."""
        current = self._store.current_outputs()
        states: dict[str, dict[str, Any]] = {}
        for channel, binding in self._outputs.bindings().items():
            value = current.get(channel) or 0
            states[f"{binding.device_prefix}{binding.device_channel}"] = {
                "state": 1 if value > 0 else 0,
                "value": binding.device_value(value),
                "source": channel,
            }
        return states

    def _deliver(self, binding: Binding, value: float) -> None:
        if self._sender is None:
            raise DeliveryFailure("No command sender attached", detail={"prefix": binding.device_prefix})
        command = binding.command(value)
        if not self._sender.send_command(binding.device_prefix, command):
            raise DeliveryFailure(
                f"No connected agent for prefix {binding.device_prefix}",
                detail={"prefix": binding.device_prefix, "command": command},
            )
