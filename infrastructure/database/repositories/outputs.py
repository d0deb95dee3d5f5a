from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from app.domain.outputs import Binding, OutputChannel
from infrastructure.database.ops.outputs import OutputConfigOperations

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutputConfigRepository:
    """Read-side view of output configuration: channel list and device bindings."""

    _backend: OutputConfigOperations

    def channels(self) -> list[OutputChannel]:
        result = []
        for row in self._backend.get_output_configs():
            try:
                result.append(OutputChannel.from_row(row))
            except ValueError:
                logger.warning(
                    "Skipping output config %s with unknown value_type %r", row.get("channel"), row.get("value_type")
                )
        return result

    def bindings(self) -> dict[str, Binding]:
        result: dict[str, Binding] = {}
        for row in self._backend.get_output_configs():
            binding = Binding.from_row(row)
            if binding is not None:
                result[binding.output_channel] = binding
        return result

    def save(self, channel: str, **fields: Any) -> bool:
        return self._backend.upsert_output_config(channel, **fields)
