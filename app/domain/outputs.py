"""Output channel definitions and their bindings to physical devices."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from app.enums.agent import CommandAction
from app.enums.control import BindingKind, OutputValueType


@dataclass(frozen=True)
class OutputChannel:
    channel: str
    value_type: OutputValueType
    min_value: float | None = None
    max_value: float | None = None
    description: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "OutputChannel":
        return cls(
            channel=row["channel"],
            value_type=OutputValueType(row.get("value_type") or OutputValueType.BOOLEAN.value),
            min_value=row.get("min_value"),
            max_value=row.get("max_value"),
            description=row.get("description"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "type": self.value_type.value,
            "min": self.min_value,
            "max": self.max_value,
            "description": self.description,
        }


@dataclass(frozen=True)
class Binding:
    """Maps a logical output channel onto ``device_prefix`` + ``device_channel``."""

    output_channel: str
    device_prefix: str
    device_channel: str
    kind: BindingKind

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Binding | None":
        device = (row.get("device") or "").strip()
        device_channel = (row.get("device_channel") or "").strip()
        if not device or not device_channel:
            return None
        prefix = device if device.endswith(":") else f"{device}:"
        value_type = row.get("value_type") or OutputValueType.BOOLEAN.value
        kind = BindingKind.LEVEL if value_type == OutputValueType.NUMBER.value else BindingKind.SWITCH
        return cls(row["channel"], prefix, device_channel, kind)

    def device_value(self, value: float) -> float:
        """Value as the device expects it: switches only know 0 and 1."""
        if self.kind == BindingKind.SWITCH:
            return 1 if value > 0 else 0
        return value

    def command(self, value: float) -> dict[str, Any]:
        return {
            "device": self.device_channel,
            "action": CommandAction.SET_STATE.value,
            "value": self.device_value(value),
        }
