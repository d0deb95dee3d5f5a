"""Event-store value objects: selectors, readings and query points."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, NamedTuple

from app.domain.exceptions import ValidationError
from app.enums.control import EventKind

# Pseudo-device under which output channels are addressed ("output:<channel>")
OUTPUT_DEVICE = "output"


@dataclass(frozen=True)
class EventKey:
    """A ``(device, channel)`` pair; ``device == "output"`` selects an output channel."""

    device: str
    channel: str

    @classmethod
    def parse(cls, selector: str) -> "EventKey":
        """Split ``"ac:tent:temperature"`` at the last colon."""
        device, sep, channel = selector.strip().rpartition(":")
        if not sep or not device or not channel:
            raise ValidationError(f"Invalid selector: {selector!r}", detail={"selector": selector})
        return cls(device, channel)

    @classmethod
    def output(cls, channel: str) -> "EventKey":
        return cls(OUTPUT_DEVICE, channel)

    @property
    def is_output(self) -> bool:
        return self.device == OUTPUT_DEVICE

    def __str__(self) -> str:
        return f"{self.device}:{self.channel}"


@dataclass(frozen=True)
class Reading:
    """A single reading: either a number or an opaque JSON payload.

    ``payload`` holds the already-serialized JSON text; equality of two JSON
    readings is plain string equality of that text, so two encodings of the
    same object with different key order are different readings.
    """

    value: float | None = None
    payload: str | None = None

    @property
    def kind(self) -> EventKind:
        return EventKind.NUMBER if self.value is not None else EventKind.JSON

    @classmethod
    def number(cls, value: float) -> "Reading":
        return cls(value=float(value))

    @classmethod
    def from_payload(cls, data: Any) -> "Reading":
        text = data if isinstance(data, str) else json.dumps(data)
        return cls(payload=text)

    @classmethod
    def from_message(cls, entry: dict[str, Any]) -> "Reading | None":
        """Build a reading from an agent ``data`` entry; None when it carries neither field."""
        value = entry.get("value")
        if value is not None and not isinstance(value, bool) and isinstance(value, (int, float)):
            return cls.number(value)
        if "data" in entry and entry["data"] is not None:
            return cls.from_payload(entry["data"])
        return None


class EventPoint(NamedTuple):
    """One row of a query result: when it started, its value, and its explicit end."""

    timestamp: str
    value: Any
    until: str | None = None

    def as_list(self) -> list[Any]:
        point = [self.timestamp, self.value]
        if self.until:
            point.append(self.until)
        return point
