from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from infrastructure.database.ops.events import EventOperations


@dataclass(frozen=True)
class EventRepository:
    """Row-level access to the sensor and output event streams.

    Every method may raise :class:`~app.domain.exceptions.StoreUnavailable`.
    """

    _backend: EventOperations

    # sensors
    def latest_sensor(self, device: str, channel: str) -> dict[str, Any] | None:
        return self._backend.get_latest_sensor_event(device, channel)

    def insert_sensor(
        self, timestamp: str, device: str, channel: str, value: float | None, data: str | None, data_type: str
    ) -> int:
        return self._backend.insert_sensor_event(timestamp, device, channel, value, data, data_type)

    def extend_sensor(self, event_id: int, until: str) -> None:
        self._backend.set_sensor_event_until(event_id, until)

    def sensor_range(self, device: str, channel: str, since: str, until: str) -> list[dict[str, Any]]:
        return self._backend.get_sensor_events_between(device, channel, since, until)

    def sensor_backfill(self, device: str, channel: str, since: str) -> dict[str, Any] | None:
        return self._backend.get_sensor_backfill(device, channel, since)

    def sensor_channels(self) -> list[dict[str, str]]:
        return self._backend.get_sensor_channels()

    def count_sensor(self, device: str, channel: str) -> int:
        return self._backend.count_sensor_events(device, channel)

    # outputs
    def latest_output(self, channel: str) -> dict[str, Any] | None:
        return self._backend.get_latest_output_event(channel)

    def insert_output(self, timestamp: str, channel: str, value: float) -> int:
        return self._backend.insert_output_event(timestamp, channel, value)

    def extend_output(self, event_id: int, until: str) -> None:
        self._backend.set_output_event_until(event_id, until)

    def output_range(self, channel: str, since: str, until: str) -> list[dict[str, Any]]:
        return self._backend.get_output_events_between(channel, since, until)

    def output_backfill(self, channel: str, since: str) -> dict[str, Any] | None:
        return self._backend.get_output_backfill(channel, since)

    def current_outputs(self) -> dict[str, float]:
        return self._backend.get_current_output_values()

    def output_channels(self) -> list[str]:
        return self._backend.get_output_event_channels()
