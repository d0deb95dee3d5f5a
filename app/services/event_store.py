"""
Event Store
===========

Run-length-encoded storage of ``(device, channel) -> value over time`` for
sensor readings and output states.

Recording a reading compares it with the current row of its key (the most
recent row by timestamp). An equal reading only moves that row's ``until``
forward; a different one opens a new row with ``until = NULL``. The previous
row is never closed on insert: the newer timestamp supersedes it, and queries
reconstruct the value in effect at any instant from the last row at or before
it (the *backfill* row).

Storage failures arrive from the repository as
:class:`~app.domain.exceptions.StoreUnavailable`; the store logs them and
degrades to empty reads and no-op writes.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime
from typing import Any, Callable, Iterable

from app.domain.events import EventKey, EventPoint, Reading
from app.domain.exceptions import StoreUnavailable, ValidationError
from app.enums.control import EventKind, RecordOutcome
from app.utils.concurrency import KeyedLock
from app.utils.time import normalize_timestamp, to_iso, utc_now
from infrastructure.database.repositories.events import EventRepository

logger = logging.getLogger(__name__)

EPSILON = sys.float_info.epsilon

Timestamp = datetime | str


def _ts(value: Timestamp) -> str:
    if isinstance(value, datetime):
        return to_iso(value)
    normalized = normalize_timestamp(value)
    if normalized is None:
        raise ValidationError(f"Invalid timestamp: {value!r}")
    return normalized


def _same_reading(row: dict[str, Any], reading: Reading) -> bool:
    if row.get("data_type", EventKind.NUMBER.value) != reading.kind.value:
        return False
    if reading.kind == EventKind.NUMBER:
        last = row.get("value")
        return last is not None and abs(last - reading.value) < EPSILON
    return row.get("data") == reading.payload


def _point_value(row: dict[str, Any]) -> Any:
    if row.get("data_type") == EventKind.JSON.value:
        text = row.get("data")
        try:
            return json.loads(text) if text is not None else None
        except ValueError:
            return text
    return row.get("value")


class EventStore:
    """RLE event store over the ``sensor_events`` / ``output_events`` tables.

    Output channels are addressed with the pseudo-device ``"output"``.
    Read-then-write on one key is serialized with a per-key lock.
    """

    def __init__(self, events: EventRepository, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._events = events
        self._clock = clock
        self._locks = KeyedLock()

    # ------------------------------------------------------------------ writes
    def record(
        self,
        device: str,
        channel: str,
        timestamp: Timestamp | None,
        reading: Reading | float | int,
    ) -> RecordOutcome | None:
        """Apply one sensor reading; returns the outcome, or None if the store is unavailable.

        The ``output`` pseudo-device is reserved for :meth:`record_output`.
        """
        key = EventKey(device, channel)
        if key.is_output:
            raise ValidationError("Output channels are written through record_output", detail={"channel": channel})
        if not isinstance(reading, Reading):
            reading = Reading.number(reading)
        ts = _ts(timestamp if timestamp is not None else self._clock())

        with self._locks.hold(key):
            try:
                return self._record_sensor(device, channel, ts, reading)
            except StoreUnavailable as exc:
                logger.error("Dropping reading for %s: %s", key, exc)
                return None

    def record_output(self, channel: str, value: float, timestamp: Timestamp | None = None) -> RecordOutcome | None:
        """Apply one output state written by the rule engine."""
        key = EventKey.output(channel)
        ts = _ts(timestamp if timestamp is not None else self._clock())

        with self._locks.hold(key):
            try:
                return self._record_output(channel, ts, float(value))
            except StoreUnavailable as exc:
                logger.error("Dropping output state for %s: %s", key, exc)
                return None

    def _record_sensor(self, device: str, channel: str, ts: str, reading: Reading) -> RecordOutcome:
        last = self._events.latest_sensor(device, channel)
        if last is not None and _same_reading(last, reading):
            self._events.extend_sensor(last["id"], ts)
            return RecordOutcome.EXTENDED
        self._events.insert_sensor(ts, device, channel, reading.value, reading.payload, reading.kind.value)
        return RecordOutcome.INSERTED

    def _record_output(self, channel: str, ts: str, value: float) -> RecordOutcome:
        last = self._events.latest_output(channel)
        if last is not None and _same_reading(last, Reading.number(value)):
            self._events.extend_output(last["id"], ts)
            return RecordOutcome.EXTENDED
        self._events.insert_output(ts, channel, value)
        logger.info("Output changed: %s = %s", channel, value)
        return RecordOutcome.INSERTED

    def close(self, device: str, channel: str, timestamp: Timestamp) -> bool:
        """Mark the current row of a key as ended at *timestamp* (explicit expiry before a gap)."""
        key = EventKey(device, channel)
        ts = _ts(timestamp)
        with self._locks.hold(key):
            try:
                if key.is_output:
                    last = self._events.latest_output(channel)
                    if last is None:
                        return False
                    self._events.extend_output(last["id"], ts)
                else:
                    last = self._events.latest_sensor(device, channel)
                    if last is None:
                        return False
                    self._events.extend_sensor(last["id"], ts)
                return True
            except StoreUnavailable as exc:
                logger.error("Could not close %s: %s", key, exc)
                return False

    # ------------------------------------------------------------------- reads
    def query(
        self,
        selectors: EventKey | str | Iterable[EventKey | str],
        since: Timestamp,
        until: Timestamp,
    ) -> dict[str, list[EventPoint]]:
        """Rows in ``(since, until]`` per selector, preceded by the value in effect at *since*.

        Output selectors without any row in effect at *since* get a synthetic
        zero point there; sensors without data get nothing.
        """
        if isinstance(selectors, (EventKey, str)):
            selectors = [selectors]
        keys = [s if isinstance(s, EventKey) else EventKey.parse(s) for s in selectors]
        since_ts, until_ts = _ts(since), _ts(until)

        result: dict[str, list[EventPoint]] = {}
        for key in keys:
            try:
                points = self._query_key(key, since_ts, until_ts)
            except StoreUnavailable as exc:
                logger.error("Query for %s failed: %s", key, exc)
                continue
            if points:
                result[str(key)] = points
        return result

    def _query_key(self, key: EventKey, since: str, until: str) -> list[EventPoint]:
        if key.is_output:
            backfill = self._events.output_backfill(key.channel, since)
            rows = self._events.output_range(key.channel, since, until)
        else:
            backfill = self._events.sensor_backfill(key.device, key.channel, since)
            rows = self._events.sensor_range(key.device, key.channel, since, until)

        points: list[EventPoint] = []
        if backfill is not None:
            points.append(EventPoint(since, _point_value(backfill), backfill.get("until")))
        elif key.is_output:
            points.append(EventPoint(since, 0))
        points.extend(EventPoint(r["timestamp"], _point_value(r), r.get("until")) for r in rows)
        return points

    def latest(self, device: str, channel: str) -> float | None:
        """Latest numeric value of a key; None when there is none."""
        key = EventKey(device, channel)
        try:
            row = self._events.latest_output(channel) if key.is_output else self._events.latest_sensor(device, channel)
        except StoreUnavailable as exc:
            logger.error("Latest value for %s unavailable: %s", key, exc)
            return None
        if row is None or row.get("data_type", EventKind.NUMBER.value) != EventKind.NUMBER.value:
            return None
        return row.get("value")

    def latest_sensor(self, selector: str) -> float | None:
        """Latest value for a ``"device:channel"`` reference as written in rules."""
        try:
            key = EventKey.parse(selector)
        except ValidationError:
            return None
        return self.latest(key.device, key.channel)

    def latest_output(self, channel: str) -> float | None:
        return self.latest(EventKey.output(channel).device, channel)

    def current_outputs(self) -> dict[str, float]:
        try:
            return self._events.current_outputs()
        except StoreUnavailable as exc:
            logger.error("Current output values unavailable: %s", exc)
            return {}

    def sensor_channels(self) -> list[EventKey]:
        try:
            return [EventKey(r["device"], r["channel"]) for r in self._events.sensor_channels()]
        except StoreUnavailable as exc:
            logger.error("Sensor channel list unavailable: %s", exc)
            return []

    def output_channels(self) -> list[str]:
        try:
            return self._events.output_channels()
        except StoreUnavailable as exc:
            logger.error("Output channel list unavailable: %s", exc)
            return []
