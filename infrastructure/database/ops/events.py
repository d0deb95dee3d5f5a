from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from app.domain.exceptions import StoreUnavailable

logger = logging.getLogger(__name__)


def _unavailable(operation: str, exc: sqlite3.Error) -> StoreUnavailable:
    logger.debug("%s failed: %s", operation, exc)
    return StoreUnavailable(f"{operation} failed", detail={"error": str(exc)})


class EventOperations:
    """Database operations for the sensor_events and output_events tables.

    Unlike the other mixins these raise :class:`StoreUnavailable` instead of
    returning a default, so the event store can tell "no data" apart from
    "database gone".
    """

    # --- sensor_events -------------------------------------------------------
    def get_latest_sensor_event(self, device: str, channel: str) -> Optional[Dict[str, Any]]:
        try:
            row = self.get_db().execute(
                """
                SELECT id, timestamp, until, value, data, data_type
                FROM sensor_events
                WHERE device = ? AND channel = ?
                ORDER BY timestamp DESC, id DESC
                LIMIT 1
                """,
                (device, channel),
            ).fetchone()
            return dict(row) if row else None
        except sqlite3.Error as exc:
            raise _unavailable("get_latest_sensor_event", exc) from exc

    def insert_sensor_event(
        self,
        timestamp: str,
        device: str,
        channel: str,
        value: Optional[float],
        data: Optional[str],
        data_type: str,
    ) -> int:
        try:
            with self.connection() as db:
                cur = db.execute(
                    """
                    INSERT INTO sensor_events (timestamp, until, device, channel, value, data, data_type)
                    VALUES (?, NULL, ?, ?, ?, ?, ?)
                    """,
                    (timestamp, device, channel, value, data, data_type),
                )
                return int(cur.lastrowid)
        except sqlite3.Error as exc:
            raise _unavailable("insert_sensor_event", exc) from exc

    def set_sensor_event_until(self, event_id: int, until: str) -> None:
        try:
            with self.connection() as db:
                db.execute("UPDATE sensor_events SET until = ? WHERE id = ?", (until, event_id))
        except sqlite3.Error as exc:
            raise _unavailable("set_sensor_event_until", exc) from exc

    def get_sensor_events_between(self, device: str, channel: str, since: str, until: str) -> List[Dict[str, Any]]:
        try:
            rows = self.get_db().execute(
                """
                SELECT timestamp, until, value, data, data_type
                FROM sensor_events
                WHERE device = ? AND channel = ? AND timestamp > ? AND timestamp <= ?
                ORDER BY timestamp ASC, id ASC
                """,
                (device, channel, since, until),
            ).fetchall()
            return [dict(r) for r in rows]
        except sqlite3.Error as exc:
            raise _unavailable("get_sensor_events_between", exc) from exc

    def get_sensor_backfill(self, device: str, channel: str, since: str) -> Optional[Dict[str, Any]]:
        """Latest row at or before *since* that is still in effect at *since*."""
        try:
            row = self.get_db().execute(
                """
                SELECT timestamp, until, value, data, data_type
                FROM sensor_events
                WHERE device = ? AND channel = ? AND timestamp <= ?
                  AND (until IS NULL OR until >= ?)
                ORDER BY timestamp DESC, id DESC
                LIMIT 1
                """,
                (device, channel, since, since),
            ).fetchone()
            return dict(row) if row else None
        except sqlite3.Error as exc:
            raise _unavailable("get_sensor_backfill", exc) from exc

    def get_sensor_channels(self) -> List[Dict[str, str]]:
        """Distinct numeric (device, channel) pairs."""
        try:
            rows = self.get_db().execute(
                """
                SELECT DISTINCT device, channel
                FROM sensor_events
                WHERE data_type = 'number'
                ORDER BY device, channel
                """
            ).fetchall()
            return [dict(r) for r in rows]
        except sqlite3.Error as exc:
            raise _unavailable("get_sensor_channels", exc) from exc

    def count_sensor_events(self, device: str, channel: str) -> int:
        try:
            row = self.get_db().execute(
                "SELECT COUNT(*) FROM sensor_events WHERE device = ? AND channel = ?",
                (device, channel),
            ).fetchone()
            return int(row[0])
        except sqlite3.Error as exc:
            raise _unavailable("count_sensor_events", exc) from exc

    # --- output_events -------------------------------------------------------
    def get_latest_output_event(self, channel: str) -> Optional[Dict[str, Any]]:
        try:
            row = self.get_db().execute(
                """
                SELECT id, timestamp, until, value, data_type
                FROM output_events
                WHERE channel = ?
                ORDER BY timestamp DESC, id DESC
                LIMIT 1
                """,
                (channel,),
            ).fetchone()
            return dict(row) if row else None
        except sqlite3.Error as exc:
            raise _unavailable("get_latest_output_event", exc) from exc

    def insert_output_event(self, timestamp: str, channel: str, value: float) -> int:
        try:
            with self.connection() as db:
                cur = db.execute(
                    """
                    INSERT INTO output_events (timestamp, until, channel, value, data_type)
                    VALUES (?, NULL, ?, ?, 'number')
                    """,
                    (timestamp, channel, value),
                )
                return int(cur.lastrowid)
        except sqlite3.Error as exc:
            raise _unavailable("insert_output_event", exc) from exc

    def set_output_event_until(self, event_id: int, until: str) -> None:
        try:
            with self.connection() as db:
                db.execute("UPDATE output_events SET until = ? WHERE id = ?", (until, event_id))
        except sqlite3.Error as exc:
            raise _unavailable("set_output_event_until", exc) from exc

    def get_output_events_between(self, channel: str, since: str, until: str) -> List[Dict[str, Any]]:
        try:
            rows = self.get_db().execute(
                """
                SELECT timestamp, until, value, data_type
                FROM output_events
                WHERE channel = ? AND timestamp > ? AND timestamp <= ?
                ORDER BY timestamp ASC, id ASC
                """,
                (channel, since, until),
            ).fetchall()
            return [dict(r) for r in rows]
        except sqlite3.Error as exc:
            raise _unavailable("get_output_events_between", exc) from exc

    def get_output_backfill(self, channel: str, since: str) -> Optional[Dict[str, Any]]:
        try:
            row = self.get_db().execute(
                """
                SELECT timestamp, until, value, data_type
                FROM output_events
                WHERE channel = ? AND timestamp <= ?
                  AND (until IS NULL OR until >= ?)
                ORDER BY timestamp DESC, id DESC
                LIMIT 1
                """,
                (channel, since, since),
            ).fetchone()
            return dict(row) if row else None
        except sqlite3.Error as exc:
            raise _unavailable("get_output_backfill", exc) from exc

    def get_current_output_values(self) -> Dict[str, float]:
        """Latest value per output channel that has ever been written."""
        try:
            rows = self.get_db().execute(
                """
                SELECT o.channel, o.value
                FROM output_events o
                WHERE o.id = (
                    SELECT i.id FROM output_events i
                    WHERE i.channel = o.channel
                    ORDER BY i.timestamp DESC, i.id DESC
                    LIMIT 1
                )
                """
            ).fetchall()
            return {r["channel"]: r["value"] for r in rows}
        except sqlite3.Error as exc:
            raise _unavailable("get_current_output_values", exc) from exc

    def get_output_event_channels(self) -> List[str]:
        try:
            rows = self.get_db().execute("SELECT DISTINCT channel FROM output_events ORDER BY channel").fetchall()
            return [r["channel"] for r in rows]
        except sqlite3.Error as exc:
            raise _unavailable("get_output_event_channels", exc) from exc
