from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class OutputConfigOperations:
    """Database operations for the output_configs table."""

    def get_output_configs(self) -> List[Dict[str, Any]]:
        try:
            rows = self.get_db().execute(
                """
                SELECT id, channel, description, value_type, min_value, max_value,
                       device, device_channel, position
                FROM output_configs
                ORDER BY position ASC, id ASC
                """
            ).fetchall()
            return [dict(r) for r in rows]
        except sqlite3.Error as exc:
            logger.error("get_output_configs failed: %s", exc)
            return []

    def upsert_output_config(
        self,
        channel: str,
        *,
        value_type: str = "boolean",
        description: Optional[str] = None,
        min_value: float = 0,
        max_value: float = 1,
        device: Optional[str] = None,
        device_channel: Optional[str] = None,
        position: int = 0,
    ) -> bool:
        try:
            with self.connection() as db:
                db.execute(
                    """
                    INSERT INTO output_configs (channel, description, value_type, min_value, max_value,
                                                device, device_channel, position)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(channel) DO UPDATE SET
                        description = excluded.description,
                        value_type = excluded.value_type,
                        min_value = excluded.min_value,
                        max_value = excluded.max_value,
                        device = excluded.device,
                        device_channel = excluded.device_channel,
                        position = excluded.position
                    """,
                    (channel, description, value_type, min_value, max_value, device, device_channel, position),
                )
            return True
        except sqlite3.Error as exc:
            logger.error("upsert_output_config failed: %s", exc)
            return False
