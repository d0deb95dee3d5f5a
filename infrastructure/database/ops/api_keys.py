from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, Optional

from app.utils.time import iso_now

logger = logging.getLogger(__name__)


class ApiKeyOperations:
    """Database operations for the api_keys table."""

    def get_api_key(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            row = self.get_db().execute(
                "SELECT id, key, name, device_prefix, created_at, last_used_at FROM api_keys WHERE key = ?",
                (key,),
            ).fetchone()
            return dict(row) if row else None
        except sqlite3.Error as exc:
            logger.error("get_api_key failed: %s", exc)
            return None

    def touch_api_key(self, key_id: int) -> None:
        try:
            with self.connection() as db:
                db.execute("UPDATE api_keys SET last_used_at = ? WHERE id = ?", (iso_now(), key_id))
        except sqlite3.Error as exc:
            logger.warning("touch_api_key failed: %s", exc)

    def insert_api_key(self, key: str, name: str, device_prefix: str) -> Optional[int]:
        try:
            with self.connection() as db:
                cur = db.execute(
                    "INSERT INTO api_keys (key, name, device_prefix, created_at) VALUES (?, ?, ?, ?)",
                    (key, name, device_prefix, iso_now()),
                )
                return cur.lastrowid
        except sqlite3.Error as exc:
            logger.error("insert_api_key failed: %s", exc)
            return None
