from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from app.utils.time import iso_now

logger = logging.getLogger(__name__)


class ChangelogOperations:
    """Database operations for the changelog table."""

    def insert_changelog(self, user: Optional[str], text: str) -> Optional[int]:
        try:
            with self.connection() as db:
                cur = db.execute(
                    "INSERT INTO changelog (date, user, text) VALUES (?, ?, ?)",
                    (iso_now(), user, text),
                )
                return cur.lastrowid
        except sqlite3.Error as exc:
            logger.debug("insert_changelog failed: %s", exc)
            return None

    def get_recent_changelog(self, limit: int = 50) -> List[Dict[str, Any]]:
        try:
            rows = self.get_db().execute(
                "SELECT id, date, user, text FROM changelog ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
            return [dict(r) for r in rows]
        except sqlite3.Error as exc:
            logger.debug("get_recent_changelog failed: %s", exc)
            return []
