from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Dict, List, Optional

from app.utils.time import iso_now

logger = logging.getLogger(__name__)


class RuleOperations:
    """Database operations for the rules table.

    Rule CRUD belongs to the management UI; the control core only lists
    enabled rules. The write helpers exist for seeding and tests.
    """

    def get_enabled_rules(self) -> List[Dict[str, Any]]:
        try:
            rows = self.get_db().execute(
                """
                SELECT id, name, type, enabled, position, conditions, action, created_by
                FROM rules
                WHERE enabled = 1
                ORDER BY position ASC, id ASC
                """
            ).fetchall()
            return [dict(r) for r in rows]
        except sqlite3.Error as exc:
            logger.error("get_enabled_rules failed: %s", exc)
            return []

    def insert_rule(
        self,
        name: str,
        conditions: Dict[str, Any],
        action: Dict[str, Any],
        *,
        position: int = 0,
        enabled: bool = True,
        rule_type: str = "static",
        created_by: Optional[str] = None,
    ) -> Optional[int]:
        try:
            now = iso_now()
            with self.connection() as db:
                cur = db.execute(
                    """
                    INSERT INTO rules (name, type, enabled, position, conditions, action,
                                       created_by, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        name,
                        rule_type,
                        1 if enabled else 0,
                        position,
                        json.dumps(conditions),
                        json.dumps(action),
                        created_by,
                        now,
                        now,
                    ),
                )
                return cur.lastrowid
        except sqlite3.Error as exc:
            logger.error("insert_rule failed: %s", exc)
            return None

    def set_rule_enabled(self, rule_id: int, enabled: bool) -> bool:
        try:
            with self.connection() as db:
                cur = db.execute(
                    "UPDATE rules SET enabled = ?, updated_at = ? WHERE id = ?",
                    (1 if enabled else 0, iso_now(), rule_id),
                )
                return cur.rowcount > 0
        except sqlite3.Error as exc:
            logger.error("set_rule_enabled failed: %s", exc)
            return False
