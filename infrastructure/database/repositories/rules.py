from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from infrastructure.database.ops.rules import RuleOperations


@dataclass(frozen=True)
class RuleRepository:
    _backend: RuleOperations

    def enabled(self) -> list[dict[str, Any]]:
        """Enabled rules ordered by position, then id."""
        return self._backend.get_enabled_rules()

    def create(
        self,
        name: str,
        conditions: dict[str, Any],
        action: dict[str, Any],
        *,
        position: int = 0,
        enabled: bool = True,
        created_by: str | None = None,
    ) -> int | None:
        return self._backend.insert_rule(
            name, conditions, action, position=position, enabled=enabled, created_by=created_by
        )

    def set_enabled(self, rule_id: int, enabled: bool) -> bool:
        return self._backend.set_rule_enabled(rule_id, enabled)
