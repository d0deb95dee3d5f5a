from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from infrastructure.database.ops.changelog import ChangelogOperations


@dataclass(frozen=True)
class ChangelogRepository:
    _backend: ChangelogOperations

    def insert(self, user: str | None, text: str) -> int | None:
        return self._backend.insert_changelog(user, text)

    def recent(self, limit: int = 50) -> list[dict[str, Any]]:
        return self._backend.get_recent_changelog(limit)
