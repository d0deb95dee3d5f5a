from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from infrastructure.database.ops.api_keys import ApiKeyOperations


@dataclass(frozen=True)
class ApiKeyRepository:
    _backend: ApiKeyOperations

    def validate(self, key: str) -> dict[str, Any] | None:
        """Look up *key* and stamp ``last_used_at`` when it exists."""
        record = self._backend.get_api_key(key)
        if record is not None:
            self._backend.touch_api_key(record["id"])
        return record

    def get(self, key: str) -> dict[str, Any] | None:
        return self._backend.get_api_key(key)

    def create(self, key: str, name: str, device_prefix: str) -> int | None:
        return self._backend.insert_api_key(key, name, device_prefix)
