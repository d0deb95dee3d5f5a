"""Repository facades exposing typed accessors over low-level mixins."""

from infrastructure.database.repositories.api_keys import ApiKeyRepository
from infrastructure.database.repositories.changelog import ChangelogRepository
from infrastructure.database.repositories.events import EventRepository
from infrastructure.database.repositories.outputs import OutputConfigRepository
from infrastructure.database.repositories.rules import RuleRepository

__all__ = [
    "ApiKeyRepository",
    "ChangelogRepository",
    "EventRepository",
    "OutputConfigRepository",
    "RuleRepository",
]
