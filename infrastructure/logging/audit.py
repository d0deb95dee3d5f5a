import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from infrastructure.database.repositories.changelog import ChangelogRepository

logger = logging.getLogger(__name__)


class AuditLogger:
    """Structured audit logger that writes append-only JSON records."""

    def __init__(self, log_path: str, level: str = "INFO") -> None:
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

        self.logger = logging.getLogger("tischlerctrl.audit")
        self.logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        self.logger.propagate = False

        # Only one file handler per target path, even if several sinks are built
        target = str(self.log_path.resolve())
        if not any(
            isinstance(handler, RotatingFileHandler) and getattr(handler, "baseFilename", None) == target
            for handler in self.logger.handlers
        ):
            handler = RotatingFileHandler(
                filename=str(self.log_path),
                maxBytes=10 * 1024 * 1024,
                backupCount=30,
                encoding="utf-8",
                delay=True,
            )
            handler.setFormatter(
                logging.Formatter(fmt="%(asctime)sZ | %(levelname)s | %(message)s", datefmt="%Y-%m-%dT%H:%M:%S")
            )
            self.logger.addHandler(handler)

    def log_event(self, actor: str, action: str, outcome: str, **metadata: Any) -> None:
        payload: Dict[str, Any] = {"actor": actor, "action": action, "outcome": outcome}
        if metadata:
            payload["meta"] = metadata
        self.logger.info(json.dumps(payload))


class ChangelogSink:
    """Fire-and-forget changelog: one DB row plus one audit line per entry.

    Callers never depend on the result; failures are logged and dropped.
    """

    def __init__(self, repository: ChangelogRepository, audit: Optional[AuditLogger] = None) -> None:
        self._repository = repository
        self._audit = audit

    def insert(self, user: Optional[str], text: str) -> None:
        entry_id = self._repository.insert(user, text)
        if entry_id is None:
            logger.warning("Changelog entry not stored: %s", text)
        if self._audit is not None:
            try:
                self._audit.log_event(user or "unknown", "changelog", "stored" if entry_id else "dropped", text=text)
            except (OSError, ValueError) as exc:
                logger.warning("Audit log write failed: %s", exc)
