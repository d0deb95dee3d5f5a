import logging
import shutil
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from infrastructure.database.ops.api_keys import ApiKeyOperations
from infrastructure.database.ops.changelog import ChangelogOperations
from infrastructure.database.ops.events import EventOperations
from infrastructure.database.ops.outputs import OutputConfigOperations
from infrastructure.database.ops.rules import RuleOperations

logger = logging.getLogger(__name__)


class SQLiteDatabaseHandler(
    EventOperations,
    RuleOperations,
    ApiKeyOperations,
    OutputConfigOperations,
    ChangelogOperations,
):
    """Thread-safe SQLite handler decoupled from Flask globals.

    Every thread gets its own connection. Use a file path (not ``:memory:``)
    whenever more than one thread touches the database, otherwise each
    thread sees its own empty database.
    """

    def __init__(self, database_path: str) -> None:
        self._database_path = database_path
        self._local = threading.local()

        if database_path != ":memory:":
            db_path = Path(database_path)
            if not db_path.parent.exists():
                db_path.parent.mkdir(parents=True, exist_ok=True)
                logger.info("Created database directory: %s", db_path.parent)

    @property
    def database_path(self) -> str:
        return self._database_path

    # --- Lifecycle ------------------------------------------------------------
    def get_db(self) -> sqlite3.Connection:
        connection: Optional[sqlite3.Connection] = getattr(self._local, "connection", None)
        if connection is None:
            try:
                connection = self._open_connection()
            except sqlite3.DatabaseError as exc:
                if self._is_corruption_error(exc):
                    logger.error("Database appears corrupt (%s). Recreating a fresh database.", exc)
                    self._quarantine_corrupt_db()
                    connection = self._open_connection()
                else:
                    raise
            self._local.connection = connection
        return connection

    def _open_connection(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._database_path, check_same_thread=False, timeout=10.0)
        try:
            connection.row_factory = sqlite3.Row
            self._configure_connection(connection)
            return connection
        except Exception:
            connection.close()
            raise

    def _is_corruption_error(self, exc: sqlite3.Error) -> bool:
        message = str(exc).lower()
        return "malformed" in message or "is not a database" in message

    def _quarantine_corrupt_db(self) -> Optional[Path]:
        db_path = Path(self._database_path)
        if not db_path.exists():
            return None

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        quarantine_dir = db_path.parent / "corrupt"
        quarantine_dir.mkdir(parents=True, exist_ok=True)

        suffix = db_path.suffix or ".db"
        quarantined = quarantine_dir / f"{db_path.stem}_corrupt_{timestamp}{suffix}"
        try:
            shutil.move(str(db_path), str(quarantined))
            for sidecar_suffix in ("-wal", "-shm"):
                sidecar = Path(f"{db_path}{sidecar_suffix}")
                if sidecar.exists():
                    shutil.move(str(sidecar), str(quarantine_dir / f"{sidecar.name}_{timestamp}"))
            logger.warning("Quarantined corrupt database to %s", quarantined)
            return quarantined
        except OSError as exc:
            logger.error("Failed to quarantine corrupt database %s: %s", db_path, exc)
            return None

    def _configure_connection(self, connection: sqlite3.Connection) -> None:
        """WAL lets the HTTP API read while the gateway and rule engine write."""
        if self._database_path != ":memory:":
            connection.execute("PRAGMA journal_mode=WAL")
        connection.execute("PRAGMA synchronous=NORMAL")
        connection.execute("PRAGMA temp_store=MEMORY")
        connection.commit()

    def close_db(self, _e: Optional[BaseException] = None) -> None:
        connection: Optional[sqlite3.Connection] = getattr(self._local, "connection", None)
        if connection is not None:
            connection.close()
            delattr(self._local, "connection")

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self.get_db()
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        else:
            conn.commit()

    # --- Schema ----------------------------------------------------------------
    def create_tables(self) -> None:
        """Creates the necessary tables in the database if they do not already exist."""
        try:
            with self.connection() as db:
                # Sensor readings, run-length encoded per (device, channel)
                db.execute(
                    """
                    CREATE TABLE IF NOT EXISTS sensor_events (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        timestamp TEXT NOT NULL,
                        until TEXT,
                        device TEXT NOT NULL,
                        channel TEXT NOT NULL,
                        value REAL,
                        data TEXT,
                        data_type TEXT NOT NULL DEFAULT 'number'
                    )
                    """
                )
                db.execute(
                    "CREATE INDEX IF NOT EXISTS idx_sensor_events_key_ts "
                    "ON sensor_events(device, channel, timestamp)"
                )
                # Output states written by the rule engine
                db.execute(
                    """
                    CREATE TABLE IF NOT EXISTS output_events (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        timestamp TEXT NOT NULL,
                        until TEXT,
                        channel TEXT NOT NULL,
                        value REAL,
                        data_type TEXT NOT NULL DEFAULT 'number'
                    )
                    """
                )
                db.execute(
                    "CREATE INDEX IF NOT EXISTS idx_output_events_channel_ts "
                    "ON output_events(channel, timestamp)"
                )
                db.execute(
                    """
                    CREATE TABLE IF NOT EXISTS rules (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL,
                        type TEXT NOT NULL DEFAULT 'static',
                        enabled INTEGER NOT NULL DEFAULT 1,
                        position INTEGER NOT NULL DEFAULT 0,
                        conditions TEXT NOT NULL,
                        action TEXT NOT NULL,
                        created_by TEXT,
                        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                        updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                    )
                    """
                )
                db.execute("CREATE INDEX IF NOT EXISTS idx_rules_enabled_position ON rules(enabled, position)")
                db.execute(
                    """
                    CREATE TABLE IF NOT EXISTS api_keys (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        key TEXT UNIQUE NOT NULL,
                        name TEXT NOT NULL,
                        device_prefix TEXT NOT NULL,
                        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                        last_used_at TEXT
                    )
                    """
                )
                db.execute(
                    """
                    CREATE TABLE IF NOT EXISTS output_configs (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        channel TEXT UNIQUE NOT NULL,
                        description TEXT,
                        value_type TEXT NOT NULL DEFAULT 'boolean',
                        min_value REAL DEFAULT 0,
                        max_value REAL DEFAULT 1,
                        device TEXT,
                        device_channel TEXT,
                        position INTEGER DEFAULT 0
                    )
                    """
                )
                db.execute(
                    """
                    CREATE TABLE IF NOT EXISTS changelog (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        date TEXT NOT NULL,
                        user TEXT,
                        text TEXT NOT NULL
                    )
                    """
                )
        except sqlite3.Error as exc:
            logger.error("Error creating tables: %s", exc)
            raise
