"""
Configuration for TischlerCtrl
==============================
Runtime settings for the gateway, rule engine, output dispatcher and the
read-only HTTP API, plus the agent-side client settings.
Sets up the logging configuration as well.
"""

import os
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer.") from None


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number.") from None


@dataclass
class AppConfig:
    """Server-side runtime configuration loaded from environment variables."""

    environment: str = field(default_factory=lambda: os.getenv("TISCHLER_ENV", "development"))
    database_path: str = field(default_factory=lambda: os.getenv("TISCHLER_DATABASE_PATH", "database/tischler.db"))

    # Read-only HTTP API
    http_host: str = field(default_factory=lambda: os.getenv("TISCHLER_HTTP_HOST", "0.0.0.0"))
    http_port: int = field(default_factory=lambda: _env_int("TISCHLER_HTTP_PORT", 3905))

    # Agent gateway (WebSocket)
    ws_host: str = field(default_factory=lambda: os.getenv("TISCHLER_WS_HOST", "0.0.0.0"))
    ws_port: int = field(default_factory=lambda: _env_int("TISCHLER_WS_PORT", 3962))
    ping_interval_seconds: float = field(default_factory=lambda: _env_float("TISCHLER_PING_INTERVAL", 30.0))

    # Control loop cadence
    rule_interval_seconds: int = field(default_factory=lambda: _env_int("TISCHLER_RULE_INTERVAL", 10))
    sync_interval_seconds: int = field(default_factory=lambda: _env_int("TISCHLER_SYNC_INTERVAL", 60))
    sync_startup_delay_seconds: int = field(default_factory=lambda: _env_int("TISCHLER_SYNC_STARTUP_DELAY", 5))
    scheduler_workers: int = field(default_factory=lambda: _env_int("TISCHLER_SCHEDULER_WORKERS", 2))

    DEBUG: bool = field(default_factory=lambda: _env_bool("TISCHLER_DEBUG", False))
    log_level: str = field(default_factory=lambda: os.getenv("TISCHLER_LOG_LEVEL", "INFO"))
    log_dir: str = field(default_factory=lambda: os.getenv("TISCHLER_LOG_DIR", "logs"))
    audit_log_path: str = field(default_factory=lambda: os.getenv("TISCHLER_AUDIT_LOG_PATH", "logs/changelog.log"))

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        from app.domain.exceptions import ConfigurationError

        for name in ("rule_interval_seconds", "sync_interval_seconds", "scheduler_workers"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be at least 1", detail={name: getattr(self, name)})
        if self.ping_interval_seconds <= 0:
            raise ConfigurationError("ping_interval_seconds must be positive")
        if self.sync_startup_delay_seconds < 0:
            raise ConfigurationError("sync_startup_delay_seconds must not be negative")

    def as_flask_config(self) -> dict[str, Any]:
        return {
            "ENV": self.environment,
            "DEBUG": self.DEBUG,
            "DATABASE_PATH": self.database_path,
            "JSON_SORT_KEYS": False,
        }


@dataclass
class AgentConfig:
    """Agent-side settings for :class:`app.agent.client.AgentClient`."""

    server_url: str = field(default_factory=lambda: os.getenv("TISCHLER_SERVER_URL", "ws://localhost:3962"))
    api_key: str = field(default_factory=lambda: os.getenv("TISCHLER_API_KEY", ""))
    reconnect_base_ms: int = field(default_factory=lambda: _env_int("TISCHLER_RECONNECT_BASE_MS", 1000))
    reconnect_max_ms: int = field(default_factory=lambda: _env_int("TISCHLER_RECONNECT_MAX_MS", 60000))
    keepalive_interval_ms: int = field(default_factory=lambda: _env_int("TISCHLER_KEEPALIVE_INTERVAL_MS", 30000))
    DEBUG: bool = field(default_factory=lambda: _env_bool("TISCHLER_DEBUG", False))

    def __post_init__(self) -> None:
        from app.domain.exceptions import ConfigurationError

        if self.reconnect_base_ms < 1 or self.reconnect_max_ms < self.reconnect_base_ms:
            raise ConfigurationError(
                "reconnect delays must satisfy 1 <= base <= max",
                detail={"base": self.reconnect_base_ms, "max": self.reconnect_max_ms},
            )
        if self.keepalive_interval_ms < 1:
            raise ConfigurationError("keepalive_interval_ms must be positive")


def setup_logging(debug: bool = False, log_dir: str = "logs") -> None:
    """Setup logging configuration.

    Installs a console handler and a rotating ``tischlerctrl.log`` on the
    root logger, plus a dedicated rotating ``agents.log`` for the gateway so
    connection churn can be read on its own. Safe to call repeatedly.
    """
    import logging
    import sys
    from logging.handlers import RotatingFileHandler

    log_level = logging.DEBUG if debug else logging.INFO

    root = logging.getLogger()
    root.setLevel(log_level)

    # Avoid adding duplicates when called multiple times (tests, CLI + server)
    has_console = any(getattr(h, "name", "") == "tischler_console" for h in root.handlers)
    has_file = any(getattr(h, "name", "") == "tischler_file" for h in root.handlers)
    gateway_logger = logging.getLogger("app.gateway")
    has_gateway_file = any(getattr(h, "name", "") == "tischler_agents_file" for h in gateway_logger.handlers)
    added_handler = False

    stream = sys.stdout
    with suppress(AttributeError, ValueError):
        stream.reconfigure(encoding="utf-8", errors="replace")
    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    if not has_console:
        console_handler = logging.StreamHandler(stream=stream)
        console_handler.name = "tischler_console"
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)
        added_handler = True

    os.makedirs(log_dir, exist_ok=True)
    if not has_file:
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, "tischlerctrl.log"),
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.name = "tischler_file"
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
        added_handler = True

    if not has_gateway_file:
        agents_handler = RotatingFileHandler(
            os.path.join(log_dir, "agents.log"),
            maxBytes=5 * 1024 * 1024,
            backupCount=3,
            encoding="utf-8",
        )
        agents_handler.name = "tischler_agents_file"
        agents_handler.setLevel(log_level)
        agents_handler.setFormatter(formatter)
        gateway_logger.addHandler(agents_handler)

    for handler in root.handlers:
        if getattr(handler, "name", "") in {"tischler_console", "tischler_file"}:
            handler.setLevel(log_level)

    if added_handler:
        root.info("Logging initialized at level: %s", logging.getLevelName(log_level))

    if _env_bool("TISCHLER_SILENCE_WERKZEUG", True):
        logging.getLogger("werkzeug").setLevel(logging.WARNING)

    # Frame-level debug output from the websockets library is very noisy
    if _env_bool("TISCHLER_SILENCE_WEBSOCKETS", True):
        logging.getLogger("websockets").setLevel(logging.WARNING)


def load_config() -> AppConfig:
    """Helper for callers to load and validate configuration."""
    return AppConfig()


def load_agent_config(**overrides: Any) -> AgentConfig:
    """Load agent settings from the environment, applying non-None overrides."""
    config = AgentConfig()
    for key, value in overrides.items():
        if value is not None:
            setattr(config, key, value)
    config.__post_init__()
    return config
