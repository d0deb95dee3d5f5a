from __future__ import annotations

import logging
from dataclasses import dataclass

from app.config import AppConfig
from app.control_loops.output_dispatcher import OutputDispatcher
from app.control_loops.rule_engine import RuleEngine
from app.enums.control import ChangelogUser
from app.gateway.server import AgentGateway
from app.services.event_store import EventStore
from app.workers.scheduler import TaskScheduler
from infrastructure.database.repositories import (
    ApiKeyRepository,
    ChangelogRepository,
    EventRepository,
    OutputConfigRepository,
    RuleRepository,
)
from infrastructure.database.sqlite_handler import SQLiteDatabaseHandler
from infrastructure.logging.audit import AuditLogger, ChangelogSink

logger = logging.getLogger(__name__)

RULE_TICK_JOB = "rules.tick"
OUTPUT_SYNC_JOB = "outputs.sync"
OUTPUT_STARTUP_SYNC_JOB = "outputs.sync_startup"
GATEWAY_PING_JOB = "gateway.ping"


@dataclass
class ServiceContainer:
    """Aggregate and manage the core services of one server process."""

    config: AppConfig
    database: SQLiteDatabaseHandler
    event_repo: EventRepository
    rule_repo: RuleRepository
    api_key_repo: ApiKeyRepository
    output_repo: OutputConfigRepository
    changelog_repo: ChangelogRepository
    audit_logger: AuditLogger
    changelog: ChangelogSink
    event_store: EventStore
    output_dispatcher: OutputDispatcher
    rule_engine: RuleEngine
    gateway: AgentGateway
    scheduler: TaskScheduler

    @classmethod
    def build(cls, config: AppConfig) -> "ServiceContainer":
        """Construct every service and wire their mutual references.

        Nothing is started here; call :meth:`start` to open the gateway and
        begin the periodic jobs.
        """
        logger.info("Building ServiceContainer...")
        database = SQLiteDatabaseHandler(config.database_path)
        database.create_tables()

        event_repo = EventRepository(database)
        rule_repo = RuleRepository(database)
        api_key_repo = ApiKeyRepository(database)
        output_repo = OutputConfigRepository(database)
        changelog_repo = ChangelogRepository(database)

        audit_logger = AuditLogger(config.audit_log_path, config.log_level)
        changelog = ChangelogSink(changelog_repo, audit_logger)

        event_store = EventStore(event_repo)
        # Dispatcher and gateway reference each other through the rule engine;
        # the command sender is bound once the gateway exists.
        output_dispatcher = OutputDispatcher(event_store, output_repo)
        rule_engine = RuleEngine(rule_repo, output_repo, event_store, output_dispatcher, changelog=changelog)
        gateway = AgentGateway(
            api_key_repo,
            event_store,
            rules=rule_engine,
            host=config.ws_host,
            port=config.ws_port,
        )
        output_dispatcher.bind_sender(gateway)

        scheduler = TaskScheduler(max_workers=config.scheduler_workers)

        container = cls(
            config=config,
            database=database,
            event_repo=event_repo,
            rule_repo=rule_repo,
            api_key_repo=api_key_repo,
            output_repo=output_repo,
            changelog_repo=changelog_repo,
            audit_logger=audit_logger,
            changelog=changelog,
            event_store=event_store,
            output_dispatcher=output_dispatcher,
            rule_engine=rule_engine,
            gateway=gateway,
            scheduler=scheduler,
        )
        logger.info("ServiceContainer built successfully.")
        return container

    def configure_jobs(self) -> None:
        cfg = self.config
        self.scheduler.schedule_interval(RULE_TICK_JOB, self.rule_engine.trigger, cfg.rule_interval_seconds)
        self.scheduler.schedule_interval(
            OUTPUT_SYNC_JOB, self.output_dispatcher.sync_output_states, cfg.sync_interval_seconds
        )
        self.scheduler.schedule_once(
            OUTPUT_STARTUP_SYNC_JOB, self.output_dispatcher.sync_output_states, cfg.sync_startup_delay_seconds
        )
        self.scheduler.schedule_interval(GATEWAY_PING_JOB, self.gateway.ping_all, cfg.ping_interval_seconds)

    def start(self, *, gateway: bool = True) -> None:
        """Open the agent gateway, schedule the periodic jobs and run one rule pass."""
        if gateway:
            self.gateway.start()
        self.configure_jobs()
        self.scheduler.start()
        self.rule_engine.trigger()
        self.changelog.insert(ChangelogUser.SYSTEM.value, "Server started")
        logger.info("✓ Services started")

    def shutdown(self) -> None:
        """Release external resources before process exit."""
        try:
            self.scheduler.stop()
            logger.info("✓ TaskScheduler stopped")
        except (RuntimeError, OSError) as e:
            logger.warning("Failed to stop TaskScheduler: %s", e)

        try:
            self.gateway.stop()
        except (RuntimeError, OSError) as e:
            logger.warning("Failed to stop agent gateway: %s", e)

        self.rule_engine.shutdown()
        self.database.close_db()
        logger.info("ServiceContainer shutdown complete.")
