import pytest

import run_server
from app.config import AppConfig
from app.domain.exceptions import ConfigurationError
from app.services.container import GATEWAY_PING_JOB, OUTPUT_STARTUP_SYNC_JOB, RULE_TICK_JOB


def test_build_wires_dispatcher_to_gateway(container):
    assert container.output_dispatcher._sender is container.gateway
    assert not container.gateway.running
    assert not container.scheduler.is_running()


def test_start_schedules_jobs_and_records_startup(container):
    container.start(gateway=False)
    try:
        container.rule_engine.wait_idle(timeout=5)
        job_ids = {job.job_id for job in container.scheduler.get_jobs()}
        assert {RULE_TICK_JOB, GATEWAY_PING_JOB} <= job_ids
        assert container.scheduler.is_running()
        assert container.rule_engine.last_run_at is not None
        texts = [entry["text"] for entry in container.changelog_repo.recent(5)]
        assert "Server started" in texts
    finally:
        container.shutdown()


def test_startup_sync_is_one_shot(container):
    container.configure_jobs()
    job = container.scheduler.get_job(OUTPUT_STARTUP_SYNC_JOB)
    assert job.interval_seconds is None


def test_start_opens_gateway(container):
    container.start()
    try:
        assert container.gateway.running
        assert container.gateway.port > 0
    finally:
        container.shutdown()
    assert not container.gateway.running


@pytest.mark.parametrize("field", ["rule_interval_seconds", "sync_interval_seconds", "scheduler_workers"])
def test_config_rejects_non_positive_intervals(field):
    with pytest.raises(ConfigurationError):
        AppConfig(**{field: 0})


def test_config_reads_environment(monkeypatch):
    monkeypatch.setenv("TISCHLER_WS_PORT", "4000")
    monkeypatch.setenv("TISCHLER_DEBUG", "yes")
    config = AppConfig()
    assert config.ws_port == 4000
    assert config.DEBUG is True


def test_server_exits_on_invalid_environment(monkeypatch, capsys):
    monkeypatch.setenv("TISCHLER_RULE_INTERVAL", "soon")
    assert run_server.main([]) == 2
    assert "Invalid configuration" in capsys.readouterr().err
