from __future__ import annotations

import atexit
import contextlib
import logging
import signal
import threading
from typing import TYPE_CHECKING, Any

from flask import Flask, request
from werkzeug.exceptions import HTTPException

from app.blueprints.api.health import health_api
from app.blueprints.api.outputs import outputs_api
from app.blueprints.api.readings import readings_api
from app.blueprints.api.rules import rules_api
from app.config import load_config, setup_logging

if TYPE_CHECKING:
    from app.services.container import ServiceContainer


def create_app(
    config_overrides: dict[str, Any] | None = None,
    *,
    container: "ServiceContainer | None" = None,
    start_services: bool = False,
) -> Flask:
    """Build the Flask app for the read-only HTTP API.

    When *container* is given it is used as-is (tests); otherwise one is
    built from the environment. ``start_services`` opens the agent gateway
    and starts the periodic jobs and registers shutdown handlers.
    """
    if container is not None:
        config = container.config
    else:
        config = load_config()
        if config_overrides:
            for key, value in config_overrides.items():
                setattr(config, key.lower(), value)
        setup_logging(debug=config.DEBUG, log_dir=config.log_dir)

    flask_app = Flask(__name__)
    flask_app.config.update(config.as_flask_config())

    if container is None:
        from app.services.container import ServiceContainer

        container = ServiceContainer.build(config)
    flask_app.config["CONTAINER"] = container
    flask_app.teardown_appcontext(container.database.close_db)

    if start_services:
        container.start()
        _install_shutdown_handlers(container)

    # Global JSON error handler: unhandled exceptions on /api/ routes return
    # a generic message instead of a stack trace. Domain exceptions carry
    # their own ``http_status``.
    @flask_app.errorhandler(Exception)
    def _handle_unhandled(exc):
        if not request.path.startswith("/api/"):
            raise exc
        from app.domain.exceptions import TischlerError
        from app.utils.http import error_response, safe_error

        if isinstance(exc, HTTPException):
            status = int(exc.code or 500)
            if status >= 500:
                return safe_error(exc, status, context="http-exception")
            return error_response(exc.description or "Request failed", status)

        if isinstance(exc, TischlerError):
            status = exc.http_status
            if status >= 500:
                return safe_error(exc, status, context=type(exc).__name__)
            return error_response(str(exc) or "Request failed", status)

        return safe_error(exc, 500, context="unhandled")

    flask_app.register_blueprint(readings_api)
    flask_app.register_blueprint(outputs_api)
    flask_app.register_blueprint(rules_api)
    flask_app.register_blueprint(health_api)

    for bp_name in flask_app.blueprints:
        logging.debug(" Registered blueprint: %s", bp_name)

    logging.getLogger(__name__).info("TischlerCtrl application initialized successfully.")
    return flask_app


def _install_shutdown_handlers(container: "ServiceContainer") -> None:
    _shutdown_lock = threading.Lock()
    _shutdown_done = False

    def _graceful_shutdown(reason: str = "unknown") -> None:
        nonlocal _shutdown_done
        with _shutdown_lock:
            if _shutdown_done:
                return
            _shutdown_done = True
        logging.info("Graceful shutdown initiated (%s)", reason)
        try:
            container.shutdown()
        except Exception as exc:
            logging.warning("Error during graceful shutdown: %s", exc)

    def _signal_handler(signum: int, _frame: object) -> None:
        sig_name = signal.Signals(signum).name
        logging.info("Received %s, shutting down", sig_name)
        _graceful_shutdown(sig_name)
        raise SystemExit(0)

    # Register atexit (covers normal interpreter exit)
    atexit.register(_graceful_shutdown, "atexit")

    # SIGINT=Ctrl-C, SIGTERM=container/systemd stop; only possible on the main thread
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(OSError, ValueError):
            signal.signal(sig, _signal_handler)


__all__ = ["create_app"]
