"""Server entry point for TischlerCtrl.

Starts the agent gateway, the periodic jobs (rule tick, output sync,
liveness ping) and the read-only HTTP API in one process.
"""
from __future__ import annotations

import argparse
import logging
import sys

from app import create_app
from app.config import load_config, setup_logging
from app.domain.exceptions import ConfigurationError


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="tischlerctrl-server")
    parser.add_argument("--http-port", type=int, help="HTTP API port (default: $TISCHLER_HTTP_PORT or 3905)")
    parser.add_argument("--ws-port", type=int, help="Agent gateway port (default: $TISCHLER_WS_PORT or 3962)")
    parser.add_argument("--db", dest="database_path", help="SQLite database path")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    args = parser.parse_args(argv)

    if sys.platform == "win32":
        sys.stdout.reconfigure(encoding="utf-8")

    try:
        config = load_config()
    except (ConfigurationError, ValueError) as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2

    overrides = {
        "http_port": args.http_port,
        "ws_port": args.ws_port,
        "database_path": args.database_path,
        "DEBUG": True if args.debug else None,
    }
    for key, value in overrides.items():
        if value is not None:
            setattr(config, key, value)

    setup_logging(debug=config.DEBUG, log_dir=config.log_dir)
    logger = logging.getLogger("run_server")

    from app.services.container import ServiceContainer

    container = ServiceContainer.build(config)
    app = create_app(container=container, start_services=True)

    logger.info("Starting HTTP API on %s:%s", config.http_host, config.http_port)
    try:
        app.run(host=config.http_host, port=config.http_port, debug=False, use_reloader=False, threaded=True)
        logger.info("Server stopped.")
        return 0
    except KeyboardInterrupt:
        logger.info("Server stopped by user.")
        return 0
    except OSError as exc:
        logger.exception("ERROR: Failed to start server: %s", exc)
        return 1
    finally:
        container.shutdown()


if __name__ == "__main__":
    raise SystemExit(main())
