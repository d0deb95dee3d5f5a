from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, TextIO

from app.agent.client import AgentClient
from app.config import load_agent_config, setup_logging
from app.domain.exceptions import ConfigurationError, ProtocolError

logger = logging.getLogger(__name__)


def _print_command(command: dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(command) + "\n")
    sys.stdout.flush()


def pump_readings(client: AgentClient, stream: TextIO) -> int:
    """Forward JSON-lines readings from *stream*; returns the number of lines accepted.

    Each line is either one reading object or a list of them.
    """
    accepted = 0
    for line_no, line in enumerate(stream, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            payload = json.loads(line)
        except ValueError as exc:
            logger.warning("Line %d is not JSON: %s", line_no, exc)
            continue
        readings = payload if isinstance(payload, list) else [payload]
        try:
            client.send_readings(readings)
        except ProtocolError as exc:
            logger.warning("Line %d rejected: %s", line_no, exc)
            continue
        accepted += 1
    return accepted


def main(argv: list[str] | None = None) -> int:
    """Run an agent that forwards stdin readings and prints received commands."""
    parser = argparse.ArgumentParser(prog="tischlerctrl-agent")
    parser.add_argument("--server-url", help="Gateway URL (default: $TISCHLER_SERVER_URL)")
    parser.add_argument("--api-key", help="Agent API key (default: $TISCHLER_API_KEY)")
    parser.add_argument("--debug", action="store_true", default=None, help="Verbose logging")
    parser.add_argument("--log-dir", default="logs", help="Directory for log files")
    args = parser.parse_args(argv)

    try:
        config = load_agent_config(server_url=args.server_url, api_key=args.api_key, DEBUG=args.debug)
    except ConfigurationError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2
    if not config.api_key:
        print("An API key is required (--api-key or TISCHLER_API_KEY)", file=sys.stderr)
        return 2

    setup_logging(debug=config.DEBUG, log_dir=args.log_dir)

    client = AgentClient(
        config.server_url,
        config.api_key,
        on_command=_print_command,
        reconnect_base_ms=config.reconnect_base_ms,
        reconnect_max_ms=config.reconnect_max_ms,
        keepalive_interval_ms=config.keepalive_interval_ms,
    )
    logger.info("Agent started; reading JSON lines from stdin (Ctrl+D to stop)")
    try:
        pump_readings(client, sys.stdin)
    except KeyboardInterrupt:
        logger.info("Stopping agent...")
    finally:
        client.close()

    return 1 if client.auth_error else 0


if __name__ == "__main__":
    raise SystemExit(main())
