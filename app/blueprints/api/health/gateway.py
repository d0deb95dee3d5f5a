"""
Gateway Health Endpoints
========================

Agent gateway status: listening port and live connections per prefix.
"""

from __future__ import annotations

import logging

from flask import Blueprint, Response

from app.blueprints.api._common import get_container as _container
from app.blueprints.api._common import success as _success
from app.utils.http import safe_route

logger = logging.getLogger("health_api")


def register_gateway_routes(health_api: Blueprint):
    """Register agent gateway health routes on the blueprint."""

    @health_api.get("/gateway")
    @safe_route("Failed to get gateway status")
    def get_gateway_status() -> Response:
        """
        Returns:
            {"running": true, "port": 3962, "connections": {"ac:": 1}, "sessions": 2}
        """
        gateway = _container().gateway
        return _success(
            {
                "running": gateway.running,
                "port": gateway.port,
                "connections": gateway.connection_counts(),
                "sessions": gateway.session_count(),
            }
        )
