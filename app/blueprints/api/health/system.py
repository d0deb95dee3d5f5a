"""
System Health Endpoints
=======================

Core liveness and scheduler status.
"""

from __future__ import annotations

import logging

from flask import Blueprint, Response

from app.blueprints.api._common import get_container as _container
from app.blueprints.api._common import success as _success
from app.utils.http import safe_route
from app.utils.time import iso_now

logger = logging.getLogger("health_api")


def register_system_routes(health_api: Blueprint):
    """Register system health routes on the blueprint."""

    @health_api.get("/ping")
    @safe_route("Failed to handle ping request")
    def ping() -> Response:
        """
        Basic liveness check for monitoring tools.

        Returns:
            {"status": "ok", "timestamp": "..."}
        """
        return _success({"status": "ok", "timestamp": iso_now()})

    @health_api.get("/scheduler")
    @safe_route("Failed to get scheduler status")
    def get_scheduler_status() -> Response:
        scheduler = _container().scheduler
        return _success(
            {
                "running": scheduler.is_running(),
                "jobs": [job.to_dict() for job in scheduler.get_jobs()],
            }
        )
