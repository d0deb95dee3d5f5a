"""
Health API Blueprint
====================

Liveness and runtime status endpoints.

Routes:
- GET /api/health/ping - Basic liveness check
- GET /api/health/gateway - Agent connections per device prefix
- GET /api/health/scheduler - Periodic job statistics
"""

from __future__ import annotations

import logging

from flask import Blueprint

logger = logging.getLogger("health_api")

# Create the blueprint
health_api = Blueprint("health_api", __name__, url_prefix="/api/health")

# Import and register routes from submodules
from app.blueprints.api.health.gateway import register_gateway_routes
from app.blueprints.api.health.system import register_system_routes

# Register all routes on the blueprint
register_system_routes(health_api)
register_gateway_routes(health_api)

__all__ = ["health_api"]
