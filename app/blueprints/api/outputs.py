"""
Outputs API Blueprint
=====================

Routes:
- GET /api/outputs - Output channel definitions
- GET /api/outputs/values - Current value of every output channel (0 when unset)
- GET /api/outputs/commands - Desired on/off state per bound device channel
"""

from __future__ import annotations

import logging

from flask import Blueprint, Response

from app.blueprints.api._common import get_container as _container
from app.blueprints.api._common import success as _success
from app.utils.http import safe_route

logger = logging.getLogger("outputs_api")

outputs_api = Blueprint("outputs_api", __name__, url_prefix="/api/outputs")


@outputs_api.get("")
@safe_route("Failed to list output channels")
def list_outputs() -> Response:
    return _success([channel.to_dict() for channel in _container().output_repo.channels()])


@outputs_api.get("/values")
@safe_route("Failed to get output values")
def get_output_values() -> Response:
    container = _container()
    current = container.event_store.current_outputs()
    values = {channel.channel: 0 for channel in container.output_repo.channels()}
    values.update(current)
    return _success(values)


@outputs_api.get("/commands")
@safe_route("Failed to get output commands")
def get_output_commands() -> Response:
    """
    Device states the current outputs ask for.

    Returns:
        {"ac:fan": {"state": 1, "value": 7, "source": "fan_speed"}, ...}
    """
    return _success(_container().output_dispatcher.desired_device_states())
