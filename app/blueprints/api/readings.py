"""
Readings API Blueprint
======================

Chart data and channel discovery.

Routes:
- GET /api/readings?since&until&selection=dev:ch,output:ch
- GET /api/devices
"""

from __future__ import annotations

import logging
from datetime import timedelta

from flask import Blueprint, Response, request

from app.blueprints.api._common import get_container as _container
from app.blueprints.api._common import parse_datetime
from app.blueprints.api._common import success as _success
from app.domain.events import OUTPUT_DEVICE, EventKey
from app.utils.http import safe_route
from app.utils.time import utc_now

logger = logging.getLogger("readings_api")

readings_api = Blueprint("readings_api", __name__, url_prefix="/api")


def _selectors(raw: str | None) -> list[EventKey]:
    """Parse a comma-separated selection; entries without a colon are ignored."""
    keys: list[EventKey] = []
    for item in (raw or "").split(","):
        item = item.strip()
        if ":" not in item:
            continue
        key = EventKey.parse(item)
        if key not in keys:
            keys.append(key)
    return keys


@readings_api.get("/readings")
@safe_route("Failed to query readings")
def get_readings() -> Response:
    """
    Time series per selected channel.

    Returns:
        {"ac:tent:temperature": [[ts, value, until?], ...], "output:fan": [...]}
    """
    now = utc_now()
    since = parse_datetime(request.args.get("since"), now - timedelta(hours=24))
    until = parse_datetime(request.args.get("until"), now)

    selectors = _selectors(request.args.get("selection"))
    if not selectors:
        return _success({})

    series = _container().event_store.query(selectors, since, until)
    return _success({key: [point.as_list() for point in points] for key, points in series.items()})


@readings_api.get("/devices")
@safe_route("Failed to list devices")
def get_devices() -> Response:
    """Numeric sensor ``(device, channel)`` pairs followed by every configured output."""
    container = _container()
    sensors = [{"device": key.device, "channel": key.channel} for key in container.event_store.sensor_channels()]
    outputs = [{"device": OUTPUT_DEVICE, "channel": ch.channel} for ch in container.output_repo.channels()]
    return _success(sensors + outputs)
