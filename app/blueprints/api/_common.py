"""
Blueprint helpers shared by the read-only API.

Usage:
    from app.blueprints.api._common import get_container, success, parse_datetime
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from flask import current_app

from app.domain.exceptions import ValidationError
from app.utils.http import success_response
from app.utils.time import coerce_datetime


def get_container():
    """Return the ServiceContainer stored on the running Flask app."""
    container = current_app.config.get("CONTAINER")
    if not container:
        raise RuntimeError("ServiceContainer not found in app config")
    return container


def success(data: dict | list | None = None, status: int = 200):
    """``{"ok": true, "data": ..., "error": null}``"""
    return success_response(data, status)


def parse_datetime(param: Optional[str], default: datetime) -> datetime:
    """Parse an ISO 8601 query parameter into an aware UTC datetime.

    Missing or blank parameters yield *default*; naive values are taken as UTC.

    Raises:
        ValidationError: If *param* is not ISO 8601
    """
    if not param or not param.strip():
        return coerce_datetime(default)
    parsed = coerce_datetime(param)
    if parsed is None:
        raise ValidationError(f"Invalid datetime format: {param}. Expected ISO 8601.")
    return parsed
