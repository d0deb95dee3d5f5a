"""
Rules API Blueprint
===================

Routes:
- GET /api/rules/status - Active rule ids and the annotated condition trees of the last run
- GET /api/changelog - Most recent changelog entries
"""

from __future__ import annotations

import logging

from flask import Blueprint, Response, request

from app.blueprints.api._common import get_container as _container
from app.blueprints.api._common import success as _success
from app.domain.exceptions import ValidationError
from app.utils.http import safe_route
from app.utils.time import to_iso

logger = logging.getLogger("rules_api")

rules_api = Blueprint("rules_api", __name__, url_prefix="/api")

_MAX_CHANGELOG = 100


@rules_api.get("/rules/status")
@safe_route("Failed to get rule status")
def get_rule_status() -> Response:
    engine = _container().rule_engine
    last_run = engine.last_run_at
    return _success(
        {
            "activeIds": sorted(engine.active_rule_ids),
            "statuses": {str(rule_id): tree for rule_id, tree in engine.rule_statuses.items()},
            "lastRunAt": to_iso(last_run) if last_run else None,
        }
    )


@rules_api.get("/changelog")
@safe_route("Failed to get changelog")
def get_changelog() -> Response:
    try:
        limit = int(request.args.get("limit", _MAX_CHANGELOG))
    except ValueError:
        raise ValidationError("limit must be an integer") from None
    limit = max(1, min(limit, _MAX_CHANGELOG))
    return _success(_container().changelog_repo.recent(limit))
