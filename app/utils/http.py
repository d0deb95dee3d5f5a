"""JSON envelope helpers for the HTTP API.

Every response has the shape ``{"ok": bool, "data": ..., "error": ...}``;
errors carry ``{"message", "timestamp"}``. Details of server-side failures
are logged, never returned.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable

from flask import Response, jsonify

from app.utils.time import iso_now

_log = logging.getLogger(__name__)

_GENERIC_MESSAGES: dict[int, str] = {
    400: "Invalid request",
    404: "Resource not found",
    500: "An internal error occurred",
    502: "Upstream failure",
    503: "Service unavailable",
}


def success_response(data: dict | list | None = None, status: int = 200) -> Response:
    response = jsonify({"ok": True, "data": data, "error": None})
    response.status_code = status
    return response


def error_response(message: str, status: int = 500) -> Response:
    response = jsonify({"ok": False, "data": None, "error": {"message": message, "timestamp": iso_now()}})
    response.status_code = status
    return response


def safe_error(exc: BaseException, status: int = 500, *, context: str = "") -> Response:
    """Log *exc* with its traceback and answer with a generic message for *status*."""
    _log.error("API error [%s] %s: %s", status, context, exc, exc_info=exc)
    return error_response(_GENERIC_MESSAGES.get(status, _GENERIC_MESSAGES[500]), status)


def safe_route(error_message: str = "An internal error occurred", *, error_status: int = 500) -> Callable:
    """Wrap a route so domain errors map to their ``http_status``.

    Client errors (< 500) echo the exception text; anything else is logged
    and answered generically with *error_message* as log context.
    """
    from app.domain.exceptions import TischlerError

    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Response:
            try:
                return fn(*args, **kwargs)
            except TischlerError as exc:
                if exc.http_status >= 500:
                    return safe_error(exc, exc.http_status, context=error_message)
                return error_response(str(exc) or error_message, exc.http_status)
            except Exception as exc:
                return safe_error(exc, error_status, context=error_message)

        return wrapper

    return decorator
