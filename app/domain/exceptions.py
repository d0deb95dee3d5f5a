"""Centralized exception hierarchy for TischlerCtrl.

All domain and service exceptions inherit from :class:`TischlerError` so that
callers can catch a single base class when they need a broad safety net, yet
still match on specific subclasses where narrower handling is appropriate.

Blueprint-level error handling (see ``app/utils/http.safe_route``) maps these
to the correct HTTP status codes automatically. Inside the control core none
of them is fatal: each is either recovered locally or downgraded to a logged
no-op by the component that catches it.

Hierarchy
---------
::

    TischlerError (base, maps to 500)
    ├── ValidationError          (400, bad input from caller)
    ├── ProtocolError            (400, malformed agent message)
    ├── AuthError                (401, bad or missing API key)
    ├── ServiceError             (500, business-logic failure)
    │   ├── RepositoryError      (500, database / persistence)
    │   │   └── StoreUnavailable (503, event store cannot be reached)
    │   └── RuleEvaluationError  (500, one rule could not be evaluated)
    ├── AgentConnectionError     (502, transport failure)
    ├── DeliveryFailure          (503, no agent connected for a prefix)
    └── ConfigurationError       (500, missing / invalid config)
"""

from __future__ import annotations


class TischlerError(Exception):
    """Base exception for all TischlerCtrl errors.

    Parameters
    ----------
    message:
        Human-readable description (logged server-side, **not** leaked to
        the HTTP client unless the exception class opts in).
    detail:
        Optional machine-readable context dict attached to the error for
        structured logging.
    """

    http_status: int = 500

    def __init__(self, message: str = "", *, detail: dict | None = None) -> None:
        super().__init__(message)
        self.detail = detail or {}


# ── Client errors (4xx) ──────────────────────────────────────────────


class ValidationError(TischlerError):
    """Caller supplied invalid or incomplete input (HTTP 400)."""

    http_status: int = 400


class ProtocolError(TischlerError):
    """An agent frame was not valid JSON or had an invalid shape.

    Reported back to the agent with an ``error`` message; the connection
    survives.
    """

    http_status: int = 400


class AuthError(TischlerError):
    """An agent presented a missing or unknown API key."""

    http_status: int = 401


# ── Server errors (5xx) ──────────────────────────────────────────────


class ServiceError(TischlerError):
    """Business-logic failure in a service method (HTTP 500)."""

    http_status: int = 500


class RepositoryError(ServiceError):
    """Database / persistence layer failure (HTTP 500)."""

    http_status: int = 500


class StoreUnavailable(RepositoryError):
    """The event store could not be read or written.

    Callers treat reads as empty and writes as no-ops.
    """

    http_status: int = 503


class RuleEvaluationError(ServiceError):
    """A single rule could not be parsed or evaluated; the tick continues."""

    def __init__(self, message: str = "", *, rule_id: int | None = None, detail: dict | None = None) -> None:
        super().__init__(message, detail=detail)
        self.rule_id = rule_id


class AgentConnectionError(TischlerError):
    """WebSocket transport failure between agent and gateway (HTTP 502)."""

    http_status: int = 502


class DeliveryFailure(TischlerError):
    """No live agent accepted a command for the target prefix (HTTP 503)."""

    http_status: int = 503


class ConfigurationError(TischlerError):
    """Missing or invalid application configuration (HTTP 500)."""

    http_status: int = 500
