"""Standardised API error responses.

Usage
-----
    from civictrack.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Issue not found")
    return api_error(E.VALIDATION_REQUIRED, "transition is required")
    return api_error(E.CONFLICT_CONTENTION, "Busy", details={"retryable": True})
"""

from __future__ import annotations

from flask import jsonify

from civictrack.core.exceptions import (
    CONTENTION,
    FORBIDDEN_ROLE,
    ILLEGAL_TRANSITION,
    INVALID_VALUE,
    NOT_FOUND,
)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400 (malformed request) / 422 (value out of domain)
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    CONFLICT_CONTENTION = "ERR_CONFLICT_CONTENTION"

    # Identity / permissions – HTTP 401 / 403
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.CONFLICT_CONTENTION: 409,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}

# Workflow error kind → API error code
KIND_CODES: dict[str, str] = {
    ILLEGAL_TRANSITION: E.CONFLICT_STATE,
    FORBIDDEN_ROLE: E.FORBIDDEN,
    INVALID_VALUE: E.VALIDATION_INVALID,
    NOT_FOUND: E.NOT_FOUND,
    CONTENTION: E.CONFLICT_CONTENTION,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (denial reason, retryable flag, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def workflow_error(result: dict):
    """Turn a ``denied`` / ``error`` workflow result dict into an API error."""
    kind = result.get("reason") if result["status"] == "denied" else result.get("kind")
    details = {"status": result["status"], "kind": kind}
    if result["status"] == "error":
        details["retryable"] = result.get("retryable", False)
    if result.get("details"):
        details["fields"] = result["details"]
    return api_error(KIND_CODES.get(kind, E.INTERNAL), result.get("message", ""), details=details)
