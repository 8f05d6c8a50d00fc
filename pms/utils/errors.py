"""Standardised API error responses.

Usage
-----
    from pms.utils.errors import api_error, api_error_for, E

    return api_error(E.NOT_FOUND, "Report not found")
    return api_error(E.VALIDATION_REQUIRED, "status is required")
    return api_error_for(exc)   # any pms.core.exceptions.DomainError
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    INVALID_STATUS = "ERR_INVALID_STATUS"

    # Auth – HTTP 401 / 403
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Server – HTTP 500 / 503
    STORE_UNAVAILABLE = "ERR_STORE_UNAVAILABLE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.INVALID_STATUS: 400,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.STORE_UNAVAILABLE: 503,
    E.INTERNAL: 500,
}

# DomainError.kind -> error code
_KIND_CODES: dict[str, str] = {
    "not_found": E.NOT_FOUND,
    "invalid_status": E.INVALID_STATUS,
    "forbidden": E.FORBIDDEN,
    "validation": E.VALIDATION_INVALID,
    "conflict": E.CONFLICT_STATE,
    "store_unavailable": E.STORE_UNAVAILABLE,
}

# Kinds whose detail is internal; the user gets a retry prompt instead.
_GENERIC_MESSAGES: dict[str, str] = {
    "conflict": "This report was updated by someone else. Please reload and try again.",
    "store_unavailable": "The service is temporarily unavailable. Please try again.",
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
        Extra structured payload.

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


def api_error_for(exc, *, details: dict | None = None):
    """Render a ``DomainError`` with its mapped code and user-facing message."""
    kind = getattr(exc, "kind", "error")
    code = _KIND_CODES.get(kind, E.INTERNAL)
    message = _GENERIC_MESSAGES.get(kind, str(exc))
    return api_error(code, message, details=details)
