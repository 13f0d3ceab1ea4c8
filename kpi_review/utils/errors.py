"""Standardised API result envelopes.

Every mutating or reading endpoint answers with a result object; errors are
values, never raised across the HTTP boundary.

Usage
-----
    from kpi_review.utils.errors import api_ok, api_error, E

    return api_ok(record, status=201)
    return api_error(E.VALIDATION, "score is required")
"""

from __future__ import annotations

from flask import jsonify

from kpi_review.core.exceptions import ReviewError


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Mirrors ``ReviewError.code`` on the exception classes, plus codes that
    only the HTTP layer produces.
    """

    # Validation – HTTP 400 / 422
    BAD_REQUEST = "ERR_BAD_REQUEST"
    VALIDATION = "ERR_VALIDATION"
    MISSING_OCCURRENCE = "ERR_MISSING_OCCURRENCE"

    # Identity – HTTP 401 / 403
    NOT_AUTHORIZED = "ERR_NOT_AUTHORIZED"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # One-shot / ordering – HTTP 409
    ALREADY_SCORED = "ERR_ALREADY_SCORED"
    ASSIGNEE_SCORE_MISSING = "ERR_ASSIGNEE_SCORE_MISSING"

    # Evidence store – HTTP 502 / 504
    UPLOAD = "ERR_UPLOAD"
    UPLOAD_TIMEOUT = "ERR_UPLOAD_TIMEOUT"

    # Server – HTTP 500
    DATA_INTEGRITY = "ERR_DATA_INTEGRITY"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.BAD_REQUEST: 400,
    E.VALIDATION: 422,
    E.MISSING_OCCURRENCE: 422,
    E.NOT_AUTHORIZED: 403,
    E.NOT_FOUND: 404,
    E.ALREADY_SCORED: 409,
    E.ASSIGNEE_SCORE_MISSING: 409,
    E.UPLOAD: 502,
    E.UPLOAD_TIMEOUT: 504,
    E.DATA_INTEGRITY: 500,
    E.INTERNAL: 500,
}


def api_ok(data, *, status: int = 200):
    """Return ``{"success": true, "data": ...}`` with ``status``."""
    return jsonify({"success": True, "data": data}), status


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Error envelope ``{"success": false, "error": {code, message, details}}``.

    ``status`` overrides the default for ``code`` (400 for unknown codes).
    ``details`` carries offending values or allowed options for the UI and is
    always present, empty when there is nothing to add.
    """
    body = {
        "success": False,
        "error": {"code": code, "message": message, "details": dict(details or {})},
    }
    return jsonify(body), status or _DEFAULT_STATUS.get(code, 400)


def review_error_response(exc: ReviewError):
    """Render a service-layer ``ReviewError`` as an error envelope."""
    return api_error(exc.code, exc.message, status=exc.status, details=exc.details)
