"""
HTTP blueprints and the helpers they share.

Every route answers with the result envelope of ``kpi_review.utils.errors``;
service exceptions are rendered by each blueprint's error handlers.
"""

import logging

from flask import g, request
from werkzeug.exceptions import HTTPException

from kpi_review.core.exceptions import NotAuthorized, ReviewError, ValidationError
from kpi_review.services.access import Caller
from kpi_review.utils.errors import E, api_error, review_error_response

logger = logging.getLogger(__name__)


def current_caller() -> Caller:
    """Caller identity from the verified access token."""
    user_id = getattr(g, "jwt_user_id", None)
    if user_id is None:
        raise NotAuthorized("A valid access token is required.", unauthenticated=True)
    return Caller(user_id=user_id, roles=tuple(getattr(g, "jwt_roles", None) or ()))


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def int_arg(name: str):
    """Optional integer query parameter."""
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(f"'{name}' must be an integer.", details={name: raw}) from exc


def bool_arg(name: str):
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    lowered = raw.lower()
    if lowered in ("1", "true", "yes"):
        return True
    if lowered in ("0", "false", "no"):
        return False
    raise ValidationError(f"'{name}' must be true or false.", details={name: raw})


def register_error_handlers(bp):
    """Attach ReviewError / unexpected-error rendering to ``bp``."""

    @bp.errorhandler(ReviewError)
    def _review_error(exc):
        log = logger.warning if exc.status < 500 else logger.error
        log("%s %s rejected: %s", request.method, request.path, exc.message,
            extra={"error_code": exc.code, "caller_id": getattr(g, "jwt_user_id", None)})
        return review_error_response(exc)

    @bp.errorhandler(Exception)
    def _unexpected(exc):
        if isinstance(exc, HTTPException):
            code = E.BAD_REQUEST if (exc.code or 500) < 500 else E.INTERNAL
            return api_error(code, exc.description or exc.name, status=exc.code)
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return api_error(E.INTERNAL, "Internal server error")
