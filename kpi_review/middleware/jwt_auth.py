"""
Caller identity from the Authorization header.

    Authorization: Bearer <access token>  ->  g.jwt_user_id, g.jwt_roles

The middleware never rejects a request by itself: a missing, expired or
malformed token leaves ``g.jwt_user_id`` at None and the blueprint decides
(``current_caller()`` answers 401).
"""

import logging

import jwt as pyjwt
from flask import g, request

from kpi_review.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

PUBLIC_PREFIXES = ("/api/v1/health", "/static/")


def _bearer_token():
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def init_jwt_middleware(app):
    """Register the identity hook on ``app``."""

    @app.before_request
    def _identify_caller():
        g.jwt_user_id = None
        g.jwt_roles = []

        path = request.path
        if not path.startswith("/api/v1/") or path.startswith(PUBLIC_PREFIXES):
            return
        token = _bearer_token()
        if token is None:
            return

        try:
            claims = decode_access_token(token)
            user_id = int(claims["sub"])
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token on %s", path, extra={"request_id": g.get("request_id")})
            return
        except (pyjwt.InvalidTokenError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Rejected access token on %s: %s", path, exc, extra={"request_id": g.get("request_id")})
            return

        g.jwt_user_id = user_id
        g.jwt_roles = [str(r) for r in claims.get("roles") or []]
