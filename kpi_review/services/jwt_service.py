"""
Access tokens.

The identity service issues tokens; this engine only verifies them. Minting
lives here too so tests and local tooling produce tokens of the same shape.

Claims:
    sub    user id (string)
    roles  role names, e.g. ["lecturer"]
    type   always "access"
    iat / exp / jti

Signed with HS256 using ``JWT_SECRET_KEY`` (falls back to ``SECRET_KEY``).
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

ALGORITHM = "HS256"
TOKEN_TYPE = "access"
DEFAULT_ACCESS_EXPIRES = 900  # seconds


def _signing_key() -> str:
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def generate_access_token(user_id: int, roles: list[str] | None = None, expires_in: int | None = None) -> str:
    """Mint an access token for ``user_id``; ``expires_in`` overrides JWT_ACCESS_EXPIRES."""
    if expires_in is None:
        expires_in = current_app.config.get("JWT_ACCESS_EXPIRES", DEFAULT_ACCESS_EXPIRES)
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "roles": list(roles or []),
        "type": TOKEN_TYPE,
        "iat": issued,
        "exp": issued + timedelta(seconds=expires_in),
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(claims, _signing_key(), algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify ``token`` and return its claims.

    Raises:
        jwt.ExpiredSignatureError: token past ``exp``.
        jwt.InvalidTokenError:     bad signature, malformed, or not an access token.
    """
    claims = jwt.decode(token, _signing_key(), algorithms=[ALGORITHM], options={"require": ["sub", "exp"]})
    if claims.get("type") != TOKEN_TYPE:
        raise jwt.InvalidTokenError(f"Expected an {TOKEN_TYPE} token, got {claims.get('type')!r}")
    return claims
