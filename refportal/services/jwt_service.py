"""
Access tokens for the portal API.

Login lives in the institution's identity service; the portal only needs
to verify the HS256 bearer tokens it receives. ``generate_access_token``
exists for tests and operator tooling.

Claims: ``sub`` (user id as a string), ``type="access"``, ``iat``,
``exp`` and a random ``jti``.
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

ALGORITHM = "HS256"
TOKEN_TYPE = "access"


def _signing_key() -> str:
    cfg = current_app.config
    return cfg.get("JWT_SECRET_KEY") or cfg["SECRET_KEY"]


def generate_access_token(user_id: int, *, lifetime: int | None = None) -> str:
    issued = datetime.now(timezone.utc)
    seconds = lifetime if lifetime is not None else current_app.config.get("JWT_ACCESS_EXPIRES", 900)
    claims = {
        "sub": str(user_id),
        "type": TOKEN_TYPE,
        "iat": issued,
        "exp": issued + timedelta(seconds=seconds),
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(claims, _signing_key(), algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verified claims of *token*; raises ``jwt.InvalidTokenError`` otherwise."""
    claims = jwt.decode(token, _signing_key(), algorithms=[ALGORITHM])
    if claims.get("type") != TOKEN_TYPE:
        raise jwt.InvalidTokenError("not an access token")
    return claims
