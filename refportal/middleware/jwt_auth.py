"""
Bearer token parsing.

Sets ``g.jwt_user_id`` for API requests carrying a valid access token and
leaves it None otherwise. Rejection is left to ``require_user``.
"""

import logging

import jwt
from flask import g, request

from refportal.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1/"
PUBLIC_PREFIXES = ("/api/v1/health",)


def _bearer_token():
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def init_jwt_middleware(app):
    @app.before_request
    def _identify_caller():
        g.jwt_user_id = None
        if not request.path.startswith(API_PREFIX) or request.path.startswith(PUBLIC_PREFIXES):
            return

        token = _bearer_token()
        if token is None:
            return
        try:
            g.jwt_user_id = int(decode_access_token(token)["sub"])
        except jwt.ExpiredSignatureError:
            logger.info("Expired access token", extra={"path": request.path})
        except (jwt.InvalidTokenError, KeyError, ValueError):
            logger.info("Rejected access token", extra={"path": request.path})
