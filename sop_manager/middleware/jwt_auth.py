"""
JWT Auth Middleware — parses the Bearer token and sets ``g.actor``.

A missing or invalid token leaves ``g.actor = None``; routes that need a
user enforce it with ``require_auth``.
"""

import logging

import jwt as pyjwt
from flask import g, request

from sop_manager.core.actor import ActorContext
from sop_manager.core.exceptions import ValidationError
from sop_manager.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.actor = None
        g.jwt_claims = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        if path.startswith(JWT_SKIP_PREFIXES):
            return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]
        try:
            payload = decode_access_token(token)
            g.actor = ActorContext.from_claims(payload)
            g.jwt_claims = payload
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired token on %s", path)
        except pyjwt.InvalidTokenError as e:
            logger.warning("Invalid token on %s: %s", path, e)
        except ValidationError:
            logger.warning("Token for %s carries an unknown role", path)
