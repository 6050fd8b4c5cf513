"""
JWT Service — signs and verifies the access tokens the API accepts.

Tokens are HS256, expire after JWT_ACCESS_EXPIRES seconds (default 3600)
and carry everything ``ActorContext.from_claims`` needs, so no request has
to load the user row just to know who is acting:

    sub, email, name, role, department, country   identity + role
    type ("access"), iss, iat, exp, jti            verification
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

ALGORITHM = "HS256"
ACCESS_TOKEN = "access"
DEFAULT_ACCESS_EXPIRES = 3600
DEFAULT_ISSUER = "sop-document-manager"


def _signing_key() -> str:
    cfg = current_app.config
    return cfg.get("JWT_SECRET_KEY") or cfg["SECRET_KEY"]


def _lifetime_seconds() -> int:
    return current_app.config.get("JWT_ACCESS_EXPIRES", DEFAULT_ACCESS_EXPIRES)


def _issuer() -> str:
    return current_app.config.get("JWT_ISSUER", DEFAULT_ISSUER)


def actor_claims(user) -> dict:
    """Identity claims for a User row (no timing fields)."""
    return {
        "sub": str(user.id),
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "department": user.department,
        "country": user.country,
    }


def generate_access_token(user) -> str:
    issued = datetime.now(timezone.utc)
    claims = actor_claims(user)
    claims.update(
        type=ACCESS_TOKEN,
        iss=_issuer(),
        iat=issued,
        exp=issued + timedelta(seconds=_lifetime_seconds()),
        jti=uuid.uuid4().hex,
    )
    return jwt.encode(claims, _signing_key(), algorithm=ALGORITHM)


def token_response(user) -> dict:
    """Login response body."""
    return {
        "access_token": generate_access_token(user),
        "token_type": "Bearer",
        "expires_in": _lifetime_seconds(),
        "user": user.to_dict(),
    }


def decode_token(token: str, expected_type: str = ACCESS_TOKEN) -> dict:
    """
    Verify signature, expiry, issuer and token type; return the claims.

    Raises:
        jwt.ExpiredSignatureError, jwt.InvalidTokenError (incl. issuer errors)
    """
    claims = jwt.decode(token, _signing_key(), algorithms=[ALGORITHM], issuer=_issuer())
    if claims.get("type") != expected_type:
        raise jwt.InvalidTokenError(f"{expected_type} token required, got {claims.get('type')!r}")
    return claims


def decode_access_token(token: str) -> dict:
    return decode_token(token)
