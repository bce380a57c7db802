"""
JWT Service — bearer tokens for API callers.

Tokens are HS256, short-lived (JWT_ACCESS_EXPIRES seconds, default 900)
and carry the acting user plus the role used by approval tooling:

{
    "sub": "<user_id>",
    "roles": ["sales_manager"],
    "iss": "sales-ops",
    "iat": <issued_at>,
    "exp": <expires_at>,
    "jti": <unique_id>
}

Token issuance is left to the identity provider in production; the
helpers below are used by tests and local tooling.
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

ALGORITHM = "HS256"
ISSUER = "sales-ops"
DEFAULT_ACCESS_EXPIRES = 900


def _secret() -> str:
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def generate_access_token(user_id: int, roles: list[str] | None = None) -> str:
    """Sign a token identifying *user_id*."""
    now = datetime.now(timezone.utc)
    lifetime = current_app.config.get("JWT_ACCESS_EXPIRES", DEFAULT_ACCESS_EXPIRES)
    payload = {
        # PyJWT requires a string subject
        "sub": str(user_id),
        "roles": roles or [],
        "iss": ISSUER,
        "iat": now,
        "exp": now + timedelta(seconds=lifetime),
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(payload, _secret(), algorithm=ALGORITHM)


def token_for_user(user) -> str:
    """Token for a User row, roles taken from its single role column."""
    return generate_access_token(user.id, [user.role] if user.role else [])


def decode_access_token(token: str) -> dict:
    """Verify signature, expiry and issuer and return the claims.

    Raises:
        jwt.ExpiredSignatureError: token past its exp.
        jwt.InvalidTokenError: any other verification failure.
    """
    return jwt.decode(
        token,
        _secret(),
        algorithms=[ALGORITHM],
        issuer=ISSUER,
        leeway=current_app.config.get("JWT_LEEWAY_SECONDS", 0),
        options={"require": ["sub", "exp", "iss"]},
    )
