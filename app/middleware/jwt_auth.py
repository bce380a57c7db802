"""
JWT Auth Middleware — Parses JWT from Authorization header, sets g.jwt_*.

Identity resolution (see current_user_id):
  1. JWT (Authorization: Bearer <token>)  →  g.jwt_user_id, g.jwt_roles
  2. X-User-Id header                     →  only when API_AUTH_ENABLED is off
                                              (development / tests)
"""

import logging

import jwt as pyjwt
from flask import current_app, g, request

from app.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def _auth_enabled() -> bool:
    return str(current_app.config.get("API_AUTH_ENABLED", "false")).lower() == "true"


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        # Clear JWT context
        g.jwt_user_id = None
        g.jwt_roles = []

        # Skip non-API routes and health checks
        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return  # no bearer token; current_user_id() decides

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
            g.jwt_user_id = int(payload.get("sub"))
            g.jwt_roles = payload.get("roles", [])
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token", extra={"path": path})
        except (pyjwt.InvalidTokenError, TypeError, ValueError):
            logger.warning("Invalid access token", extra={"path": path})


def current_user_id() -> int | None:
    """Acting user for the current request, or None if unauthenticated."""
    user_id = getattr(g, "jwt_user_id", None)
    if user_id is not None:
        return user_id
    if _auth_enabled():
        return None
    raw = request.headers.get("X-User-Id", "")
    return int(raw) if raw.strip().isdigit() else None
