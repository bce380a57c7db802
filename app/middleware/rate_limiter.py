"""
Per-blueprint rate limits (Flask-Limiter).

The Limiter in app/__init__.py has no default limits. Each API blueprint
gets its own limit string from config so operators can tune them without
a deploy:

    RATELIMIT_APPROVAL    default 60/minute   (workflow edits, step decisions)
    RATELIMIT_QUOTATION   default 200/minute  (quotation CRUD)

The health blueprint is always exempt.
"""

import logging

logger = logging.getLogger(__name__)

# blueprint name -> (config key, default limit)
BLUEPRINT_LIMITS = {
    "approval": ("RATELIMIT_APPROVAL", "60/minute"),
    "quotation": ("RATELIMIT_QUOTATION", "200/minute"),
}

EXEMPT_BLUEPRINTS = ("health",)


def init_rate_limits(app, limiter):
    """Attach limits to registered blueprints; no-op under TESTING."""
    if app.config.get("TESTING"):
        return

    applied = {}
    for name, (key, default) in BLUEPRINT_LIMITS.items():
        bp = app.blueprints.get(name)
        if bp is None:
            continue
        value = app.config.get(key) or default
        limiter.limit(value)(bp)
        applied[name] = value

    for name in EXEMPT_BLUEPRINTS:
        bp = app.blueprints.get(name)
        if bp is not None:
            limiter.exempt(bp)

    logger.info("Rate limits applied: %s", ", ".join(f"{k}={v}" for k, v in applied.items()))
