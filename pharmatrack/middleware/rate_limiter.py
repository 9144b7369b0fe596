"""
Rate limiting configuration.

Applies per-blueprint and per-view limits using Flask-Limiter.
The Limiter instance is created in pharmatrack/__init__.py with no default
limits; this module applies the granular ones.

    - Login:            LOGIN_RATE_LIMIT (default 5/minute per IP)
    - API blueprints:   API_RATE_LIMIT   (default 300/minute per IP)
    - Health check:     exempt

Rate limiting is disabled in testing mode.
"""

import logging

logger = logging.getLogger(__name__)

DEFAULT_LOGIN_LIMIT = "5/minute"
DEFAULT_API_LIMIT = "300/minute"

_API_BLUEPRINTS = ("production_line", "process", "user", "audit", "auth")


def init_rate_limits(app, limiter):
    """Apply rate limits to the registered blueprints and the login view."""
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    api_limit = app.config.get("API_RATE_LIMIT", DEFAULT_API_LIMIT)
    for bp_name in _API_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(api_limit)(bp)

    # Login is stricter, per IP
    login_limit = app.config.get("LOGIN_RATE_LIMIT", DEFAULT_LOGIN_LIMIT)
    view = app.view_functions.get("auth.login")
    if view is not None:
        app.view_functions["auth.login"] = limiter.limit(login_limit)(view)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    logger.info("Rate limiter configured: login=%s api=%s", login_limit, api_limit)
