"""
JWT Auth Middleware — resolves the Bearer token into g.current_user.

For every /api/v1/ request carrying ``Authorization: Bearer <token>``:
  decode → structure check → blocklist → user exists → user active → email match

On success:  g.current_user, g.jwt_payload
On failure:  g.auth_error is set; ``require_auth`` turns it into a 401.
Requests without a token simply leave g.current_user = None.

The per-request batch loader set (g.loaders) is created here as well, so
every request starts with empty loader caches.
"""

import logging

from flask import g, request

from pharmatrack.core.exceptions import UnauthorizedError
from pharmatrack.services import auth_service
from pharmatrack.services.dataloader import create_loaders

logger = logging.getLogger(__name__)

# Paths that never look at the Authorization header
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/health/live",
    "/static/",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.current_user = None
        g.jwt_payload = None
        g.auth_error = None
        g.loaders = create_loaders()

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        if path == "/api/v1/health" or path.startswith(JWT_SKIP_PREFIXES):
            return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:].strip()
        try:
            g.current_user, g.jwt_payload = auth_service.authenticate_token(token)
        except UnauthorizedError as exc:
            g.auth_error = str(exc)
