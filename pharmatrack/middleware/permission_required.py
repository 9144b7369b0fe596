"""
Permission Decorators — authentication, role and reason guards for routes.

Composed in this order on every mutating endpoint:

    @bp.route("/production-lines", methods=["POST"])
    @require_roles("ADMIN", "MANAGER")     # implies require_auth
    @require_reason
    def create_production_line():
        ...

Guards run before the view body, so an unauthenticated request or a
mutation without a ``reason`` never reaches a service.
"""

import functools
import logging

from flask import g, request

from pharmatrack.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def require_auth(f):
    """Decorator: require a valid, non-revoked access token."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if getattr(g, "current_user", None) is None:
            message = getattr(g, "auth_error", None) or "Authentication required"
            return api_error(E.UNAUTHORIZED, message)
        return f(*args, **kwargs)
    return decorated


def require_roles(*roles: str):
    """
    Decorator: require the authenticated user to hold one of *roles*.

    Args:
        roles: Role names, e.g. "ADMIN", "MANAGER"
    """
    allowed = frozenset(roles)

    def decorator(f):
        @functools.wraps(f)
        @require_auth
        def decorated(*args, **kwargs):
            user = g.current_user
            if user.role not in allowed:
                logger.warning(
                    "User %s (%s) denied on %s: requires one of %s",
                    user.id, user.role, f.__name__, sorted(allowed),
                )
                return api_error(
                    E.FORBIDDEN,
                    "Insufficient permissions",
                    details={"required_any": sorted(allowed)},
                )
            return f(*args, **kwargs)
        return decorated
    return decorator


def require_reason(f):
    """Decorator: require a non-empty ``reason`` string in the JSON body."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        data = request.get_json(silent=True) or {}
        reason = data.get("reason") if isinstance(data, dict) else None
        if not isinstance(reason, str) or not reason.strip():
            return api_error(E.VALIDATION_REQUIRED, "reason is required",
                             details={"reason": "must be a non-empty string"})
        return f(*args, **kwargs)
    return decorated
