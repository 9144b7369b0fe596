"""
PharmaTrack Manufacturing Tracking Backend
Blueprint registry and shared request helpers.
"""

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from pharmatrack.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from pharmatrack.utils.errors import E, api_error

logger = logging.getLogger(__name__)

_TRUE = {"true", "1", "yes"}
_FALSE = {"false", "0", "no"}


def pagination_args(default_limit=100, max_limit=1000):
    """Read limit/offset query params.

    Query params:
        limit  — max items (default 100, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (limit, offset)
    """
    try:
        limit = min(max(int(request.args.get("limit", default_limit)), 1), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return limit, offset


def bool_arg(name):
    """Parse an optional boolean query param; None when absent or unparseable."""
    raw = request.args.get(name)
    if raw is None:
        return None
    raw = raw.strip().lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    return None


def json_body():
    """Return the JSON object body, or None if the body is not a JSON object."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


def page_response(items, limit, offset):
    """List envelope.  No total count: clients page until a short page."""
    return jsonify({"items": items, "count": len(items), "limit": limit, "offset": offset}), 200


# ── Error handlers ───────────────────────────────────────────────────────


def register_error_handlers(bp):
    """Map domain exceptions to JSON responses for one blueprint."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error):
        return api_error(E.VALIDATION_CONSTRAINT, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error):
        return api_error(E.CONFLICT_DUPLICATE, str(error))

    @bp.errorhandler(InvalidStateError)
    def _handle_invalid_state(error):
        return api_error(E.INVALID_STATE, str(error))

    @bp.errorhandler(UnauthorizedError)
    def _handle_unauthorized(error):
        return api_error(E.UNAUTHORIZED, str(error))

    @bp.errorhandler(ForbiddenError)
    def _handle_forbidden(error):
        return api_error(E.FORBIDDEN, str(error))

    @bp.errorhandler(HTTPException)
    def _handle_http(error):
        return jsonify({"error": error.description, "code": error.name}), error.code

    @bp.errorhandler(Exception)
    def _handle_unexpected(error):
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")

    return bp
