"""
Auth Blueprint — login, logout (token revocation), current user.

Endpoints:
    POST /api/v1/auth/login    — email + password → access token
    POST /api/v1/auth/logout   — revoke the presented token
    GET  /api/v1/auth/me       — current user profile
"""

import logging

from flask import Blueprint, g, jsonify

from pharmatrack.blueprints import json_body, register_error_handlers
from pharmatrack.middleware.permission_required import require_auth
from pharmatrack.services import auth_service
from pharmatrack.utils.errors import E, api_error

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")
register_error_handlers(auth_bp)


@auth_bp.route("/login", methods=["POST"])
def login():
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    email = data.get("email")
    password = data.get("password")
    if not isinstance(email, str) or not isinstance(password, str) or not email or not password:
        return api_error(E.VALIDATION_REQUIRED, "email and password are required")
    return jsonify(auth_service.login(email.strip(), password)), 200


@auth_bp.route("/logout", methods=["POST"])
@require_auth
def logout():
    if not auth_service.logout(g.jwt_payload):
        return api_error(E.UNAVAILABLE, "Token revocation is currently unavailable")
    return jsonify({"success": True}), 200


@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    return jsonify(g.current_user.to_dict()), 200
