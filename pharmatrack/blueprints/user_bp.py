"""User administration blueprint.

Endpoints:
  GET    /api/v1/users                              list (is_active, role)   ADMIN, MANAGER
  POST   /api/v1/users                              create                   ADMIN
  GET    /api/v1/users/<id>                         detail                   ADMIN, MANAGER
  PUT    /api/v1/users/<id>                         update                   ADMIN, MANAGER
  DELETE /api/v1/users/<id>                         deactivate + anonymize   ADMIN
  PUT    /api/v1/users/<id>/password                change password          self or ADMIN
  POST   /api/v1/users/test-transaction-rollback    rollback self-test       ADMIN
"""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request

import pharmatrack.services.user_service as us
from pharmatrack.blueprints import (
    bool_arg,
    json_body,
    page_response,
    pagination_args,
    register_error_handlers,
)
from pharmatrack.middleware.permission_required import require_auth, require_reason, require_roles
from pharmatrack.utils.errors import E, api_error

logger = logging.getLogger(__name__)

user_bp = Blueprint("user", __name__, url_prefix="/api/v1")
register_error_handlers(user_bp)


@user_bp.route("/users", methods=["GET"])
@require_roles("ADMIN", "MANAGER")
def list_users():
    limit, offset = pagination_args()
    users = us.list_users(
        is_active=bool_arg("is_active"),
        role=request.args.get("role") or None,
        limit=limit,
        offset=offset,
    )
    return page_response([u.to_dict() for u in users], limit, offset)


@user_bp.route("/users", methods=["POST"])
@require_roles("ADMIN")
@require_reason
def create_user():
    user = us.create_user(json_body(), actor_id=g.current_user.id)
    return jsonify(user.to_dict()), 201


@user_bp.route("/users/test-transaction-rollback", methods=["POST"])
@require_roles("ADMIN")
def transaction_rollback_check():
    data = json_body()
    if data is None or not data.get("email"):
        return api_error(E.VALIDATION_REQUIRED, "email is required")
    should_fail = data.get("should_fail", True)
    if not isinstance(should_fail, bool):
        return api_error(E.VALIDATION_INVALID, "should_fail must be a boolean")
    result = us.verify_transaction_rollback(
        data["email"], actor_id=g.current_user.id, should_fail=should_fail,
    )
    return jsonify(result), 200


@user_bp.route("/users/<user_id>", methods=["GET"])
@require_roles("ADMIN", "MANAGER")
def get_user(user_id):
    return jsonify(us.get_user(user_id).to_dict()), 200


@user_bp.route("/users/<user_id>", methods=["PUT"])
@require_roles("ADMIN", "MANAGER")
@require_reason
def update_user(user_id):
    user = us.update_user(
        user_id, json_body(),
        actor_id=g.current_user.id, actor_role=g.current_user.role,
    )
    return jsonify(user.to_dict()), 200


@user_bp.route("/users/<user_id>", methods=["DELETE"])
@require_roles("ADMIN")
@require_reason
def deactivate_user(user_id):
    user = us.deactivate_user(user_id, json_body()["reason"], actor_id=g.current_user.id)
    return jsonify(user.to_dict()), 200


@user_bp.route("/users/<user_id>/password", methods=["PUT"])
@require_auth
@require_reason
def change_password(user_id):
    data = json_body()
    if not data.get("new_password"):
        return api_error(E.VALIDATION_REQUIRED, "new_password is required")
    us.change_password(
        user_id, data["new_password"], data["reason"],
        actor_id=g.current_user.id, actor_role=g.current_user.role,
    )
    return jsonify({"success": True}), 200
