"""Production line blueprint.

Endpoints:
  GET    /api/v1/production-lines              list (is_active, status, limit, offset, include)
  POST   /api/v1/production-lines              create            ADMIN, MANAGER
  GET    /api/v1/production-lines/<id>         detail (include)
  PUT    /api/v1/production-lines/<id>         update            ADMIN, MANAGER
  DELETE /api/v1/production-lines/<id>         deactivate        ADMIN, MANAGER

``include=processes,creator`` expands relations through the request's
batch loaders.  Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request

import pharmatrack.services.production_line_service as pls
from pharmatrack.blueprints import (
    bool_arg,
    json_body,
    page_response,
    pagination_args,
    register_error_handlers,
)
from pharmatrack.middleware.permission_required import require_reason, require_roles
from pharmatrack.models import USER_ROLES
from pharmatrack.services.relations import LINE_INCLUDES, expand_production_lines, parse_include
from pharmatrack.utils.errors import E, api_error

logger = logging.getLogger(__name__)

production_line_bp = Blueprint("production_line", __name__, url_prefix="/api/v1")
register_error_handlers(production_line_bp)

_WRITE_ROLES = ("ADMIN", "MANAGER")


def _expand_one(line: dict) -> dict:
    include = parse_include(request.args.get("include"), LINE_INCLUDES)
    return expand_production_lines([line], g.loaders, include)[0]


@production_line_bp.route("/production-lines", methods=["GET"])
@require_roles(*USER_ROLES)
def list_production_lines():
    limit, offset = pagination_args()
    items = pls.list_production_lines(
        is_active=bool_arg("is_active"),
        status=request.args.get("status") or None,
        limit=limit,
        offset=offset,
    )
    include = parse_include(request.args.get("include"), LINE_INCLUDES)
    return page_response(expand_production_lines(items, g.loaders, include), limit, offset)


@production_line_bp.route("/production-lines", methods=["POST"])
@require_roles(*_WRITE_ROLES)
@require_reason
def create_production_line():
    data = json_body()
    if not data.get("name"):
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    line = pls.create_production_line(data, actor_id=g.current_user.id)
    return jsonify(line.to_dict()), 201


@production_line_bp.route("/production-lines/<line_id>", methods=["GET"])
@require_roles(*USER_ROLES)
def get_production_line(line_id):
    return jsonify(_expand_one(pls.get_production_line(line_id))), 200


@production_line_bp.route("/production-lines/<line_id>", methods=["PUT"])
@require_roles(*_WRITE_ROLES)
@require_reason
def update_production_line(line_id):
    line = pls.update_production_line(line_id, json_body(), actor_id=g.current_user.id)
    return jsonify(line.to_dict()), 200


@production_line_bp.route("/production-lines/<line_id>", methods=["DELETE"])
@require_roles(*_WRITE_ROLES)
@require_reason
def remove_production_line(line_id):
    reason = json_body()["reason"]
    line = pls.remove_production_line(line_id, reason, actor_id=g.current_user.id)
    return jsonify(line.to_dict()), 200
