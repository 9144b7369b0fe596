"""Process blueprint.

Endpoints:
  GET    /api/v1/processes                          list (production_line_id, is_active, status)
  POST   /api/v1/processes                          create       ADMIN, MANAGER, OPERATOR
  GET    /api/v1/processes/<id>                     detail
  PUT    /api/v1/processes/<id>                     update       ADMIN, MANAGER, OPERATOR
  DELETE /api/v1/processes/<id>                     deactivate   ADMIN, MANAGER
  GET    /api/v1/production-lines/<id>/processes    processes of one line (active only by default)

``include=production_line,creator`` expands relations through g.loaders.
"""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request

import pharmatrack.services.process_service as ps
from pharmatrack.blueprints import (
    bool_arg,
    json_body,
    page_response,
    pagination_args,
    register_error_handlers,
)
from pharmatrack.middleware.permission_required import require_reason, require_roles
from pharmatrack.models import USER_ROLES
from pharmatrack.services.relations import PROCESS_INCLUDES, expand_processes, parse_include

logger = logging.getLogger(__name__)

process_bp = Blueprint("process", __name__, url_prefix="/api/v1")
register_error_handlers(process_bp)

_EDIT_ROLES = ("ADMIN", "MANAGER", "OPERATOR")
_REMOVE_ROLES = ("ADMIN", "MANAGER")


def _expand(items: list[dict]) -> list[dict]:
    include = parse_include(request.args.get("include"), PROCESS_INCLUDES)
    return expand_processes(items, g.loaders, include)


@process_bp.route("/processes", methods=["GET"])
@require_roles(*USER_ROLES)
def list_processes():
    limit, offset = pagination_args()
    items = ps.list_processes(
        production_line_id=request.args.get("production_line_id") or None,
        is_active=bool_arg("is_active"),
        status=request.args.get("status") or None,
        limit=limit,
        offset=offset,
    )
    return page_response(_expand(items), limit, offset)


@process_bp.route("/production-lines/<line_id>/processes", methods=["GET"])
@require_roles(*USER_ROLES)
def list_line_processes(line_id):
    limit, offset = pagination_args()
    is_active = bool_arg("is_active")
    items = ps.list_processes_by_production_line(
        line_id,
        is_active=True if is_active is None else is_active,
        limit=limit,
        offset=offset,
    )
    return page_response(_expand(items), limit, offset)


@process_bp.route("/processes", methods=["POST"])
@require_roles(*_EDIT_ROLES)
@require_reason
def create_process():
    proc = ps.create_process(json_body(), actor_id=g.current_user.id)
    return jsonify(proc.to_dict()), 201


@process_bp.route("/processes/<process_id>", methods=["GET"])
@require_roles(*USER_ROLES)
def get_process(process_id):
    return jsonify(_expand([ps.get_process(process_id)])[0]), 200


@process_bp.route("/processes/<process_id>", methods=["PUT"])
@require_roles(*_EDIT_ROLES)
@require_reason
def update_process(process_id):
    proc = ps.update_process(process_id, json_body(), actor_id=g.current_user.id)
    return jsonify(proc.to_dict()), 200


@process_bp.route("/processes/<process_id>", methods=["DELETE"])
@require_roles(*_REMOVE_ROLES)
@require_reason
def remove_process(process_id):
    proc = ps.remove_process(process_id, json_body()["reason"], actor_id=g.current_user.id)
    return jsonify(proc.to_dict()), 200
