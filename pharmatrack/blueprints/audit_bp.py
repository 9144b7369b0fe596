"""Audit trail read endpoints.

  GET /api/v1/audit/entity/<entity_type>/<entity_id>   (user_id filter)
  GET /api/v1/audit/user/<user_id>                     (entity_type filter)

Readable by ADMIN, MANAGER and QUALITY_ASSURANCE.  Audit rows are never
written through HTTP directly; services append them inside their own
transactions.
"""

from flask import Blueprint, request

from pharmatrack.blueprints import page_response, pagination_args, register_error_handlers
from pharmatrack.middleware.permission_required import require_roles
from pharmatrack.services import audit_service

audit_bp = Blueprint("audit", __name__, url_prefix="/api/v1/audit")
register_error_handlers(audit_bp)

_READ_ROLES = ("ADMIN", "MANAGER", "QUALITY_ASSURANCE")


@audit_bp.route("/entity/<entity_type>/<entity_id>", methods=["GET"])
@require_roles(*_READ_ROLES)
def entity_history(entity_type, entity_id):
    limit, offset = pagination_args()
    rows = audit_service.find_by_entity(
        entity_type, entity_id,
        limit=limit, offset=offset,
        user_id=request.args.get("user_id") or None,
    )
    return page_response([r.to_dict() for r in rows], limit, offset)


@audit_bp.route("/user/<user_id>", methods=["GET"])
@require_roles(*_READ_ROLES)
def user_history(user_id):
    limit, offset = pagination_args()
    rows = audit_service.find_by_user(
        user_id,
        limit=limit, offset=offset,
        entity_type=request.args.get("entity_type") or None,
    )
    return page_response([r.to_dict() for r in rows], limit, offset)
