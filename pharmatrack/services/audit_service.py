"""
Audit recorder — write and read the regulatory audit trail.

Writes:
    record(tx, ...) appends one AuditLog row through the caller's open
    Transaction.  It flushes, so a failing insert aborts the enclosing
    transaction and the business write with it.  No retries.

Reads:
    find_by_entity / find_by_user page through the trail newest-first.
    There is no total count; callers page until a short page comes back.
"""

from __future__ import annotations

import json
import logging

from flask import has_request_context, request
from sqlalchemy import select

from pharmatrack.core.exceptions import ValidationError
from pharmatrack.models import AUDIT_ACTIONS, db
from pharmatrack.models.audit import AuditLog

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
MAX_LIMIT = 1000


def request_context() -> tuple[str | None, str | None]:
    """Return (ip_address, user_agent) of the inbound request, if any."""
    if not has_request_context():
        return None, None
    forwarded = request.headers.get("X-Forwarded-For", "")
    ip_address = forwarded.split(",")[0].strip() or request.remote_addr
    user_agent = request.headers.get("User-Agent")
    return ip_address, (user_agent[:500] if user_agent else None)


def record(
    tx,
    *,
    user_id: str,
    action: str,
    entity_type: str,
    entity_id: str,
    reason: str,
    ip_address: str | None = None,
    user_agent: str | None = None,
    details: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row inside *tx*.

    ``ip_address`` / ``user_agent`` default to the current request's values.

    Raises:
        ValidationError: empty reason or unknown action.
    """
    if not reason or not str(reason).strip():
        raise ValidationError("Audit reason is required", details={"reason": "must not be empty"})
    if action not in AUDIT_ACTIONS:
        raise ValidationError(f"Unknown audit action: {action}", details={"action": action})

    if ip_address is None and user_agent is None:
        ip_address, user_agent = request_context()

    log = AuditLog(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        details_json=json.dumps(details or {}, default=str),
    )
    tx.add(log)
    tx.flush()
    logger.debug("Audit %s %s/%s by %s", action, entity_type, entity_id, user_id)
    return log


def _page(limit, offset) -> tuple[int, int]:
    limit = DEFAULT_LIMIT if limit is None else max(1, min(int(limit), MAX_LIMIT))
    offset = 0 if offset is None else max(int(offset), 0)
    return limit, offset


def find_by_entity(
    entity_type: str,
    entity_id: str,
    *,
    limit: int | None = DEFAULT_LIMIT,
    offset: int | None = 0,
    user_id: str | None = None,
) -> list[AuditLog]:
    """Audit rows for one entity, newest first, optionally narrowed to an actor."""
    limit, offset = _page(limit, offset)
    stmt = select(AuditLog).where(
        AuditLog.entity_type == entity_type,
        AuditLog.entity_id == str(entity_id),
    )
    if user_id:
        stmt = stmt.where(AuditLog.user_id == user_id)
    stmt = stmt.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).offset(offset)
    return list(db.session.execute(stmt).scalars().all())


def find_by_user(
    user_id: str,
    *,
    limit: int | None = DEFAULT_LIMIT,
    offset: int | None = 0,
    entity_type: str | None = None,
) -> list[AuditLog]:
    """Audit rows written by one actor, newest first, optionally narrowed to an entity type."""
    limit, offset = _page(limit, offset)
    stmt = select(AuditLog).where(AuditLog.user_id == user_id)
    if entity_type:
        stmt = stmt.where(AuditLog.entity_type == entity_type)
    stmt = stmt.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).offset(offset)
    return list(db.session.execute(stmt).scalars().all())
