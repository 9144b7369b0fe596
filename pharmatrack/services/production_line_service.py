"""
Production line service — business logic for ProductionLine.

Every mutation runs in one transaction together with its audit record;
the cache is invalidated after commit via cache_events.
Reads go through the cache (``production-lines:<options>``,
``production-line:<id>``), tagged ``production-line``.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from pharmatrack.core.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from pharmatrack.models import PRODUCTION_LINE_STATUSES, db
from pharmatrack.models.production import Process, ProductionLine
from pharmatrack.services import audit_service, cache_events, cache_service
from pharmatrack.services.datastore import is_unique_violation, run_in_transaction

logger = logging.getLogger(__name__)

ENTITY_TYPE = "ProductionLine"
CACHE_TAG = "production-line"
LIST_TTL = 1800
ITEM_TTL = 3600
DEFAULT_LIMIT = 100

_DUPLICATE_NAME = "Production line with this name already exists"


# ── Helpers ──────────────────────────────────────────────────────────────


def _validate_name(name) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Name is required", details={"name": "must be a non-empty string"})
    if len(name) > 200:
        raise ValidationError("Name is too long", details={"name": "at most 200 characters"})
    return name.strip()


def _validate_status(status) -> str:
    if status not in PRODUCTION_LINE_STATUSES:
        raise ValidationError(
            f"Invalid status: {status}",
            details={"status": f"one of {', '.join(PRODUCTION_LINE_STATUSES)}"},
        )
    return status


def _publish(event: str, line_id: str):
    return lambda: cache_events.publish("production_line", event, line_id)


def list_cache_key(options: dict) -> str:
    """Canonical cache key for a list query; defaults are left out."""
    canonical = {
        k: v for k, v in options.items()
        if v is not None and not (k == "limit" and v == DEFAULT_LIMIT) and not (k == "offset" and v == 0)
    }
    return "production-lines:" + json.dumps(canonical, sort_keys=True, separators=(",", ":"))


def item_cache_key(line_id: str) -> str:
    return f"production-line:{line_id}"


# ═════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════


def query_production_lines(
    *,
    is_active: bool | None = None,
    status: str | None = None,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
) -> list[dict]:
    """Uncached list query, newest first."""
    stmt = select(ProductionLine)
    if is_active is not None:
        stmt = stmt.where(ProductionLine.is_active.is_(is_active))
    if status:
        stmt = stmt.where(ProductionLine.status == status)
    stmt = stmt.order_by(ProductionLine.created_at.desc()).limit(limit).offset(offset)
    return [line.to_dict() for line in db.session.execute(stmt).scalars().all()]


def list_production_lines(
    *,
    is_active: bool | None = None,
    status: str | None = None,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
) -> list[dict]:
    if status is not None:
        _validate_status(status)
    options = {"is_active": is_active, "status": status, "limit": limit, "offset": offset}
    return cache_service.get_or_set(
        list_cache_key(options),
        lambda: query_production_lines(is_active=is_active, status=status, limit=limit, offset=offset),
        ttl=LIST_TTL,
        tags=[CACHE_TAG],
    )


def get_production_line(line_id: str) -> dict:
    """Return one production line as a dict.

    Raises:
        NotFoundError: unknown id.
    """
    def _load():
        line = db.session.get(ProductionLine, line_id)
        return line.to_dict() if line else None

    data = cache_service.get_or_set(item_cache_key(line_id), _load, ttl=ITEM_TTL, tags=[CACHE_TAG])
    if data is None:
        raise NotFoundError(resource="Production line", resource_id=line_id)
    return data


# ═════════════════════════════════════════════════════════════════════════
# Mutations
# ═════════════════════════════════════════════════════════════════════════


def create_production_line(data: dict, *, actor_id: str) -> ProductionLine:
    """Create a line and its CREATE audit record atomically.

    Raises:
        ValidationError: bad name or status.
        ConflictError: name already taken.
    """
    name = _validate_name(data.get("name"))
    status = _validate_status(data.get("status") or "ACTIVE")
    reason = data.get("reason") or "Production line created"

    def _body(tx):
        line = tx.add(ProductionLine(name=name, status=status, created_by=actor_id, reason=reason))
        tx.flush()
        audit_service.record(
            tx,
            user_id=actor_id,
            action="CREATE",
            entity_type=ENTITY_TYPE,
            entity_id=line.id,
            reason=reason,
            details={"name": line.name, "status": line.status, "version": line.version},
        )
        tx.on_commit(_publish("created", line.id))
        return line

    try:
        line = run_in_transaction(_body)
    except IntegrityError as exc:
        if is_unique_violation(exc):
            raise ConflictError(_DUPLICATE_NAME, field="name") from exc
        raise

    logger.info("Production line created id=%s name=%s by=%s", line.id, line.name, actor_id)
    return line


def update_production_line(line_id: str, data: dict, *, actor_id: str) -> ProductionLine:
    """Patch name/status; audit carries the diff and the previous values.

    Raises:
        NotFoundError, ValidationError, ConflictError
    """
    patch = {}
    if "name" in data and data["name"] is not None:
        patch["name"] = _validate_name(data["name"])
    if "status" in data and data["status"] is not None:
        patch["status"] = _validate_status(data["status"])
    reason = data.get("reason") or "Production line updated"

    def _body(tx):
        line = tx.get(ProductionLine, line_id)
        if line is None:
            raise NotFoundError(resource="Production line", resource_id=line_id)

        changes = {k: v for k, v in patch.items() if getattr(line, k) != v}
        previous = {k: getattr(line, k) for k in changes}
        for field, value in changes.items():
            setattr(line, field, value)
        if changes:
            line.version = (line.version or 0) + 1
        tx.flush()

        audit_service.record(
            tx,
            user_id=actor_id,
            action="UPDATE",
            entity_type=ENTITY_TYPE,
            entity_id=line.id,
            reason=reason,
            details={"changes": changes, "previousValues": previous},
        )
        tx.on_commit(_publish("updated", line.id))
        return line

    try:
        line = run_in_transaction(_body)
    except IntegrityError as exc:
        if is_unique_violation(exc):
            raise ConflictError(_DUPLICATE_NAME, field="name") from exc
        raise

    logger.info("Production line updated id=%s by=%s fields=%s", line_id, actor_id, sorted(patch))
    return line


def remove_production_line(line_id: str, reason: str, *, actor_id: str) -> ProductionLine:
    """Soft-delete a line.

    Blocked while the line owns any active process that is not COMPLETED.

    Raises:
        NotFoundError: unknown id.
        ConflictError: line already deactivated.
        InvalidStateError: unfinished processes remain (message carries the count).
    """

    def _body(tx):
        line = tx.get(ProductionLine, line_id)
        if line is None:
            raise NotFoundError(resource="Production line", resource_id=line_id)
        if not line.is_active:
            raise ConflictError("Production line is already deactivated")

        blocking = tx.count(
            Process,
            Process.production_line_id == line_id,
            Process.is_active.is_(True),
            Process.status != "COMPLETED",
        )
        if blocking > 0:
            raise InvalidStateError(
                f"Cannot deactivate production line with {blocking} active processes. "
                "Please complete or cancel all processes first."
            )

        line.is_active = False
        tx.flush()
        audit_service.record(
            tx,
            user_id=actor_id,
            action="DELETE",
            entity_type=ENTITY_TYPE,
            entity_id=line.id,
            reason=reason,
            details={
                "action": "deactivation",
                "previouslyActive": True,
                "name": line.name,
                "status": line.status,
                "processCount": blocking,
            },
        )
        tx.on_commit(_publish("deleted", line.id))
        return line

    line = run_in_transaction(_body)
    logger.info("Production line deactivated id=%s by=%s", line_id, actor_id)
    return line
