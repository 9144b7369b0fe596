"""
Process service — business logic for manufacturing processes.

Rules:
  - a process can only be created on an existing, active production line
  - title is unique within its production line
  - production_line_id never changes after creation
  - removal is a soft delete (is_active=False)

Mutations run in one transaction with their audit record; cache keys
``processes:*`` / ``process:*`` and tag ``process`` are invalidated after commit.
"""

from __future__ import annotations

import json
import logging
import math
import re

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from pharmatrack.core.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from pharmatrack.models import PROCESS_STATUSES, db
from pharmatrack.models.production import (
    CANVAS_BOUND,
    DEFAULT_PROCESS_COLOR,
    PROCESS_DESCRIPTION_MAX,
    PROCESS_DURATION_MAX,
    PROCESS_DURATION_MIN,
    PROCESS_TITLE_MAX,
    PROCESS_TITLE_MIN,
    Process,
    ProductionLine,
)
from pharmatrack.services import audit_service, cache_events, cache_service
from pharmatrack.services.datastore import is_unique_violation, run_in_transaction

logger = logging.getLogger(__name__)

ENTITY_TYPE = "Process"
CACHE_TAG = "process"
LIST_TTL = 1800
ITEM_TTL = 3600
DEFAULT_LIMIT = 100

_HEX_COLOR = re.compile(r"^#(?:[0-9A-Fa-f]{3}|[0-9A-Fa-f]{6})$")
_DUPLICATE_TITLE = "Process with this title already exists in the production line"

UPDATABLE_FIELDS = ("title", "description", "duration", "progress", "status", "x", "y", "color")


# ── Field validation ─────────────────────────────────────────────────────


def _number(field, value, lo, hi, *, integer=False):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{field} must be a number", details={field: "must be a number"})
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError(f"{field} must be a finite number", details={field: "must be finite"})
    if integer and int(value) != value:
        raise ValidationError(f"{field} must be a whole number", details={field: "must be an integer"})
    if value < lo or value > hi:
        raise ValidationError(f"{field} must be between {lo} and {hi}", details={field: f"{lo}..{hi}"})
    return int(value) if integer else float(value)


def validate_fields(data: dict) -> dict:
    """Validate and coerce the process fields present in *data*."""
    clean = {}
    if "title" in data:
        title = data["title"]
        if not isinstance(title, str) or not (PROCESS_TITLE_MIN <= len(title.strip()) <= PROCESS_TITLE_MAX):
            raise ValidationError(
                f"Title must be {PROCESS_TITLE_MIN}-{PROCESS_TITLE_MAX} characters",
                details={"title": f"{PROCESS_TITLE_MIN}..{PROCESS_TITLE_MAX} characters"},
            )
        clean["title"] = title.strip()
    if "description" in data:
        desc = data["description"]
        if desc is not None and (not isinstance(desc, str) or len(desc) > PROCESS_DESCRIPTION_MAX):
            raise ValidationError(
                f"Description must be at most {PROCESS_DESCRIPTION_MAX} characters",
                details={"description": f"at most {PROCESS_DESCRIPTION_MAX} characters"},
            )
        clean["description"] = desc
    if "duration" in data:
        clean["duration"] = _number("duration", data["duration"], PROCESS_DURATION_MIN,
                                    PROCESS_DURATION_MAX, integer=True)
    if "progress" in data:
        clean["progress"] = _number("progress", data["progress"], 0, 100)
    for axis in ("x", "y"):
        if axis in data:
            clean[axis] = _number(axis, data[axis], -CANVAS_BOUND, CANVAS_BOUND)
    if "status" in data:
        if data["status"] not in PROCESS_STATUSES:
            raise ValidationError(
                f"Invalid process status: {data['status']}",
                details={"status": f"one of {', '.join(PROCESS_STATUSES)}"},
            )
        clean["status"] = data["status"]
    if "color" in data:
        color = data["color"]
        if not isinstance(color, str) or not _HEX_COLOR.match(color):
            raise ValidationError("Color must be a hex color", details={"color": "#RGB or #RRGGBB"})
        clean["color"] = color
    return clean


def _publish(event: str, process_id: str):
    return lambda: cache_events.publish("process", event, process_id)


def _options_key(options: dict) -> str:
    canonical = {
        k: v for k, v in options.items()
        if v is not None and not (k == "limit" and v == DEFAULT_LIMIT) and not (k == "offset" and v == 0)
    }
    return json.dumps(canonical, sort_keys=True, separators=(",", ":"))


def list_cache_key(options: dict) -> str:
    return "processes:" + _options_key(options)


def line_cache_key(line_id: str, options: dict) -> str:
    return f"processes:line:{line_id}:" + _options_key(options)


def item_cache_key(process_id: str) -> str:
    return f"process:{process_id}"


# ═════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════


def query_processes(
    *,
    production_line_id: str | None = None,
    is_active: bool | None = None,
    status: str | None = None,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
) -> list[dict]:
    stmt = select(Process)
    if production_line_id:
        stmt = stmt.where(Process.production_line_id == production_line_id)
    if is_active is not None:
        stmt = stmt.where(Process.is_active.is_(is_active))
    if status:
        stmt = stmt.where(Process.status == status)
    stmt = stmt.order_by(Process.created_at.desc()).limit(limit).offset(offset)
    return [p.to_dict() for p in db.session.execute(stmt).scalars().all()]


def list_processes(
    *,
    production_line_id: str | None = None,
    is_active: bool | None = None,
    status: str | None = None,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
) -> list[dict]:
    if status is not None:
        validate_fields({"status": status})
    options = {
        "production_line_id": production_line_id,
        "is_active": is_active,
        "status": status,
        "limit": limit,
        "offset": offset,
    }
    tags = [CACHE_TAG]
    if production_line_id:
        tags.append(f"processes:line:{production_line_id}")
    return cache_service.get_or_set(
        list_cache_key(options),
        lambda: query_processes(**options),
        ttl=LIST_TTL,
        tags=tags,
    )


def list_processes_by_production_line(
    line_id: str,
    *,
    is_active: bool | None = True,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
) -> list[dict]:
    """Processes of one line (active only by default).

    Raises:
        NotFoundError: unknown production line.
    """
    if db.session.get(ProductionLine, line_id) is None:
        raise NotFoundError(resource="Production line", resource_id=line_id)
    options = {"is_active": is_active, "limit": limit, "offset": offset}
    return cache_service.get_or_set(
        line_cache_key(line_id, options),
        lambda: query_processes(production_line_id=line_id, is_active=is_active, limit=limit, offset=offset),
        ttl=LIST_TTL,
        tags=[CACHE_TAG, f"processes:line:{line_id}"],
    )


def get_process(process_id: str) -> dict:
    """Return one process as a dict.

    Raises:
        NotFoundError: unknown id.
    """
    def _load():
        proc = db.session.get(Process, process_id)
        return proc.to_dict() if proc else None

    data = cache_service.get_or_set(item_cache_key(process_id), _load, ttl=ITEM_TTL, tags=[CACHE_TAG])
    if data is None:
        raise NotFoundError(resource="Process", resource_id=process_id)
    return data


# ═════════════════════════════════════════════════════════════════════════
# Mutations
# ═════════════════════════════════════════════════════════════════════════


def create_process(data: dict, *, actor_id: str) -> Process:
    """Create a process on an active production line.

    Raises:
        ValidationError: missing/invalid fields.
        NotFoundError: production line does not exist.
        InvalidStateError: production line is inactive.
        ConflictError: title already used on that line.
    """
    if "title" not in data:
        raise ValidationError("Title is required", details={"title": "required"})
    line_id = data.get("production_line_id")
    if not line_id:
        raise ValidationError("production_line_id is required", details={"production_line_id": "required"})

    fields = validate_fields({k: v for k, v in data.items() if k in UPDATABLE_FIELDS})
    fields.setdefault("progress", 0.0)
    fields.setdefault("status", "PENDING")
    fields.setdefault("x", 0.0)
    fields.setdefault("y", 0.0)
    fields.setdefault("color", DEFAULT_PROCESS_COLOR)
    reason = data.get("reason") or "Process created"

    def _body(tx):
        line = tx.get(ProductionLine, line_id)
        if line is None:
            raise NotFoundError(resource="Production line", resource_id=line_id)
        if not line.is_active:
            raise InvalidStateError("Cannot create process on inactive production line")

        proc = tx.add(Process(
            production_line_id=line_id,
            created_by=actor_id,
            reason=reason,
            **fields,
        ))
        tx.flush()
        audit_service.record(
            tx,
            user_id=actor_id,
            action="CREATE",
            entity_type=ENTITY_TYPE,
            entity_id=proc.id,
            reason=reason,
            details={
                "title": proc.title,
                "productionLineId": line_id,
                "status": proc.status,
                "duration": proc.duration,
                "progress": proc.progress,
            },
        )
        tx.on_commit(_publish("created", proc.id))
        return proc

    try:
        proc = run_in_transaction(_body)
    except IntegrityError as exc:
        if is_unique_violation(exc):
            raise ConflictError(_DUPLICATE_TITLE, field="title") from exc
        raise

    logger.info("Process created id=%s line=%s by=%s", proc.id, line_id, actor_id)
    return proc


def update_process(process_id: str, data: dict, *, actor_id: str) -> Process:
    """Patch a process.

    Raises:
        ValidationError: invalid fields or an attempt to move the process.
        NotFoundError: unknown id.
        ConflictError: new title already used on the line.
    """
    if "production_line_id" in data:
        raise ValidationError(
            "production_line_id cannot be changed",
            details={"production_line_id": "immutable after creation"},
        )
    patch = validate_fields({k: v for k, v in data.items() if k in UPDATABLE_FIELDS})
    reason = data.get("reason") or "Process updated"

    def _body(tx):
        proc = tx.get(Process, process_id)
        if proc is None:
            raise NotFoundError(resource="Process", resource_id=process_id)

        changes = {k: v for k, v in patch.items() if getattr(proc, k) != v}
        previous = {k: getattr(proc, k) for k in changes}
        for field, value in changes.items():
            setattr(proc, field, value)
        tx.flush()

        audit_service.record(
            tx,
            user_id=actor_id,
            action="UPDATE",
            entity_type=ENTITY_TYPE,
            entity_id=proc.id,
            reason=reason,
            details={"changes": changes, "previousValues": previous},
        )
        tx.on_commit(_publish("updated", proc.id))
        return proc

    try:
        proc = run_in_transaction(_body)
    except IntegrityError as exc:
        if is_unique_violation(exc):
            raise ConflictError(_DUPLICATE_TITLE, field="title") from exc
        raise

    logger.info("Process updated id=%s by=%s fields=%s", process_id, actor_id, sorted(patch))
    return proc


def remove_process(process_id: str, reason: str, *, actor_id: str) -> Process:
    """Soft-delete a process.

    Raises:
        NotFoundError: unknown id.
        ConflictError: already deactivated.
    """

    def _body(tx):
        proc = tx.get(Process, process_id)
        if proc is None:
            raise NotFoundError(resource="Process", resource_id=process_id)
        if not proc.is_active:
            raise ConflictError("Process is already deactivated")

        proc.is_active = False
        tx.flush()
        audit_service.record(
            tx,
            user_id=actor_id,
            action="DELETE",
            entity_type=ENTITY_TYPE,
            entity_id=proc.id,
            reason=reason,
            details={
                "action": "deactivation",
                "previouslyActive": True,
                "title": proc.title,
                "status": proc.status,
                "productionLineId": proc.production_line_id,
            },
        )
        tx.on_commit(_publish("deleted", proc.id))
        return proc

    proc = run_in_transaction(_body)
    logger.info("Process deactivated id=%s by=%s", process_id, actor_id)
    return proc
