"""
PharmaTrack Manufacturing Tracking Backend
Production domain models.

Models:
    - ProductionLine: a named manufacturing line, soft-deleted via is_active
    - Process: a manufacturing step placed on a line's UI canvas

Architecture chain: ProductionLine → Process
"""

import uuid
from datetime import datetime, timezone

from pharmatrack.models import db


def _uuid():
    return str(uuid.uuid4())


def _iso(value):
    return value.isoformat() if value else None


# ── Constants ────────────────────────────────────────────────────────────────

DEFAULT_PROCESS_COLOR = "#4F46E5"

PROCESS_TITLE_MIN = 2
PROCESS_TITLE_MAX = 100
PROCESS_DESCRIPTION_MAX = 1000
PROCESS_DURATION_MIN = 1
PROCESS_DURATION_MAX = 525600   # one year in minutes
CANVAS_BOUND = 10000.0


class ProductionLine(db.Model):
    __tablename__ = "production_lines"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False, unique=True)
    status = db.Column(db.String(20), nullable=False, default="ACTIVE")
    version = db.Column(db.Integer, nullable=False, default=1)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    reason = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_production_lines_active_status", "is_active", "status"),
    )

    processes = db.relationship("Process", back_populates="production_line", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "version": self.version,
            "is_active": self.is_active,
            "created_by": self.created_by,
            "reason": self.reason,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ProductionLine {self.id}: {self.name}>"


class Process(db.Model):
    __tablename__ = "processes"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    title = db.Column(db.String(PROCESS_TITLE_MAX), nullable=False)
    description = db.Column(db.Text)
    duration = db.Column(db.Integer, nullable=False, default=60, comment="minutes")
    progress = db.Column(db.Float, nullable=False, default=0.0)
    status = db.Column(db.String(20), nullable=False, default="PENDING")
    x = db.Column(db.Float, nullable=False, default=0.0)
    y = db.Column(db.Float, nullable=False, default=0.0)
    color = db.Column(db.String(7), nullable=False, default=DEFAULT_PROCESS_COLOR)
    production_line_id = db.Column(
        db.String(36), db.ForeignKey("production_lines.id"), nullable=False,
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    reason = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("production_line_id", "title", name="uq_process_line_title"),
        db.Index("ix_processes_line_active", "production_line_id", "is_active"),
        db.Index("ix_processes_status", "status"),
    )

    production_line = db.relationship("ProductionLine", back_populates="processes")

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "duration": self.duration,
            "progress": self.progress,
            "status": self.status,
            "x": self.x,
            "y": self.y,
            "color": self.color,
            "production_line_id": self.production_line_id,
            "is_active": self.is_active,
            "created_by": self.created_by,
            "reason": self.reason,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Process {self.id}: {self.title}>"
