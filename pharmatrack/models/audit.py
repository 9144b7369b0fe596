"""
PharmaTrack Manufacturing Tracking Backend
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for regulated mutations.
"""

import json
from datetime import datetime, timezone

from pharmatrack.models import db


class AuditLog(db.Model):
    """
    Immutable audit trail row.

    One row per mutating operation, written in the same transaction as the
    business write.  ``details_json`` carries ``{changes, previousValues}``
    for updates and an operation-specific snapshot otherwise.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_user", "user_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.String(36),
        db.ForeignKey("users.id"),
        nullable=False,
        comment="Actor; kept after user deactivation (PII is anonymized, id is not)",
    )

    # What happened
    action = db.Column(
        db.String(20), nullable=False,
        comment="CREATE | UPDATE | DELETE | VIEW | APPROVE | REJECT",
    )
    entity_type = db.Column(
        db.String(50), nullable=False,
        comment="ProductionLine | Process | User | Authentication",
    )
    entity_id = db.Column(db.String(36), nullable=False)
    reason = db.Column(db.Text, nullable=False)

    # Request context
    ip_address = db.Column(db.String(64))
    user_agent = db.Column(db.String(500))

    # Change payload
    details_json = db.Column(db.Text, default="{}")

    # Timestamp (immutable)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def details(self) -> dict:
        """Deserialise *details_json* to a Python dict."""
        try:
            return json.loads(self.details_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "reason": self.reason,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "details": self.details,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"
