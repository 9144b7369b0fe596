"""
PharmaTrack Manufacturing Tracking Backend
Model registry.

The shared ``db`` object is created here and bound to the app in
``create_app``.  Domain constants live next to the models that use them.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


# ── Enumerations (stored as plain strings) ───────────────────────────────

USER_ROLES = ("ADMIN", "MANAGER", "OPERATOR", "QUALITY_ASSURANCE")

AUDIT_ACTIONS = ("CREATE", "UPDATE", "DELETE", "VIEW", "APPROVE", "REJECT")

PRODUCTION_LINE_STATUSES = ("ACTIVE", "INACTIVE", "MAINTENANCE")

PROCESS_STATUSES = ("PENDING", "IN_PROGRESS", "COMPLETED")
