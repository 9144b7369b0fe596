"""
User Service — account CRUD, role management, deactivation with PII
anonymization, password changes.

Every mutation writes its audit record in the same transaction.
Password hashes never leave this module's return values other than on the
ORM object itself; serializers use ``User.to_dict`` which omits them.
"""

from __future__ import annotations

import logging

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from pharmatrack.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from pharmatrack.models import USER_ROLES, db
from pharmatrack.models.auth import User
from pharmatrack.services import audit_service
from pharmatrack.services.datastore import is_unique_violation, run_in_transaction
from pharmatrack.utils.crypto import hash_password

logger = logging.getLogger(__name__)

ENTITY_TYPE = "User"
MIN_PASSWORD_LENGTH = 8
DEFAULT_LIMIT = 100

_DUPLICATE_EMAIL = "User with this email already exists"
ROLLBACK_MESSAGE = "Intentional rollback for testing transaction atomicity"


class IntentionalRollback(Exception):
    """Raised inside the self-test transaction to force a rollback."""


# ── Validation helpers ───────────────────────────────────────────────────


def _validate_email(email) -> str:
    if not isinstance(email, str) or not email.strip():
        raise ValidationError("Email is required", details={"email": "required"})
    try:
        validate_email(email.strip(), check_deliverability=False)
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}", details={"email": str(e)}) from e
    return email.strip()


def _validate_password(password) -> str:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            details={"password": f"min {MIN_PASSWORD_LENGTH} characters"},
        )
    return password


def _validate_role(role) -> str:
    if role not in USER_ROLES:
        raise ValidationError(f"Invalid role: {role}", details={"role": f"one of {', '.join(USER_ROLES)}"})
    return role


def _validate_name(field, value):
    if value is None:
        return None
    if not isinstance(value, str) or len(value) > 100:
        raise ValidationError(f"{field} must be a string of at most 100 characters",
                              details={field: "max 100 characters"})
    return value


def anonymized_values(user_id: str) -> dict:
    """Deterministic PII placeholders derived from the user id."""
    short = user_id[:8]
    return {
        "email": f"anonymized_{short}@deleted.local",
        "first_name": f"DELETED_USER_{short}",
        "last_name": "ANONYMIZED",
    }


# ═══════════════════════════════════════════════════════════════
# Queries
# ═══════════════════════════════════════════════════════════════


def list_users(
    *,
    is_active: bool | None = None,
    role: str | None = None,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
) -> list[User]:
    stmt = select(User)
    if is_active is not None:
        stmt = stmt.where(User.is_active.is_(is_active))
    if role:
        stmt = stmt.where(User.role == _validate_role(role))
    stmt = stmt.order_by(User.created_at.desc()).limit(limit).offset(offset)
    return list(db.session.execute(stmt).scalars().all())


def get_user(user_id: str) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id)
    return user


def get_user_by_email(email: str) -> User | None:
    return db.session.execute(select(User).where(User.email == email)).scalar_one_or_none()


# ═══════════════════════════════════════════════════════════════
# Mutations
# ═══════════════════════════════════════════════════════════════


def create_user(data: dict, *, actor_id: str) -> User:
    """Create a user account.

    Raises:
        ValidationError: bad email / password / role or missing reason.
        ConflictError: email already registered.
    """
    email = _validate_email(data.get("email"))
    password = _validate_password(data.get("password"))
    role = _validate_role(data.get("role") or "OPERATOR")
    first_name = _validate_name("first_name", data.get("first_name"))
    last_name = _validate_name("last_name", data.get("last_name"))
    reason = data.get("reason")
    password_hash = hash_password(password)

    def _body(tx):
        user = tx.add(User(
            email=email,
            password_hash=password_hash,
            first_name=first_name,
            last_name=last_name,
            role=role,
        ))
        tx.flush()
        audit_service.record(
            tx,
            user_id=actor_id,
            action="CREATE",
            entity_type=ENTITY_TYPE,
            entity_id=user.id,
            reason=reason,
            details={
                "email": user.email,
                "role": user.role,
                "firstName": user.first_name,
                "lastName": user.last_name,
            },
        )
        return user

    try:
        user = run_in_transaction(_body)
    except IntegrityError as exc:
        if is_unique_violation(exc):
            raise ConflictError(_DUPLICATE_EMAIL, field="email") from exc
        raise

    logger.info("User created id=%s role=%s by=%s", user.id, user.role, actor_id)
    return user


def update_user(user_id: str, data: dict, *, actor_id: str, actor_role: str) -> User:
    """Patch first/last name, role and active flag.

    Raises:
        NotFoundError: unknown id.
        ForbiddenError: role change by a non-admin.
        ValidationError: invalid values.
    """
    patch = {}
    if "first_name" in data:
        patch["first_name"] = _validate_name("first_name", data["first_name"])
    if "last_name" in data:
        patch["last_name"] = _validate_name("last_name", data["last_name"])
    if data.get("role") is not None:
        patch["role"] = _validate_role(data["role"])
    if data.get("is_active") is not None:
        if not isinstance(data["is_active"], bool):
            raise ValidationError("is_active must be a boolean", details={"is_active": "boolean"})
        patch["is_active"] = data["is_active"]
    reason = data.get("reason")

    def _body(tx):
        user = tx.get(User, user_id)
        if user is None:
            raise NotFoundError(resource="User", resource_id=user_id)
        if "role" in patch and patch["role"] != user.role and actor_role != "ADMIN":
            raise ForbiddenError("Only administrators can change user roles")

        changes = {k: v for k, v in patch.items() if getattr(user, k) != v}
        previous = {k: getattr(user, k) for k in changes}
        for field, value in changes.items():
            setattr(user, field, value)
        tx.flush()

        audit_service.record(
            tx,
            user_id=actor_id,
            action="UPDATE",
            entity_type=ENTITY_TYPE,
            entity_id=user.id,
            reason=reason,
            details={"changes": changes, "previousValues": previous},
        )
        return user

    user = run_in_transaction(_body)
    logger.info("User updated id=%s by=%s fields=%s", user_id, actor_id, sorted(patch))
    return user


def deactivate_user(user_id: str, reason: str, *, actor_id: str) -> User:
    """Deactivate a user and anonymize their PII.

    The original values are kept only in the audit record.

    Raises:
        NotFoundError: unknown id.
        ConflictError: already deactivated.
    """

    def _body(tx):
        user = tx.get(User, user_id)
        if user is None:
            raise NotFoundError(resource="User", resource_id=user_id)
        if not user.is_active:
            raise ConflictError("User is already deactivated")

        original = {"email": user.email, "first_name": user.first_name, "last_name": user.last_name}
        anon = anonymized_values(user.id)
        user.is_active = False
        user.email = anon["email"]
        user.first_name = anon["first_name"]
        user.last_name = anon["last_name"]
        tx.flush()

        audit_service.record(
            tx,
            user_id=actor_id,
            action="DELETE",
            entity_type=ENTITY_TYPE,
            entity_id=user.id,
            reason=reason,
            details={
                "action": "deactivation_with_pii_anonymization",
                "previouslyActive": True,
                "originalEmail": original["email"],
                "originalFirstName": original["first_name"],
                "originalLastName": original["last_name"],
                "anonymizedEmail": anon["email"],
                "anonymizedFirstName": anon["first_name"],
                "anonymizedLastName": anon["last_name"],
            },
        )
        return user

    user = run_in_transaction(_body)
    logger.info("User deactivated and anonymized id=%s by=%s", user_id, actor_id)
    return user


def change_password(
    user_id: str,
    new_password: str,
    reason: str,
    *,
    actor_id: str,
    actor_role: str,
) -> bool:
    """Set a new password for *user_id*; allowed for the user themself or an ADMIN.

    Raises:
        ForbiddenError, NotFoundError, ValidationError
    """
    if actor_id != user_id and actor_role != "ADMIN":
        raise ForbiddenError("You can only change your own password")
    password_hash = hash_password(_validate_password(new_password))

    def _body(tx):
        user = tx.get(User, user_id)
        if user is None:
            raise NotFoundError(resource="User", resource_id=user_id)
        user.password_hash = password_hash
        tx.flush()
        audit_service.record(
            tx,
            user_id=actor_id,
            action="UPDATE",
            entity_type=ENTITY_TYPE,
            entity_id=user_id,
            reason=reason,
            details={"action": "password_change"},
        )
        return True

    run_in_transaction(_body)
    logger.info("User password changed id=%s by=%s", user_id, actor_id)
    return True


def verify_transaction_rollback(test_email: str, *, actor_id: str, should_fail: bool = True) -> dict:
    """Create a throwaway user + audit row, then optionally abort the transaction.

    Used by administrators to verify that the store rolls back both writes.
    """
    email = _validate_email(test_email)
    password_hash = hash_password("temp-password")

    def _body(tx):
        user = tx.add(User(
            email=email,
            password_hash=password_hash,
            first_name="Test",
            last_name="User",
            role="OPERATOR",
        ))
        tx.flush()
        audit_service.record(
            tx,
            user_id=actor_id,
            action="CREATE",
            entity_type=ENTITY_TYPE,
            entity_id=user.id,
            reason="Transaction rollback test",
            details={"testScenario": "forced_rollback", "email": user.email},
        )
        if should_fail:
            raise IntentionalRollback(ROLLBACK_MESSAGE)
        return user

    try:
        run_in_transaction(_body)
    except IntentionalRollback:
        logger.info("Transaction rollback self-test rolled back as expected")
        return {"success": False, "message": "Transaction rolled back as expected"}
    except IntegrityError as exc:
        if is_unique_violation(exc):
            raise ConflictError(_DUPLICATE_EMAIL, field="email") from exc
        raise
    return {"success": True, "message": "Transaction completed successfully"}


def seed_admin(email: str, password: str) -> User:
    """Create the first ADMIN account; its creation is audited as self-registered.

    Raises:
        ValidationError: bad email or password.
        ConflictError: email already registered.
    """
    email = _validate_email(email)
    password_hash = hash_password(_validate_password(password))

    def _body(tx):
        user = tx.add(User(
            email=email,
            password_hash=password_hash,
            first_name="System",
            last_name="Administrator",
            role="ADMIN",
        ))
        tx.flush()
        audit_service.record(
            tx,
            user_id=user.id,
            action="CREATE",
            entity_type=ENTITY_TYPE,
            entity_id=user.id,
            reason="Initial administrator account",
            details={"email": user.email, "role": user.role, "seeded": True},
        )
        return user

    try:
        user = run_in_transaction(_body)
    except IntegrityError as exc:
        if is_unique_violation(exc):
            raise ConflictError(_DUPLICATE_EMAIL, field="email") from exc
        raise
    logger.info("Administrator seeded id=%s", user.id)
    return user
