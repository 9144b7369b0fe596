"""
Auth Service — login, logout, and per-request token validation.

Every failure surfaces as the same UnauthorizedError message so callers
cannot tell an unknown email from a wrong password, or a revoked token
from an expired one.
"""

from __future__ import annotations

import logging

import jwt as pyjwt

from pharmatrack.core.exceptions import UnauthorizedError
from pharmatrack.models import db
from pharmatrack.models.auth import User
from pharmatrack.services import audit_service, jwt_service, revocation_store
from pharmatrack.services.datastore import run_in_transaction
from pharmatrack.services.user_service import get_user_by_email
from pharmatrack.utils.crypto import burn_password_check, verify_password

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"
INVALID_TOKEN = "Invalid or expired token"
ENTITY_TYPE = "Authentication"


def _audit_auth_event(user_id: str, reason: str, details: dict | None = None) -> None:
    def _body(tx):
        audit_service.record(
            tx,
            user_id=user_id,
            action="VIEW",
            entity_type=ENTITY_TYPE,
            entity_id=user_id,
            reason=reason,
            details=details,
        )

    run_in_transaction(_body)


# ═══════════════════════════════════════════════════════════════
# Login / Logout
# ═══════════════════════════════════════════════════════════════


def authenticate(email: str, password: str) -> User:
    """Return the active user matching the credentials or raise UnauthorizedError."""
    user = get_user_by_email(email) if isinstance(email, str) else None
    if user is None:
        burn_password_check(password if isinstance(password, str) else "")
        raise UnauthorizedError(INVALID_CREDENTIALS)
    if not verify_password(password or "", user.password_hash):
        raise UnauthorizedError(INVALID_CREDENTIALS)
    if not user.is_active:
        logger.warning("Login attempt for inactive user id=%s", user.id)
        raise UnauthorizedError(INVALID_CREDENTIALS)
    return user


def login(email: str, password: str) -> dict:
    """Verify credentials, record the login and issue an access token."""
    user = authenticate(email, password)
    _audit_auth_event(user.id, "User login")
    token = jwt_service.generate_access_token(user.id, user.email, user.role)
    logger.info("User logged in id=%s", user.id)
    return {
        "user": user.to_dict(),
        "access_token": token,
        "token_type": "Bearer",
        "expires_in": jwt_service.get_access_expires(),
    }


def logout(payload: dict) -> bool:
    """Revoke the token described by *payload* for its remaining lifetime.

    Returns False when the blocklist store could not record the revocation.
    """
    jti = payload["jti"]
    user_id = payload["sub"]
    if not revocation_store.revoke(jti, jwt_service.remaining_lifetime(payload)):
        return False
    _audit_auth_event(user_id, "User logout")
    logger.info("User logged out id=%s jti=%s", user_id, jti[:8])
    return True


def is_session_revoked(jti: str) -> bool:
    return revocation_store.is_revoked(jti)


# ═══════════════════════════════════════════════════════════════
# Token validation
# ═══════════════════════════════════════════════════════════════


def validate_payload(payload: dict) -> User:
    """Check a decoded payload against the blocklist and the user table."""
    if not payload or not payload.get("sub") or not payload.get("jti") or not payload.get("email"):
        logger.warning("Invalid JWT payload structure")
        raise UnauthorizedError(INVALID_TOKEN)

    jti = payload["jti"]
    if revocation_store.is_revoked(jti):
        logger.warning("Revoked JWT used jti=%s user=%s", jti[:8], payload["sub"])
        raise UnauthorizedError(INVALID_TOKEN)

    user = db.session.get(User, payload["sub"])
    if user is None:
        logger.warning("JWT for non-existent user id=%s", payload["sub"])
        raise UnauthorizedError(INVALID_TOKEN)
    if not user.is_active:
        logger.warning("JWT for inactive user id=%s", user.id)
        raise UnauthorizedError(INVALID_TOKEN)
    if user.email != payload["email"]:
        logger.warning("JWT email mismatch for user id=%s", user.id)
        raise UnauthorizedError(INVALID_TOKEN)
    return user


def authenticate_token(token: str) -> tuple[User, dict]:
    """Decode *token* and validate it; returns (user, payload)."""
    try:
        payload = jwt_service.decode_access_token(token)
    except pyjwt.InvalidTokenError as exc:
        logger.debug("JWT rejected: %s", exc)
        raise UnauthorizedError(INVALID_TOKEN) from exc
    return validate_payload(payload), payload
