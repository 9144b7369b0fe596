"""
JWT Service — access token generation and verification.

Access token: 24 hours (configurable via JWT_ACCESS_EXPIRES)
Algorithm:    HS256

Token payload:
{
    "sub": <user_id>,
    "email": <email>,
    "role": "OPERATOR",
    "jti": <uuid4>,
    "iat": <issued_at>,
    "exp": <expires_at>
}

Revocation is keyed by ``jti``; see revocation_store.
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app


# ─── Defaults ────────────────────────────────────────────────
DEFAULT_ACCESS_EXPIRES = 86400     # 24 hours
ALGORITHM = "HS256"
REQUIRED_CLAIMS = ("sub", "jti", "email")


def _get_secret():
    """Get the JWT secret key from app config."""
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def get_access_expires() -> int:
    return int(current_app.config.get("JWT_ACCESS_EXPIRES", DEFAULT_ACCESS_EXPIRES))


# ═══════════════════════════════════════════════════════════════
# Token Generation
# ═══════════════════════════════════════════════════════════════
def generate_access_token(user_id: str, email: str, role: str) -> str:
    """Generate a signed access token with a fresh jti."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "role": role,
        "jti": str(uuid.uuid4()),
        "iat": now,
        "exp": now + timedelta(seconds=get_access_expires()),
    }
    return jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)


# ═══════════════════════════════════════════════════════════════
# Token Verification
# ═══════════════════════════════════════════════════════════════
def decode_access_token(token: str) -> dict:
    """
    Decode and verify an access token.

    Returns the payload dict on success.
    Raises jwt.exceptions on failure (ExpiredSignatureError, InvalidTokenError, ...),
    including when a required claim is missing.
    """
    return jwt.decode(
        token,
        _get_secret(),
        algorithms=[ALGORITHM],
        options={"require": ["exp", "iat", *REQUIRED_CLAIMS]},
    )


def remaining_lifetime(payload: dict) -> int:
    """Seconds until the token expires, never less than 1."""
    exp = payload.get("exp")
    if exp is None:
        return 1
    now = int(datetime.now(timezone.utc).timestamp())
    return max(int(exp) - now, 1)
