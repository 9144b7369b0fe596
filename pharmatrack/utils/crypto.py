"""
Crypto utilities — bcrypt password hashing.

Stored hashes are bcrypt ($2b$ / $2a$) with 12 rounds.  Anything else is
treated as a non-matching hash.
"""

import bcrypt

BCRYPT_ROUNDS = 12


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password with bcrypt (12 rounds)."""
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(plain_password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify a plain-text password against its bcrypt hash."""
    if not password_hash or not plain_password:
        return False
    if not password_hash.startswith(("$2b$", "$2a$")):
        return False
    return bcrypt.checkpw(
        plain_password.encode("utf-8"),
        password_hash.encode("utf-8"),
    )


_dummy_hash = None


def burn_password_check(plain_password: str) -> None:
    """Run one bcrypt comparison against a throwaway hash.

    Called when no account matches, so an unknown email costs the same
    bcrypt work as a wrong password.
    """
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = hash_password("pharmatrack-unknown-account")
    bcrypt.checkpw((plain_password or "").encode("utf-8"), _dummy_hash.encode("utf-8"))
