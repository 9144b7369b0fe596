"""
Token revocation blocklist.

Logout stores ``jwt:blocklist:<jti>`` = ``blocked`` with a TTL equal to the
token's remaining lifetime, so entries expire on their own and the list
never needs compaction.  Every authenticated request asks ``is_revoked``
before trusting a token.

Failure policy: if the store cannot be read, ``is_revoked`` logs the error
and answers False (fail open, same as the cache).  ``revoke`` reports
failure to its caller instead of raising.
"""

from __future__ import annotations

import logging

from pharmatrack.services import kv_store

logger = logging.getLogger(__name__)

KEY_PREFIX = "jwt:blocklist:"
BLOCKED = "blocked"

_backend = None


def init(config, backend=None) -> None:
    """Connect to ``REVOCATION_REDIS_URL`` (defaults to ``REDIS_URL``)."""
    global _backend
    if backend is not None:
        _backend = backend
        return
    url = config.get("REVOCATION_REDIS_URL") or config.get("REDIS_URL") or ""
    try:
        _backend = kv_store.connect(url)
    except (*kv_store.BACKEND_ERRORS, ValueError) as exc:
        logger.error("Token blocklist store unavailable (%s); logout cannot revoke tokens", exc)
        _backend = None


def shutdown() -> None:
    global _backend
    be = _backend
    _backend = None
    if be is not None:
        try:
            be.close()
        except kv_store.BACKEND_ERRORS as exc:
            logger.warning("Blocklist shutdown error: %s", exc)


def _key(jti: str) -> str:
    return f"{KEY_PREFIX}{jti}"


def revoke(jti: str, ttl: int) -> bool:
    """Block *jti* for *ttl* seconds.  Returns False if the store is unavailable."""
    be = _backend
    if be is None:
        logger.error("Cannot revoke token %s: blocklist store unavailable", jti[:8])
        return False
    try:
        be.setex(_key(jti), max(int(ttl), 1), BLOCKED)
        return True
    except kv_store.BACKEND_ERRORS as exc:
        logger.error("Cannot revoke token %s: %s", jti[:8], exc)
        return False


def is_revoked(jti: str) -> bool:
    be = _backend
    if be is None:
        return False
    try:
        return be.get(_key(jti)) == BLOCKED
    except kv_store.BACKEND_ERRORS as exc:
        logger.error("Error checking token blocklist for %s: %s", jti[:8], exc)
        return False


def clear() -> None:
    """Drop every blocklist entry (tests only)."""
    be = _backend
    if be is None:
        return
    keys = be.keys(f"{KEY_PREFIX}*")
    if keys:
        be.delete(*keys)
