"""
Cache Service — key/value cache with TTL, tag invalidation and metrics.

Backends:
  - Redis (``REDIS_URL=redis://...``) in every real deployment
  - in-memory dict, only when ``REDIS_URL`` is explicitly ``memory://``
    (development and tests)

The cache is an optimisation, never a correctness dependency.  If Redis
cannot be reached at ``init`` the backend stays ``None`` and every call
degrades to a miss / no-op.  Runtime errors from the backend are logged
and treated the same way; they never reach the caller.

Tag index:
  ``set(key, value, tags=[...])`` also stores ``<prefix>tags:<key>`` holding
  the tag list (same TTL).  ``invalidate_by_tags`` scans that namespace,
  so a key's tags are frozen at write time.

Lifecycle:
    cache_service.init(app.config)   # once at startup
    cache_service.shutdown()         # at process exit
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Callable

from pharmatrack.services import kv_store

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300
DEFAULT_PREFIX = "pharmatrack:"
TAG_NAMESPACE = "tags:"

# Backend failures that degrade to pass-through
_BACKEND_ERRORS = kv_store.BACKEND_ERRORS


# ── Module state ─────────────────────────────────────────────────────────

_backend = None
_prefix = DEFAULT_PREFIX
_default_ttl = DEFAULT_TTL

_metrics_lock = threading.Lock()
_metrics = {"hits": 0, "misses": 0, "total_requests": 0}


def init(config, backend=None) -> None:
    """Connect the cache according to *config* (a Flask config mapping).

    *backend* overrides the URL-based selection; tests use it to inject a
    failing backend.
    """
    global _backend, _prefix, _default_ttl

    _prefix = config.get("CACHE_KEY_PREFIX", DEFAULT_PREFIX)
    _default_ttl = int(config.get("CACHE_DEFAULT_TTL", DEFAULT_TTL))

    if backend is not None:
        _backend = backend
        return

    if not config.get("CACHE_ENABLED", True):
        logger.info("Cache disabled by configuration")
        _backend = None
        return

    redis_url = config.get("REDIS_URL") or ""
    try:
        _backend = kv_store.connect(redis_url)
        logger.info("Cache: using %s backend", _backend_type(_backend))
    except (*_BACKEND_ERRORS, ValueError) as exc:
        logger.warning("Redis unavailable (%s) — cache running in pass-through mode", exc)
        _backend = None


def shutdown() -> None:
    """Close the backend connection and fall back to pass-through."""
    global _backend
    be = _backend
    _backend = None
    if be is None:
        return
    try:
        be.close()
    except _BACKEND_ERRORS as exc:
        logger.warning("Cache shutdown error: %s", exc)


def is_available() -> bool:
    return _backend is not None


def _full(key: str) -> str:
    return f"{_prefix}{key}"


def _tag_key(key: str) -> str:
    return f"{_prefix}{TAG_NAMESPACE}{key}"


# ── Core operations ──────────────────────────────────────────────────────


def get(key: str):
    """Return the cached value for *key*, or None on miss / unavailable backend."""
    be = _backend
    if be is None:
        return None
    try:
        raw = be.get(_full(key))
    except _BACKEND_ERRORS as exc:
        logger.warning("Cache get failed for %s: %s", key, exc)
        return None
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Cache entry %s is not valid JSON; ignoring", key)
        return None


def set(key: str, value: Any, ttl: int | None = None, tags: list[str] | None = None) -> None:  # noqa: A001
    """Store *value* under *key* and record its tags in the tag index."""
    be = _backend
    if be is None:
        return
    ttl = ttl or _default_ttl
    try:
        be.setex(_full(key), ttl, json.dumps(value, default=str))
        if tags:
            be.setex(_tag_key(key), ttl, json.dumps(list(tags)))
    except _BACKEND_ERRORS as exc:
        logger.warning("Cache set failed for %s: %s", key, exc)


def delete(key: str) -> None:
    be = _backend
    if be is None:
        return
    try:
        be.delete(_full(key), _tag_key(key))
    except _BACKEND_ERRORS as exc:
        logger.warning("Cache delete failed for %s: %s", key, exc)


def get_or_set(
    key: str,
    factory: Callable[[], Any],
    ttl: int | None = None,
    tags: list[str] | None = None,
):
    """Cache-aside read.

    On a hit the cached value is returned and *factory* is not called.
    On a miss *factory* runs exactly once and its result is stored.
    Exceptions from *factory* propagate and nothing is cached; a ``None``
    result is returned but not cached.
    """
    _count("total_requests")
    cached = get(key)
    if cached is not None:
        _count("hits")
        return cached

    _count("misses")
    value = factory()
    if value is not None:
        set(key, value, ttl=ttl, tags=tags)
    return value


# ── Invalidation ─────────────────────────────────────────────────────────


def invalidate_pattern(pattern: str) -> int:
    """Delete every key matching the glob *pattern* (relative to the prefix)."""
    be = _backend
    if be is None:
        return 0
    try:
        keys = be.keys(_full(pattern))
        tag_keys = be.keys(_tag_key(pattern))
        doomed = list(keys) + list(tag_keys)
        if doomed:
            be.delete(*doomed)
        logger.debug("Cache: invalidated %d keys for pattern %s", len(keys), pattern)
        return len(keys)
    except _BACKEND_ERRORS as exc:
        logger.warning("Cache pattern invalidation failed for %s: %s", pattern, exc)
        return 0


def invalidate_by_tags(tags: list[str]) -> int:
    """Delete every key whose stored tag set intersects *tags*."""
    be = _backend
    if be is None or not tags:
        return 0
    wanted = frozenset(tags)
    index_prefix = _tag_key("")
    removed = 0
    try:
        for tag_key in be.keys(f"{index_prefix}*"):
            raw = be.get(tag_key)
            if raw is None:
                continue
            try:
                key_tags = json.loads(raw)
            except (json.JSONDecodeError, TypeError):
                key_tags = []
            if wanted.intersection(key_tags):
                be.delete(_full(tag_key[len(index_prefix):]), tag_key)
                removed += 1
        logger.debug("Cache: invalidated %d keys for tags %s", removed, sorted(wanted))
    except _BACKEND_ERRORS as exc:
        logger.warning("Cache tag invalidation failed for %s: %s", sorted(wanted), exc)
    return removed


def clear_all() -> None:
    """Flush the whole backend (tests and manual ops only)."""
    be = _backend
    if be is None:
        return
    try:
        be.flushdb()
    except _BACKEND_ERRORS as exc:
        logger.warning("Cache flush failed: %s", exc)


# ── Metrics ──────────────────────────────────────────────────────────────


def _count(name: str) -> None:
    with _metrics_lock:
        _metrics[name] += 1


def get_metrics() -> dict:
    with _metrics_lock:
        snapshot = dict(_metrics)
    total = snapshot["total_requests"]
    snapshot["hit_rate"] = round(snapshot["hits"] / total * 100, 2) if total else 0.0
    return snapshot


def reset_metrics() -> None:
    with _metrics_lock:
        for name in _metrics:
            _metrics[name] = 0


def health_check() -> dict:
    """Return backend status plus a metrics snapshot."""
    be = _backend
    if be is None:
        return {"status": "unhealthy", "backend": None, "detail": "cache backend unavailable",
                "metrics": get_metrics()}
    backend_type = _backend_type(be)
    try:
        t0 = time.perf_counter()
        be.ping()
        latency_ms = (time.perf_counter() - t0) * 1000
    except _BACKEND_ERRORS as exc:
        return {"status": "unhealthy", "backend": backend_type, "detail": str(exc),
                "metrics": get_metrics()}
    return {"status": "healthy", "backend": backend_type, "latency_ms": round(latency_ms, 1),
            "metrics": get_metrics()}


def _backend_type(be) -> str:
    return "memory" if isinstance(be, kv_store.MemoryBackend) else "redis"
