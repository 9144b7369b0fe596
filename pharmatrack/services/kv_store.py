"""
Key-value backend factory shared by the cache and the token blocklist.

``connect(url)`` returns a Redis client for ``redis://`` / ``rediss://``
URLs and a process-local ``MemoryBackend`` for ``memory://``.  Only the
subset of the Redis API used by this package is implemented in memory:
get / setex / delete / keys / flushdb / ping / close.
"""

from __future__ import annotations

import fnmatch
import logging
import threading
import time

import redis

logger = logging.getLogger(__name__)

# Backend failures callers degrade on
BACKEND_ERRORS = (redis.RedisError, OSError)

MEMORY_URL_SCHEME = "memory://"


class MemoryBackend:
    """Dict cache for dev/testing."""

    def __init__(self):
        self._store: dict[str, tuple[str, float | None]] = {}  # key → (value, expire_ts)
        self._lock = threading.Lock()

    def _alive(self, key):
        entry = self._store.get(key)
        if entry is None:
            return None
        val, expires = entry
        if expires and time.time() > expires:
            self._store.pop(key, None)
            return None
        return val

    def get(self, key):
        with self._lock:
            return self._alive(key)

    def setex(self, key, ttl_seconds, value):
        with self._lock:
            self._store[key] = (value, time.time() + int(ttl_seconds))

    def delete(self, *keys):
        with self._lock:
            removed = 0
            for k in keys:
                if self._store.pop(k, None) is not None:
                    removed += 1
            return removed

    def keys(self, pattern):
        """Glob matching with Redis KEYS semantics for *, ? and [...]."""
        with self._lock:
            return [
                k for k in list(self._store)
                if fnmatch.fnmatchcase(k, pattern) and self._alive(k) is not None
            ]

    def flushdb(self):
        with self._lock:
            self._store.clear()

    def ping(self):
        return True

    def close(self):
        pass


def is_memory_url(url: str | None) -> bool:
    return bool(url) and url.startswith(MEMORY_URL_SCHEME)


def connect(url: str, *, timeout: float = 2.0):
    """Return a connected backend for *url*.

    Raises:
        redis.RedisError / OSError: Redis unreachable or URL invalid.
        ValueError: unsupported URL scheme.
    """
    if is_memory_url(url):
        return MemoryBackend()
    client = redis.from_url(
        url,
        decode_responses=True,
        socket_connect_timeout=timeout,
        socket_timeout=timeout,
    )
    client.ping()
    logger.info("Connected to Redis at %s", url.split("@")[-1])
    return client
