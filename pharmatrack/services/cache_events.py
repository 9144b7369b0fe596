"""
Cache invalidation events.

Services publish a message after their transaction commits
(``tx.on_commit(lambda: cache_events.publish(...))``).  Messages go onto an
in-process queue consumed by a daemon worker thread, so a mutation never
waits on the cache.  Invalidation may lag the commit by one hand-off;
readers in that window can see a stale entry bounded by its TTL.

When the worker is disabled (``CACHE_INVALIDATION_WORKER=False``, the
testing default) messages accumulate until ``drain()`` is called.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass

from pharmatrack.services import cache_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InvalidationMessage:
    entity_type: str        # "production_line" | "process"
    event: str              # "created" | "updated" | "deleted"
    entity_id: str | None = None


# entity type → (key patterns, tags)
INVALIDATION_RULES: dict[str, tuple[tuple[str, ...], tuple[str, ...]]] = {
    "production_line": (("production-lines:*",), ("production-line",)),
    "process": (("processes:*", "process:*"), ("process",)),
}

_STOP = object()

_queue: queue.Queue = queue.Queue()
_worker: threading.Thread | None = None
_worker_lock = threading.Lock()


def publish(entity_type: str, event: str, entity_id: str | None = None) -> None:
    """Enqueue an invalidation message; never blocks, never raises."""
    _queue.put_nowait(InvalidationMessage(entity_type, event, entity_id))


def handle(message: InvalidationMessage) -> None:
    """Apply one message to the cache.  Failures are logged, not raised."""
    patterns, tags = INVALIDATION_RULES.get(message.entity_type, ((), ()))
    if not patterns and not tags:
        logger.warning("No invalidation rule for entity type %s", message.entity_type)
        return
    try:
        for pattern in patterns:
            cache_service.invalidate_pattern(pattern)
        cache_service.invalidate_by_tags(list(tags))
        logger.debug("Cache invalidated for %s %s (%s)",
                     message.entity_type, message.event, message.entity_id)
    except Exception:
        logger.exception("Cache invalidation failed for %s", message)


def drain() -> int:
    """Process every pending message on the calling thread.  Returns the count."""
    processed = 0
    while True:
        try:
            message = _queue.get_nowait()
        except queue.Empty:
            return processed
        try:
            if message is not _STOP:
                handle(message)
                processed += 1
        finally:
            _queue.task_done()


def pending() -> int:
    return _queue.qsize()


def _run() -> None:
    while True:
        message = _queue.get()
        try:
            if message is _STOP:
                return
            handle(message)
        finally:
            _queue.task_done()


def start_worker() -> None:
    """Start the background consumer if it is not already running."""
    global _worker
    with _worker_lock:
        if _worker is not None and _worker.is_alive():
            return
        _worker = threading.Thread(target=_run, name="cache-invalidation", daemon=True)
        _worker.start()
        logger.info("Cache invalidation worker started")


def stop_worker(timeout: float = 5.0) -> None:
    """Stop the consumer after it has handled everything queued before the call."""
    global _worker
    with _worker_lock:
        if _worker is None:
            return
        _queue.put(_STOP)
        _worker.join(timeout)
        _worker = None
        logger.info("Cache invalidation worker stopped")


def init(config) -> None:
    if config.get("CACHE_INVALIDATION_WORKER", True):
        start_worker()


def shutdown() -> None:
    stop_worker()
    drain()
