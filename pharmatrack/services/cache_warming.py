"""
Cache warming — pre-populates the read paths that every dashboard hits.

Warm set:
    - production line lists for the three default filter combinations
    - active processes of up to 10 active production lines
    - the 5 most recently updated production lines, individually
    - the 10 most recently updated processes, individually

Triggers:
    - once at startup      (CACHE_WARM_ON_STARTUP)
    - every N seconds      (CACHE_WARM_INTERVAL > 0, daemon thread)
    - manual               (POST /api/v1/health/cache/warm → manual_warm())

Warming failures are logged and never raised.
"""

from __future__ import annotations

import logging
import threading
import time

from flask import Flask
from sqlalchemy import select

from pharmatrack.models import db
from pharmatrack.models.production import Process, ProductionLine
from pharmatrack.services import cache_service, process_service, production_line_service

logger = logging.getLogger(__name__)

LIST_TTL = 1800
ITEM_TTL = 3600
MAX_LINES_FOR_PROCESSES = 10
RECENT_LINES = 5
RECENT_PROCESSES = 10

LINE_LIST_OPTIONS = (
    {"is_active": True},
    {"is_active": True, "limit": 20},
    {},
)

_thread: threading.Thread | None = None
_stop = threading.Event()


# ── Warm passes ──────────────────────────────────────────────────────────


def warm_production_lines() -> int:
    warmed = 0
    for options in LINE_LIST_OPTIONS:
        query = {"limit": production_line_service.DEFAULT_LIMIT, "offset": 0, **options}
        cache_service.get_or_set(
            production_line_service.list_cache_key(options),
            lambda q=query: production_line_service.query_production_lines(**q),
            ttl=LIST_TTL,
            tags=[production_line_service.CACHE_TAG],
        )
        warmed += 1
    return warmed


def warm_processes_by_line() -> int:
    line_ids = db.session.execute(
        select(ProductionLine.id)
        .where(ProductionLine.is_active.is_(True))
        .order_by(ProductionLine.created_at.desc())
        .limit(MAX_LINES_FOR_PROCESSES)
    ).scalars().all()

    options = {"is_active": True, "limit": process_service.DEFAULT_LIMIT, "offset": 0}
    for line_id in line_ids:
        cache_service.get_or_set(
            process_service.line_cache_key(line_id, options),
            lambda lid=line_id: process_service.query_processes(
                production_line_id=lid, is_active=True,
            ),
            ttl=LIST_TTL,
            tags=[process_service.CACHE_TAG, f"processes:line:{line_id}"],
        )
    return len(line_ids)


def warm_recent_items() -> int:
    lines = db.session.execute(
        select(ProductionLine).order_by(ProductionLine.updated_at.desc()).limit(RECENT_LINES)
    ).scalars().all()
    for line in lines:
        cache_service.set(
            production_line_service.item_cache_key(line.id),
            line.to_dict(),
            ttl=ITEM_TTL,
            tags=[production_line_service.CACHE_TAG],
        )

    processes = db.session.execute(
        select(Process).order_by(Process.updated_at.desc()).limit(RECENT_PROCESSES)
    ).scalars().all()
    for proc in processes:
        cache_service.set(
            process_service.item_cache_key(proc.id),
            proc.to_dict(),
            ttl=ITEM_TTL,
            tags=[process_service.CACHE_TAG],
        )
    return len(lines) + len(processes)


def warm_cache() -> dict:
    """Run every warm pass.  Must be called inside an app context."""
    if not cache_service.is_available():
        logger.info("Cache warming skipped: cache unavailable")
        return {"success": False, "duration": 0, "message": "Cache unavailable"}

    start = time.monotonic()
    try:
        lists = warm_production_lines()
        line_sets = warm_processes_by_line()
        items = warm_recent_items()
    except Exception as exc:
        duration = int((time.monotonic() - start) * 1000)
        logger.exception("Cache warming failed after %dms", duration)
        return {"success": False, "duration": duration, "message": f"Cache warming failed: {exc}"}

    duration = int((time.monotonic() - start) * 1000)
    logger.info("Cache warmed in %dms: %d line lists, %d process sets, %d items",
                duration, lists, line_sets, items)
    return {
        "success": True,
        "duration": duration,
        "message": f"Cache warmed successfully in {duration}ms",
    }


def manual_warm() -> dict:
    return warm_cache()


# ── Background refresh ───────────────────────────────────────────────────


def _loop(app: Flask, interval: float) -> None:
    while not _stop.wait(interval):
        with app.app_context():
            warm_cache()
            db.session.remove()


def start_background_refresh(app: Flask, interval: float) -> None:
    """Re-warm every *interval* seconds on a daemon thread."""
    global _thread
    if interval <= 0 or (_thread is not None and _thread.is_alive()):
        return
    _stop.clear()
    _thread = threading.Thread(target=_loop, args=(app, interval), name="cache-warming", daemon=True)
    _thread.start()
    logger.info("Cache background refresh every %ss", interval)


def stop_background_refresh() -> None:
    global _thread
    _stop.set()
    if _thread is not None:
        _thread.join(timeout=5)
        _thread = None


def init_app(app: Flask) -> None:
    if app.config.get("CACHE_WARM_ON_STARTUP"):
        with app.app_context():
            warm_cache()
    start_background_refresh(app, float(app.config.get("CACHE_WARM_INTERVAL", 0) or 0))
