"""
Transactional data-store gateway.

Every mutating service operation runs its business write and its audit
write through ``run_in_transaction``:

    def _body(tx):
        line = ProductionLine(...)
        tx.add(line)
        tx.flush()
        audit_service.record(tx, ...)
        tx.on_commit(lambda: cache_events.publish(...))
        return line

    line = run_in_transaction(_body)

The body receives a ``Transaction`` handle.  If it raises, everything
written through the handle is rolled back and the exception propagates
unchanged.  If it returns, the session is committed and the registered
``on_commit`` callbacks run.

Transactions are single-level: calling ``run_in_transaction`` while one
is already open on the current thread raises ``NestedTransactionError``
instead of silently joining the outer one.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from pharmatrack.models import db

logger = logging.getLogger(__name__)

T = TypeVar("T")

_state = threading.local()

# PostgreSQL SQLSTATE for unique_violation
_PG_UNIQUE_VIOLATION = "23505"


class NestedTransactionError(RuntimeError):
    """Raised when a transaction body tries to open a second transaction."""


class Transaction:
    """Capability handle for one open transaction.

    Only code holding a ``Transaction`` may write.  The handle wraps the
    Flask-SQLAlchemy scoped session and exposes the small surface services
    need.
    """

    def __init__(self, session) -> None:
        self.session = session
        self._after_commit: list[Callable[[], Any]] = []
        self.closed = False

    # ── Writes ───────────────────────────────────────────────────────────

    def add(self, obj):
        self._check_open()
        self.session.add(obj)
        return obj

    def flush(self) -> None:
        """Push pending writes so constraint violations surface inside the body."""
        self._check_open()
        self.session.flush()

    # ── Reads inside the transaction ─────────────────────────────────────

    def get(self, model, ident):
        self._check_open()
        return self.session.get(model, ident)

    def scalar(self, stmt):
        self._check_open()
        return self.session.execute(stmt).scalar_one_or_none()

    def scalars(self, stmt) -> list:
        self._check_open()
        return list(self.session.execute(stmt).scalars().all())

    def count(self, model, *criteria) -> int:
        self._check_open()
        stmt = select(func.count()).select_from(model).where(*criteria)
        return self.session.execute(stmt).scalar_one()

    # ── Hooks ────────────────────────────────────────────────────────────

    def on_commit(self, callback: Callable[[], Any]) -> None:
        """Run *callback* after a successful commit; dropped on rollback."""
        self._after_commit.append(callback)

    def _check_open(self) -> None:
        if self.closed:
            raise RuntimeError("Transaction handle used after it was closed")


def in_transaction() -> bool:
    """True while a ``run_in_transaction`` body is executing on this thread."""
    return getattr(_state, "active", False)


def run_in_transaction(body: Callable[[Transaction], T]) -> T:
    """Execute *body* atomically and return its result.

    Raises:
        NestedTransactionError: if a transaction is already open on this thread.
        Exception: whatever *body* or the commit raised, after rollback.
    """
    if in_transaction():
        raise NestedTransactionError("Nested transactions are not supported")

    session = db.session
    tx = Transaction(session)
    _state.active = True
    try:
        result = body(tx)
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        tx.closed = True
        _state.active = False

    for callback in tx._after_commit:
        try:
            callback()
        except Exception:
            logger.exception("after-commit callback %r failed", callback)
    return result


def is_unique_violation(exc: IntegrityError) -> bool:
    """Return True when *exc* signals a unique-constraint violation."""
    orig = getattr(exc, "orig", None)
    pgcode = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if pgcode == _PG_UNIQUE_VIOLATION:
        return True
    return "unique" in str(orig if orig is not None else exc).lower()


def ping() -> float:
    """Run ``SELECT 1`` and return the round-trip latency in milliseconds."""
    t0 = time.perf_counter()
    db.session.execute(db.text("SELECT 1"))
    return (time.perf_counter() - t0) * 1000
