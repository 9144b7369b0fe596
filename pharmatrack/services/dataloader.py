"""
Request-scoped batch loaders.

A ``BatchLoader`` coalesces many single-key lookups into one multi-key
query.  ``load(key)`` only queues the key and hands back a ``Pending``
handle; the first ``Pending.get()`` dispatches every key queued so far in
one batch call.  Reaching ``max_batch_size`` queued keys dispatches early.

    pendings = [loaders.processes_by_line.load(line_id) for line_id in ids]
    children = [p.get() for p in pendings]     # one SELECT for all ids

Batch functions receive a list of distinct keys and must return a list of
the same length, aligned by position.  Missing ids map to ``None`` (scalar
loaders) or ``[]`` (one-to-many loaders).

Loaders memoise results for their whole lifetime.  A ``Loaders`` set is
built per request in ``before_request`` and lives on ``g.loaders``; it is
never shared between requests.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Hashable, Sequence

from sqlalchemy import select

from pharmatrack.models import db
from pharmatrack.models.auth import User
from pharmatrack.models.production import Process, ProductionLine

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 100

_MISSING = object()


class Pending:
    """Deferred result of ``BatchLoader.load``."""

    __slots__ = ("_loader", "key")

    def __init__(self, loader: "BatchLoader", key: Hashable) -> None:
        self._loader = loader
        self.key = key

    def get(self):
        return self._loader._resolve(self.key)


class BatchLoader:
    def __init__(
        self,
        batch_fn: Callable[[list], Sequence[Any]],
        *,
        max_batch_size: int = MAX_BATCH_SIZE,
        name: str | None = None,
    ) -> None:
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be >= 1")
        self._batch_fn = batch_fn
        self.max_batch_size = max_batch_size
        self.name = name or getattr(batch_fn, "__name__", "loader")
        self._queue: list = []
        self._queued: set = set()
        self._results: dict = {}
        self.batch_count = 0

    def load(self, key: Hashable) -> Pending:
        if key not in self._results and key not in self._queued:
            self._queue.append(key)
            self._queued.add(key)
            if len(self._queue) >= self.max_batch_size:
                self.dispatch()
        return Pending(self, key)

    def load_many(self, keys: Sequence[Hashable]) -> list:
        """Load *keys* together and return their values in input order."""
        pendings = [self.load(k) for k in keys]
        return [p.get() for p in pendings]

    def prime(self, key: Hashable, value: Any) -> None:
        """Seed the memo with a value the caller already holds."""
        if key not in self._results and key not in self._queued:
            self._results[key] = value

    def clear(self, key: Hashable) -> None:
        self._results.pop(key, None)

    def clear_all(self) -> None:
        self._results.clear()

    def dispatch(self) -> None:
        """Run the batch function for every queued key, in slices of max_batch_size."""
        while self._queue:
            batch = self._queue[: self.max_batch_size]
            del self._queue[: self.max_batch_size]
            self._queued.difference_update(batch)
            values = list(self._batch_fn(batch))
            self.batch_count += 1
            if len(values) != len(batch):
                raise ValueError(
                    f"Batch function {self.name} returned {len(values)} values for {len(batch)} keys"
                )
            for key, value in zip(batch, values):
                self._results[key] = value
            logger.debug("Loader %s dispatched %d keys", self.name, len(batch))

    def _resolve(self, key):
        value = self._results.get(key, _MISSING)
        if value is _MISSING:
            if key not in self._queued:
                self._queue.append(key)
                self._queued.add(key)
            self.dispatch()
            value = self._results[key]
        return value


# ── Batch functions ──────────────────────────────────────────────────────


def _by_id(model, ids: list) -> list:
    rows = db.session.execute(select(model).where(model.id.in_(ids))).scalars().all()
    found = {row.id: row for row in rows}
    return [found.get(i) for i in ids]


def batch_production_lines(ids: list) -> list:
    return _by_id(ProductionLine, ids)


def batch_processes(ids: list) -> list:
    return _by_id(Process, ids)


def batch_users(ids: list) -> list:
    return _by_id(User, ids)


def batch_processes_by_line(line_ids: list) -> list:
    """Active processes per production line, newest first; every id gets a list."""
    grouped: dict[str, list] = {line_id: [] for line_id in line_ids}
    stmt = (
        select(Process)
        .where(Process.production_line_id.in_(line_ids), Process.is_active.is_(True))
        .order_by(Process.created_at.desc())
    )
    for proc in db.session.execute(stmt).scalars().all():
        grouped[proc.production_line_id].append(proc)
    return [grouped[line_id] for line_id in line_ids]


class Loaders:
    """The loader set for one request."""

    def __init__(self, max_batch_size: int = MAX_BATCH_SIZE) -> None:
        self.production_lines = BatchLoader(batch_production_lines, max_batch_size=max_batch_size)
        self.processes = BatchLoader(batch_processes, max_batch_size=max_batch_size)
        self.users = BatchLoader(batch_users, max_batch_size=max_batch_size)
        self.processes_by_line = BatchLoader(batch_processes_by_line, max_batch_size=max_batch_size)


def create_loaders() -> Loaders:
    return Loaders()
