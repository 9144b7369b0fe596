"""
Batch loader tests.

Tests cover:
  - BatchLoader: coalescing, ordering, de-duplication, memoisation,
    max batch size, misaligned batch functions
  - DB batch functions: missing ids, one-to-many grouping, SQL count
  - relation expansion through the API (?include=...)
"""

from contextlib import contextmanager

import pytest
from sqlalchemy import event

from pharmatrack.middleware import jwt_auth
from pharmatrack.models import db
from pharmatrack.services import process_service as ps
from pharmatrack.services import production_line_service as pls
from pharmatrack.services.dataloader import BatchLoader, create_loaders


@contextmanager
def count_queries():
    """Count SELECT statements issued on the engine inside the block."""
    statements = []

    def _before(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("SELECT"):
            statements.append(statement)

    event.listen(db.engine, "before_cursor_execute", _before)
    try:
        yield statements
    finally:
        event.remove(db.engine, "before_cursor_execute", _before)


class RecordingBatch:
    def __init__(self):
        self.calls = []

    def __call__(self, keys):
        self.calls.append(list(keys))
        return [k * 10 for k in keys]


# ═══════════════════════════════════════════════════════════════
# BatchLoader mechanics
# ═══════════════════════════════════════════════════════════════

class TestBatchLoader:

    def test_loads_coalesce_into_one_call(self):
        batch = RecordingBatch()
        loader = BatchLoader(batch)
        pendings = [loader.load(k) for k in (3, 1, 2)]
        assert batch.calls == []
        assert [p.get() for p in pendings] == [30, 10, 20]
        assert batch.calls == [[3, 1, 2]]
        assert loader.batch_count == 1

    def test_duplicate_keys_fetched_once(self):
        batch = RecordingBatch()
        loader = BatchLoader(batch)
        assert loader.load_many([1, 2, 1, 2, 1]) == [10, 20, 10, 20, 10]
        assert batch.calls == [[1, 2]]

    def test_results_memoised(self):
        batch = RecordingBatch()
        loader = BatchLoader(batch)
        loader.load(1).get()
        loader.load(1).get()
        assert batch.calls == [[1]]

    def test_clear_forces_reload(self):
        batch = RecordingBatch()
        loader = BatchLoader(batch)
        loader.load(1).get()
        loader.clear(1)
        loader.load(1).get()
        assert batch.calls == [[1], [1]]

    def test_prime_skips_fetch(self):
        batch = RecordingBatch()
        loader = BatchLoader(batch)
        loader.prime(7, "primed")
        assert loader.load(7).get() == "primed"
        assert batch.calls == []

    def test_max_batch_size_splits(self):
        batch = RecordingBatch()
        loader = BatchLoader(batch, max_batch_size=2)
        assert loader.load_many([1, 2, 3, 4, 5]) == [10, 20, 30, 40, 50]
        assert batch.calls == [[1, 2], [3, 4], [5]]

    def test_misaligned_batch_function_rejected(self):
        loader = BatchLoader(lambda keys: keys[:-1])
        with pytest.raises(ValueError):
            loader.load_many([1, 2])

    def test_invalid_max_batch_size(self):
        with pytest.raises(ValueError):
            BatchLoader(RecordingBatch(), max_batch_size=0)


# ═══════════════════════════════════════════════════════════════
# Database batch functions
# ═══════════════════════════════════════════════════════════════

class TestDatabaseLoaders:

    @pytest.fixture()
    def lines(self, admin):
        created = [
            pls.create_production_line({"name": f"Line {i}", "reason": "setup"}, actor_id=admin.id)
            for i in range(3)
        ]
        for i in range(2):
            ps.create_process(
                {"title": f"Step {i}", "production_line_id": created[0].id, "reason": "setup"},
                actor_id=admin.id,
            )
        ps.create_process(
            {"title": "Only step", "production_line_id": created[1].id, "reason": "setup"},
            actor_id=admin.id,
        )
        return [line.id for line in created]

    def test_scalar_loader_returns_none_for_missing(self, lines):
        loaders = create_loaders()
        found = loaders.production_lines.load_many([lines[1], "missing", lines[0]])
        assert [f.id if f else None for f in found] == [lines[1], None, lines[0]]

    def test_processes_by_line_one_query(self, lines):
        loaders = create_loaders()
        with count_queries() as statements:
            grouped = loaders.processes_by_line.load_many(lines)
        assert len(statements) == 1
        assert [len(g) for g in grouped] == [2, 1, 0]
        assert grouped[2] == []

    def test_processes_by_line_excludes_inactive(self, admin, lines):
        only = ps.query_processes(production_line_id=lines[1])[0]
        ps.remove_process(only["id"], "scrapped", actor_id=admin.id)
        loaders = create_loaders()
        assert loaders.processes_by_line.load(lines[1]).get() == []

    def test_processes_by_line_newest_first(self, lines):
        loaders = create_loaders()
        titles = [p.title for p in loaders.processes_by_line.load(lines[0]).get()]
        assert titles == ["Step 1", "Step 0"]


# ═══════════════════════════════════════════════════════════════
# Relation expansion through the API
# ═══════════════════════════════════════════════════════════════

class TestIncludes:

    def test_line_list_with_processes_and_creator(self, client, admin, line, auth_headers):
        ps.create_process({"title": "Blending", "production_line_id": line.id, "reason": "setup"},
                          actor_id=admin.id)
        res = client.get("/api/v1/production-lines?include=processes,creator", headers=auth_headers(admin))
        assert res.status_code == 200
        item = res.get_json()["items"][0]
        assert [p["title"] for p in item["processes"]] == ["Blending"]
        assert item["creator"]["email"] == "admin@acmepharma.com"
        assert "password_hash" not in item["creator"]

    def test_process_with_production_line(self, client, admin, line, auth_headers):
        proc = ps.create_process({"title": "Coating", "production_line_id": line.id, "reason": "setup"},
                                 actor_id=admin.id)
        res = client.get(f"/api/v1/processes/{proc.id}?include=production_line", headers=auth_headers(admin))
        assert res.status_code == 200
        assert res.get_json()["production_line"]["name"] == "Tablet Line A"

    def test_unknown_include_ignored(self, client, admin, line, auth_headers):
        res = client.get(f"/api/v1/production-lines/{line.id}?include=secrets", headers=auth_headers(admin))
        assert res.status_code == 200
        assert "secrets" not in res.get_json()

    def test_many_lines_one_query_per_relation(self, client, admin, auth_headers):
        for i in range(5):
            pls.create_production_line({"name": f"Bulk {i}", "reason": "setup"}, actor_id=admin.id)
        headers = auth_headers(admin)
        with count_queries() as statements:
            res = client.get("/api/v1/production-lines?include=processes", headers=headers)
        assert res.status_code == 200
        assert len(res.get_json()["items"]) == 5
        process_selects = [s for s in statements if "FROM processes" in s]
        assert len(process_selects) == 1


class TestRequestScope:

    def test_each_request_gets_fresh_loaders(self, client, admin, line, auth_headers, monkeypatch):
        built = []

        def _recording_create_loaders():
            loaders = create_loaders()
            built.append(loaders)
            return loaders

        monkeypatch.setattr(jwt_auth, "create_loaders", _recording_create_loaders)
        headers = auth_headers(admin)
        url = f"/api/v1/production-lines/{line.id}?include=processes"

        first = client.get(url, headers=headers)
        assert first.status_code == 200
        assert first.get_json()["processes"] == []

        ps.create_process({"title": "Sieving", "production_line_id": line.id, "reason": "setup"},
                          actor_id=admin.id)

        second = client.get(url, headers=headers)
        assert second.status_code == 200
        assert [p["title"] for p in second.get_json()["processes"]] == ["Sieving"]

        assert len(built) == 2
        assert built[0] is not built[1]
        assert built[0].processes_by_line is not built[1].processes_by_line
