"""
Production line tests — service rules and REST endpoints.

Tests cover:
  - create: defaults, validation, duplicate name, audit record
  - update: diff-only audit, version bump, cache refresh
  - remove: soft delete, already-deactivated, blocked by unfinished processes
  - list / get through the cache
"""

import pytest

from pharmatrack.core.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from pharmatrack.models import db
from pharmatrack.models.production import ProductionLine
from pharmatrack.services import audit_service, cache_events, cache_service
from pharmatrack.services import process_service as ps
from pharmatrack.services import production_line_service as pls


def _audit(line_id):
    return audit_service.find_by_entity("ProductionLine", line_id)


# ═══════════════════════════════════════════════════════════════
# Service
# ═══════════════════════════════════════════════════════════════

class TestCreate:

    def test_defaults(self, admin):
        line = pls.create_production_line({"name": "Sachet Line", "reason": "new"}, actor_id=admin.id)
        assert line.status == "ACTIVE"
        assert line.version == 1
        assert line.is_active is True
        assert line.created_by == admin.id

    def test_audit_record(self, admin):
        line = pls.create_production_line({"name": "Sachet Line", "reason": "new SKU"}, actor_id=admin.id)
        [log] = _audit(line.id)
        assert log.action == "CREATE"
        assert log.reason == "new SKU"
        assert log.details == {"name": "Sachet Line", "status": "ACTIVE", "version": 1}

    def test_duplicate_name_conflict(self, admin, line):
        with pytest.raises(ConflictError):
            pls.create_production_line({"name": "Tablet Line A", "reason": "again"}, actor_id=admin.id)
        assert db.session.query(ProductionLine).count() == 1

    @pytest.mark.parametrize("data", [{"name": ""}, {"name": "   "}, {"name": "X", "status": "BROKEN"}])
    def test_invalid_input(self, admin, data):
        with pytest.raises(ValidationError):
            pls.create_production_line(data, actor_id=admin.id)


class TestUpdate:

    def test_changes_and_previous_values_audited(self, admin, line):
        pls.update_production_line(
            line.id, {"name": "Tablet Line A", "status": "MAINTENANCE", "reason": "scheduled PM"},
            actor_id=admin.id,
        )
        log = _audit(line.id)[0]
        assert log.action == "UPDATE"
        assert log.details == {"changes": {"status": "MAINTENANCE"}, "previousValues": {"status": "ACTIVE"}}

    def test_version_bumped_only_on_change(self, admin, line):
        updated = pls.update_production_line(line.id, {"status": "ACTIVE", "reason": "no-op"}, actor_id=admin.id)
        assert updated.version == 1
        updated = pls.update_production_line(line.id, {"status": "INACTIVE", "reason": "idle"}, actor_id=admin.id)
        assert updated.version == 2

    def test_unknown_id(self, admin):
        with pytest.raises(NotFoundError):
            pls.update_production_line("missing", {"status": "ACTIVE", "reason": "x"}, actor_id=admin.id)

    def test_rename_to_existing_name_conflicts(self, admin, line):
        other = pls.create_production_line({"name": "Liquid Line", "reason": "new"}, actor_id=admin.id)
        with pytest.raises(ConflictError):
            pls.update_production_line(other.id, {"name": "Tablet Line A", "reason": "rename"}, actor_id=admin.id)

    def test_cached_detail_refreshed_after_update(self, admin, line):
        assert pls.get_production_line(line.id)["status"] == "ACTIVE"
        pls.update_production_line(line.id, {"status": "MAINTENANCE", "reason": "PM"}, actor_id=admin.id)
        cache_events.drain()
        assert pls.get_production_line(line.id)["status"] == "MAINTENANCE"


class TestRemove:

    def test_soft_delete(self, admin, line):
        removed = pls.remove_production_line(line.id, "decommissioned", actor_id=admin.id)
        assert removed.is_active is False
        db.session.expire_all()
        assert db.session.get(ProductionLine, line.id) is not None
        log = _audit(line.id)[0]
        assert log.action == "DELETE"
        assert log.details["action"] == "deactivation"
        assert log.details["processCount"] == 0

    def test_already_deactivated(self, admin, line):
        pls.remove_production_line(line.id, "decommissioned", actor_id=admin.id)
        with pytest.raises(ConflictError, match="already deactivated"):
            pls.remove_production_line(line.id, "again", actor_id=admin.id)

    def test_blocked_by_unfinished_processes(self, admin, line):
        for title in ("Granulation", "Compression"):
            ps.create_process({"title": title, "production_line_id": line.id, "reason": "setup"},
                              actor_id=admin.id)
        with pytest.raises(InvalidStateError, match="with 2 active processes"):
            pls.remove_production_line(line.id, "decommissioned", actor_id=admin.id)
        db.session.expire_all()
        assert db.session.get(ProductionLine, line.id).is_active is True

    def test_completed_processes_do_not_block(self, admin, line):
        proc = ps.create_process({"title": "Granulation", "production_line_id": line.id, "reason": "setup"},
                                 actor_id=admin.id)
        ps.update_process(proc.id, {"status": "COMPLETED", "progress": 100, "reason": "done"},
                          actor_id=admin.id)
        assert pls.remove_production_line(line.id, "decommissioned", actor_id=admin.id).is_active is False

    def test_deactivated_processes_do_not_block(self, admin, line):
        proc = ps.create_process({"title": "Granulation", "production_line_id": line.id, "reason": "setup"},
                                 actor_id=admin.id)
        ps.remove_process(proc.id, "cancelled", actor_id=admin.id)
        assert pls.remove_production_line(line.id, "decommissioned", actor_id=admin.id).is_active is False


class TestQueries:

    def test_list_filters(self, admin, line):
        pls.create_production_line({"name": "Idle Line", "status": "INACTIVE", "reason": "x"}, actor_id=admin.id)
        assert [row["name"] for row in pls.list_production_lines(status="INACTIVE")] == ["Idle Line"]
        assert len(pls.list_production_lines(is_active=True)) == 2

    def test_list_served_from_cache(self, line):
        pls.list_production_lines()
        pls.list_production_lines()
        metrics = cache_service.get_metrics()
        assert metrics["hits"] == 1
        assert cache_service.get(pls.list_cache_key({})) is not None

    def test_cache_key_omits_defaults(self):
        assert pls.list_cache_key({"limit": 100, "offset": 0, "status": None}) == "production-lines:{}"
        assert pls.list_cache_key({"limit": 10, "status": "ACTIVE"}) == 'production-lines:{"limit":10,"status":"ACTIVE"}'

    def test_get_missing(self):
        with pytest.raises(NotFoundError, match="not found"):
            pls.get_production_line("nope")


# ═══════════════════════════════════════════════════════════════
# API
# ═══════════════════════════════════════════════════════════════

class TestProductionLineAPI:

    def test_create_returns_201(self, client, manager, auth_headers):
        res = client.post("/api/v1/production-lines",
                          json={"name": "Vial Line", "reason": "new sterile line"},
                          headers=auth_headers(manager))
        assert res.status_code == 201
        assert res.get_json()["name"] == "Vial Line"

    def test_create_requires_reason(self, client, manager, auth_headers):
        res = client.post("/api/v1/production-lines", json={"name": "Vial Line"}, headers=auth_headers(manager))
        assert res.status_code == 400

    def test_duplicate_returns_409(self, client, admin, line, auth_headers):
        res = client.post("/api/v1/production-lines",
                          json={"name": "Tablet Line A", "reason": "dup"}, headers=auth_headers(admin))
        assert res.status_code == 409

    def test_get_unknown_returns_404(self, client, admin, auth_headers):
        res = client.get("/api/v1/production-lines/missing", headers=auth_headers(admin))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_update_and_list(self, client, admin, line, auth_headers):
        headers = auth_headers(admin)
        assert client.get("/api/v1/production-lines", headers=headers).get_json()["count"] == 1
        res = client.put(f"/api/v1/production-lines/{line.id}",
                         json={"status": "MAINTENANCE", "reason": "PM"}, headers=headers)
        assert res.status_code == 200
        assert res.get_json()["version"] == 2
        cache_events.drain()
        listed = client.get("/api/v1/production-lines?status=MAINTENANCE", headers=headers).get_json()
        assert [row["id"] for row in listed["items"]] == [line.id]

    def test_delete_blocked_returns_409(self, client, admin, line, auth_headers):
        ps.create_process({"title": "Granulation", "production_line_id": line.id, "reason": "setup"},
                          actor_id=admin.id)
        res = client.delete(f"/api/v1/production-lines/{line.id}",
                            json={"reason": "decommission"}, headers=auth_headers(admin))
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_INVALID_STATE"

    def test_invalid_status_returns_422(self, client, admin, auth_headers):
        res = client.post("/api/v1/production-lines",
                          json={"name": "Odd Line", "status": "BROKEN", "reason": "x"},
                          headers=auth_headers(admin))
        assert res.status_code == 422
