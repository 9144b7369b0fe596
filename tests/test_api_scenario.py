"""
End-to-end scenario through the REST API: line lifecycle guarded by its processes.

  create line → create process → deactivation blocked (1 active process)
  → complete the process → deactivation succeeds
"""

from pharmatrack.models import db
from pharmatrack.models.production import ProductionLine


def test_line_lifecycle(client, manager, operator, auth_headers):
    mgr, op = auth_headers(manager), auth_headers(operator)

    res = client.post("/api/v1/production-lines", json={"name": "Line A", "reason": "init"}, headers=mgr)
    assert res.status_code == 201
    line = res.get_json()
    assert line["is_active"] is True

    res = client.post("/api/v1/processes",
                      json={"title": "Mix", "production_line_id": line["id"], "reason": "init"},
                      headers=op)
    assert res.status_code == 201
    process_id = res.get_json()["id"]

    res = client.delete(f"/api/v1/production-lines/{line['id']}", json={"reason": "retire"}, headers=mgr)
    assert res.status_code == 409
    assert "1 active processes" in res.get_json()["error"]

    res = client.put(f"/api/v1/processes/{process_id}",
                     json={"status": "COMPLETED", "progress": 100, "reason": "batch finished"},
                     headers=op)
    assert res.status_code == 200

    res = client.delete(f"/api/v1/production-lines/{line['id']}", json={"reason": "retire"}, headers=mgr)
    assert res.status_code == 200
    assert res.get_json()["is_active"] is False

    db.session.expire_all()
    assert db.session.get(ProductionLine, line["id"]).is_active is False

    res = client.get(f"/api/v1/audit/entity/ProductionLine/{line['id']}", headers=mgr)
    assert [row["action"] for row in res.get_json()["items"]] == ["DELETE", "CREATE"]


def test_duplicate_create_yields_one_row(client, manager, auth_headers):
    headers = auth_headers(manager)
    statuses = [
        client.post("/api/v1/production-lines", json={"name": "Line A", "reason": "init"}, headers=headers).status_code
        for _ in range(2)
    ]
    assert sorted(statuses) == [201, 409]
    assert db.session.query(ProductionLine).filter_by(name="Line A").count() == 1
