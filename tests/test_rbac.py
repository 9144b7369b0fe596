"""
Role-based access control matrix.

One request per (endpoint, role) pair; only the status class is checked:
allowed roles must get past the guard (anything but 401/403), others 403.
"""

import pytest

ROLES = ("ADMIN", "MANAGER", "OPERATOR", "QUALITY_ASSURANCE")

# (method, path template, json body, allowed roles)
MATRIX = [
    ("POST", "/api/v1/production-lines", {"name": "RBAC Line", "reason": "x"}, {"ADMIN", "MANAGER"}),
    ("PUT", "/api/v1/production-lines/{line}", {"status": "MAINTENANCE", "reason": "x"}, {"ADMIN", "MANAGER"}),
    ("DELETE", "/api/v1/production-lines/{line}", {"reason": "x"}, {"ADMIN", "MANAGER"}),
    ("GET", "/api/v1/production-lines", None, set(ROLES)),
    ("GET", "/api/v1/production-lines/{line}/processes", None, set(ROLES)),
    ("POST", "/api/v1/processes", {"title": "RBAC step", "production_line_id": "{line}", "reason": "x"},
     {"ADMIN", "MANAGER", "OPERATOR"}),
    ("PUT", "/api/v1/processes/{process}", {"progress": 10, "reason": "x"}, {"ADMIN", "MANAGER", "OPERATOR"}),
    ("DELETE", "/api/v1/processes/{process}", {"reason": "x"}, {"ADMIN", "MANAGER"}),
    ("GET", "/api/v1/processes", None, set(ROLES)),
    ("GET", "/api/v1/users", None, {"ADMIN", "MANAGER"}),
    ("POST", "/api/v1/users", {"email": "rbac@acmepharma.com", "password": "Validated#2024", "reason": "x"},
     {"ADMIN"}),
    ("DELETE", "/api/v1/users/{target}", {"reason": "x"}, {"ADMIN"}),
    ("POST", "/api/v1/users/test-transaction-rollback", {"email": "probe@acmepharma.com"}, {"ADMIN"}),
    ("GET", "/api/v1/audit/user/{target}", None, {"ADMIN", "MANAGER", "QUALITY_ASSURANCE"}),
    ("GET", "/api/v1/health/cache/metrics", None, {"ADMIN"}),
    ("POST", "/api/v1/health/cache/warm", None, {"ADMIN"}),
]


def _fill(value, ids):
    if isinstance(value, str):
        return value.format(**ids)
    if isinstance(value, dict):
        return {k: _fill(v, ids) for k, v in value.items()}
    return value


@pytest.fixture()
def targets(admin, make_user, line):
    from pharmatrack.services import process_service as ps

    proc = ps.create_process({"title": "Existing step", "production_line_id": line.id, "reason": "x"},
                             actor_id=admin.id)
    target = make_user("OPERATOR", email="target@acmepharma.com")
    return {"line": line.id, "process": proc.id, "target": target.id}


@pytest.mark.parametrize("method,path,body,allowed", MATRIX, ids=[f"{m} {p}" for m, p, _, _ in MATRIX])
@pytest.mark.parametrize("role", ROLES)
def test_role_matrix(client, make_user, auth_headers, targets, role, method, path, body, allowed):
    actor = make_user(role, email=f"actor.{role.lower()}@acmepharma.com")
    res = client.open(_fill(path, targets), method=method, json=_fill(body, targets), headers=auth_headers(actor))
    if role in allowed:
        assert res.status_code not in (401, 403), res.get_json()
    else:
        assert res.status_code == 403


@pytest.mark.parametrize("method,path,body,allowed", MATRIX, ids=[f"{m} {p}" for m, p, _, _ in MATRIX])
def test_anonymous_rejected(client, targets, method, path, body, allowed):
    res = client.open(_fill(path, targets), method=method, json=_fill(body, targets))
    assert res.status_code == 401
