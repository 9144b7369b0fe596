"""
Health, cache metrics and cache warming tests.
"""

from pharmatrack.services import cache_service, cache_warming
from pharmatrack.services import process_service as ps
from pharmatrack.services import production_line_service as pls


class TestHealthEndpoints:

    def test_ready_needs_no_auth(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json() == {"status": "ok"}

    def test_live_reports_database_and_cache(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        checks = res.get_json()["checks"]
        assert checks["database"]["status"] == "ok"
        assert checks["cache"]["status"] == "healthy"
        assert checks["cache"]["backend"] == "memory"

    def test_live_ignores_bad_token(self, client):
        res = client.get("/api/v1/health/live", headers={"Authorization": "Bearer garbage"})
        assert res.status_code == 200

    def test_request_id_header(self, client):
        res = client.get("/api/v1/health", headers={"X-Request-ID": "req-123"})
        assert res.headers["X-Request-ID"] == "req-123"
        assert "X-Request-Duration-Ms" in res.headers

    def test_unknown_api_path_is_json_404(self, client):
        res = client.get("/api/v1/nowhere")
        assert res.status_code == 404
        assert res.get_json()["path"] == "/api/v1/nowhere"


class TestCacheMetricsEndpoints:

    def test_metrics_and_reset(self, client, admin, line, auth_headers):
        headers = auth_headers(admin)
        client.get("/api/v1/production-lines", headers=headers)
        client.get("/api/v1/production-lines", headers=headers)

        metrics = client.get("/api/v1/health/cache/metrics", headers=headers).get_json()
        assert metrics["hits"] == 1
        assert metrics["misses"] == 1
        assert metrics["hit_rate"] == 50.0

        assert client.post("/api/v1/health/cache/metrics/reset", headers=headers).status_code == 200
        assert cache_service.get_metrics()["total_requests"] == 0

    def test_metrics_admin_only(self, client, manager, auth_headers):
        assert client.get("/api/v1/health/cache/metrics", headers=auth_headers(manager)).status_code == 403


class TestCacheWarming:

    def test_warm_populates_read_paths(self, admin, line):
        ps.create_process({"title": "Granulation", "production_line_id": line.id, "reason": "setup"},
                          actor_id=admin.id)
        result = cache_warming.warm_cache()
        assert result["success"] is True
        assert result["message"].startswith("Cache warmed successfully")

        cache_service.reset_metrics()
        pls.list_production_lines()
        pls.get_production_line(line.id)
        ps.list_processes_by_production_line(line.id)
        metrics = cache_service.get_metrics()
        assert metrics["hits"] == metrics["total_requests"] == 3

    def test_warm_skipped_without_cache(self, monkeypatch):
        monkeypatch.setattr(cache_service, "_backend", None)
        assert cache_warming.warm_cache() == {"success": False, "duration": 0, "message": "Cache unavailable"}

    def test_manual_warm_endpoint(self, client, admin, auth_headers):
        res = client.post("/api/v1/health/cache/warm", headers=auth_headers(admin))
        assert res.status_code == 200
        assert res.get_json()["success"] is True

    def test_cli_command(self, app):
        result = app.test_cli_runner().invoke(args=["warm-cache"])
        assert result.exit_code == 0
        assert "Cache warmed" in result.output
