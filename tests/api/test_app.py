"""
Tests for the FastAPI application factory, middleware, and root endpoints.
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from ledgersync.api.app import create_app
from ledgersync.api.middleware.errors import (
    ERROR_CODE_TO_STATUS,
    problem_response,
    status_for_error_code,
)
from ledgersync.api.settings import LedgerSyncAPISettings


class TestCreateApp:
    def test_returns_fastapi_instance(self, api_settings):
        app = create_app(settings=api_settings)
        assert isinstance(app, FastAPI)
        assert app.openapi_url == "/api/v1/openapi.json"

    def test_custom_settings(self, database_url):
        app = create_app(settings=LedgerSyncAPISettings(
            database_url=database_url, api_title="Ledger Ops", run_migrations=False,
        ))
        assert app.title == "Ledger Ops"
        assert app.state.migration_runner is None

    def test_routes_registered(self, api_settings):
        app = create_app(settings=api_settings)
        paths = {getattr(r, "path", None) for r in app.routes} | set(app.openapi()["paths"])
        for path in (
            "/health",
            "/metrics",
            "/api/v1/sync/enqueue",
            "/api/v1/sync/batch",
            "/api/v1/jobs/{job_id}",
            "/api/v1/queues/{name}/control",
            "/api/v1/migrations/{migration_id}/control",
            "/api/v1/quarantine/bulk",
            "/api/v1/quarantine/{record_id}",
            "/api/v1/validation-overrides/{override_id}",
        ):
            assert path in paths

    def test_cors_middleware_present(self, api_settings):
        app = create_app(settings=api_settings)
        assert "CORSMiddleware" in [m.cls.__name__ for m in app.user_middleware]


class TestMiddleware:
    def test_request_id_echoed(self, client):
        resp = client.get("/health", headers={"X-Request-ID": "req-42"})
        assert resp.headers["X-Request-ID"] == "req-42"
        assert "X-Process-Time-Ms" in resp.headers

    def test_request_id_generated(self, client):
        assert client.get("/health").headers["X-Request-ID"]


class TestErrorMapping:
    def test_known_codes(self):
        assert status_for_error_code("NOT_FOUND") == 404
        assert status_for_error_code("VALIDATION_FAILED") == 400
        assert status_for_error_code("ALREADY_RESOLVED") == 409
        assert status_for_error_code("INVALID_TRANSITION") == 409
        assert status_for_error_code("SOMETHING_ELSE") == 500

    def test_mapping_values_are_errors(self):
        for code, status in ERROR_CODE_TO_STATUS.items():
            assert 400 <= status <= 599, f"{code} -> {status}"

    def test_problem_response_body(self):
        resp = problem_response(
            status=400, title="Bad", detail="VALIDATION_FAILED",
            errors=[{"code": "VALIDATION_FAILED", "message": "amount", "field": "amount"}],
        )
        assert resp.media_type == "application/problem+json"
        assert b'"field":"amount"' in resp.body

    def test_unhandled_exception_hides_detail(self, api_settings, monkeypatch):
        from ledgersync.ops import health as health_ops

        def boom(_ctx):
            raise RuntimeError("secret stack detail")

        monkeypatch.setattr(health_ops, "get_health", boom)
        app = create_app(settings=api_settings)
        with TestClient(app, raise_server_exceptions=False) as c:
            resp = c.get("/health")
        assert resp.status_code == 500
        assert resp.json()["title"] == "Internal Server Error"
        assert "secret" not in resp.text


class TestRootEndpoints:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()["data"]
        assert body["status"] == "healthy"
        assert body["database"]["table_counts"]["sync_jobs"] == 0

    def test_metrics_text_format(self, client):
        client.post("/api/v1/sync/enqueue", json={"entityId": "TS-001"})
        resp = client.get("/metrics")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/plain")
        assert "# TYPE ledgersync_jobs_enqueued_total counter" in resp.text
